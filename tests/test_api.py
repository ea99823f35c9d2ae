"""HTTP API のテスト

FakeScreenSource に接続したトラッカーを AppState に注入して検証する。
"""

from unittest.mock import patch

import pytest
from conftest import FakeScreenSource
from fastapi.testclient import TestClient

from agentrelay.api import app
from agentrelay.api.dependencies import AppState, create_backend
from agentrelay.core import (
    AgentRelaySettings,
    ConversationStatus,
    ConversationTracker,
    DefaultMessageFormatter,
    EventEmitter,
)


@pytest.fixture
def fake_screen():
    return FakeScreenSource("Welcome\nprompt> ")


@pytest.fixture
def injected_tracker(fake_screen, clock):
    """AppState に注入するトラッカー（時計は止めておく）"""
    tracker = ConversationTracker(fake_screen, DefaultMessageFormatter(), clock=clock)
    tracker.poll()
    AppState.get_instance().backend = tracker
    return tracker


@pytest.fixture
def client(injected_tracker):
    """ライフサイクル付きのテストクライアント"""
    with patch("agentrelay.api.server.get_settings", return_value=AgentRelaySettings()):
        with TestClient(app) as c:
            yield c


class TestMessagesEndpoint:
    """GET /messages"""

    def test_initial_screen_message(self, client):
        """最初の画面がエージェントメッセージとして返る"""
        # Act
        response = client.get("/messages")

        # Assert
        assert response.status_code == 200
        messages = response.json()["messages"]
        assert len(messages) == 1
        assert messages[0]["id"] == 0
        assert messages[0]["role"] == "agent"
        assert messages[0]["content"] == "Welcome"
        assert "time" in messages[0]


class TestStatusEndpoint:
    """GET /status"""

    def test_stable_initially(self, client):
        response = client.get("/status")
        assert response.status_code == 200
        assert response.json() == {"status": "stable"}


class TestSendMessageEndpoint:
    """POST /message"""

    def test_user_message_accepted(self, client, injected_tracker):
        """送信が受理され、状態が running になる"""
        # Act
        response = client.post("/message", json={"type": "user", "content": "ping"})

        # Assert
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert client.get("/status").json() == {"status": "running"}
        messages = client.get("/messages").json()["messages"]
        assert messages[-1]["role"] == "user"
        assert messages[-1]["content"] == "ping"

    def test_busy_returns_409(self, client):
        """ターン進行中の送信は 409"""
        # Arrange
        client.post("/message", json={"type": "user", "content": "first"})

        # Act
        response = client.post("/message", json={"type": "user", "content": "second"})

        # Assert
        assert response.status_code == 409
        assert "running" in response.json()["detail"]
        contents = [m["content"] for m in client.get("/messages").json()["messages"]]
        assert "second" not in contents

    def test_empty_content_returns_400(self, client):
        """空の送信は 400"""
        response = client.post("/message", json={"type": "user", "content": "   "})
        assert response.status_code == 400

    def test_invalid_type_returns_422(self, client):
        """未知の type はバリデーションエラー"""
        response = client.post("/message", json={"type": "shout", "content": "hi"})
        assert response.status_code == 422

    def test_missing_content_returns_422(self, client):
        response = client.post("/message", json={"type": "user"})
        assert response.status_code == 422

    def test_raw_message_does_not_change_conversation(self, client, injected_tracker):
        """raw 送信は会話にも状態にも影響しない"""
        # Act
        response = client.post("/message", json={"type": "raw", "content": "\x03"})

        # Assert
        assert response.status_code == 200
        assert client.get("/status").json() == {"status": "stable"}
        assert len(client.get("/messages").json()["messages"]) == 1
        assert injected_tracker.status() == ConversationStatus.STABLE

    def test_raw_write_failure_returns_503(self, client, fake_screen):
        """raw の書き込みに失敗したら 503"""
        # Arrange
        fake_screen.fail_writes = True

        # Act
        response = client.post("/message", json={"type": "raw", "content": "\x03"})

        # Assert
        assert response.status_code == 503
        assert "pane is gone" in response.json()["detail"]


class TestHealthEndpoint:
    """GET /health"""

    def test_reports_backend(self, client):
        # Act
        response = client.get("/health")

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["backend"] == "terminal"
        assert data["agent_status"] == "stable"

    def test_without_backend(self):
        """バックエンド未設定でもヘルスチェックは応答する"""
        # Act
        response = TestClient(app).get("/health")

        # Assert
        assert response.status_code == 200
        assert response.json()["backend"] is None


class TestNoBackend:
    """バックエンド未設定時"""

    @pytest.mark.parametrize("path", ["/messages", "/status"])
    def test_get_returns_503(self, path):
        """ライフサイクル外（バックエンドなし）では 503"""
        response = TestClient(app).get(path)
        assert response.status_code == 503

    def test_post_returns_503(self):
        response = TestClient(app).post("/message", json={"type": "user", "content": "hi"})
        assert response.status_code == 503

    def test_events_returns_503_without_emitter(self):
        response = TestClient(app).get("/events")
        assert response.status_code == 503


class TestLifespan:
    """起動・停止処理"""

    def test_lifespan_wires_emitter_and_loop(self, injected_tracker):
        """起動時にエミッターとスナップショットループが用意され、停止時に片付く"""
        # Arrange
        settings = AgentRelaySettings()
        settings.emitter.keepalive_seconds = 3.0
        state = AppState.get_instance()

        # Act
        with patch("agentrelay.api.server.get_settings", return_value=settings):
            with TestClient(app):
                assert isinstance(state.emitter, EventEmitter)
                assert state.snapshot_loop is not None
                assert state.keepalive_seconds == 3.0

        # Assert: 注入されたバックエンドは残る
        assert state.backend is injected_tracker
        assert state.snapshot_loop is None


class TestCreateBackend:
    """create_backend のテスト"""

    @pytest.mark.asyncio
    async def test_terminal_requires_target(self):
        """端末バックエンドで tmux ターゲット未指定なら ValueError"""
        with pytest.raises(ValueError):
            await create_backend(AgentRelaySettings())

    @pytest.mark.asyncio
    async def test_terminal_backend_uses_settings(self):
        """設定の間隔とフォーマッタでトラッカーを構築"""
        # Arrange
        settings = AgentRelaySettings()
        settings.agent.tmux_target = "agent:0"
        settings.agent.type = "claude"
        settings.tracker.snapshot_interval_ms = 50
        settings.tracker.stability_window_seconds = 1.5

        # Act
        with patch("agentrelay.api.dependencies.pane_exists", return_value=True):
            backend = await create_backend(settings)

        # Assert
        assert isinstance(backend, ConversationTracker)
        assert backend.snapshot_interval.total_seconds() == 0.05
        assert backend.stability_window.total_seconds() == 1.5
