"""SSE エンドポイントのテスト

TestClient はストリーミングレスポンスをバッファするため、
ルート関数を直接呼び出して body_iterator を読む。
"""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from agentrelay.api.dependencies import AppState
from agentrelay.api.routes.events import format_sse, subscribe_events, subscribe_screen
from agentrelay.core import (
    ConversationMessage,
    ConversationRole,
    ConversationStatus,
    Event,
    EventEmitter,
    EventType,
)


def parse_frame(frame: str) -> tuple[str, dict]:
    """SSEフレームから (event名, data) を取り出す"""
    fields = dict(line.split(": ", 1) for line in frame.strip().split("\n"))
    return fields["event"], json.loads(fields["data"])


@pytest.fixture
def state():
    state = AppState.get_instance()
    state.emitter = EventEmitter()
    state.keepalive_seconds = 15.0
    return state


class TestFormatSSE:
    """format_sse のテスト"""

    def test_named_event_frame(self):
        """id / event / data の順で空行終端"""
        # Arrange
        event = Event(type=EventType.STATUS_CHANGE, payload={"status": "running"}, sequence=7)

        # Act
        frame = format_sse(event)

        # Assert
        assert frame == 'id: 7\nevent: status_change\ndata: {"status": "running"}\n\n'

    def test_multiline_content_stays_on_one_data_line(self):
        """改行を含む内容も data 1行に収まる"""
        # Arrange
        event = Event(
            type=EventType.SCREEN_UPDATE, payload={"screen": "a\nb 日本語"}, sequence=1
        )

        # Act
        frame = format_sse(event)

        # Assert
        assert frame.count("\n") == 4
        assert "日本語" in frame


class TestConversationStream:
    """GET /events"""

    @pytest.mark.asyncio
    async def test_headers(self, state):
        """SSE用のヘッダー"""
        # Act
        response = await subscribe_events(state)

        # Assert
        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"

    @pytest.mark.asyncio
    async def test_replay_then_live_events(self, state):
        """接続直後に現在状態、その後は変化分を受け取る"""
        # Arrange
        emitter = state.emitter
        emitter.update_messages_and_emit_changes(
            [
                ConversationMessage(
                    id=0,
                    role=ConversationRole.AGENT,
                    content="Welcome",
                    timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
                )
            ]
        )
        response = await subscribe_events(state)
        body = response.body_iterator

        # Act
        first = await body.__anext__()
        second = await body.__anext__()
        emitter.update_status_and_emit_changes(ConversationStatus.CHANGING)
        third = await asyncio.wait_for(body.__anext__(), timeout=1)

        # Assert
        assert parse_frame(first) == ("status_change", {"status": "stable"})
        name, data = parse_frame(second)
        assert name == "message_update"
        assert data["content"] == "Welcome"
        assert data["role"] == "agent"
        assert parse_frame(third) == ("status_change", {"status": "running"})
        await body.aclose()

    @pytest.mark.asyncio
    async def test_screen_events_not_on_conversation_stream(self, state):
        """会話ストリームには画面更新を流さない"""
        # Arrange
        response = await subscribe_events(state)
        body = response.body_iterator
        await body.__anext__()  # リプレイ

        # Act
        state.emitter.update_screen_and_emit_changes("screen text")
        state.emitter.update_status_and_emit_changes(ConversationStatus.CHANGING)
        frame = await asyncio.wait_for(body.__anext__(), timeout=1)

        # Assert
        assert parse_frame(frame)[0] == "status_change"
        await body.aclose()

    @pytest.mark.asyncio
    async def test_keepalive_comment(self, state):
        """イベントがなければ keep-alive コメントを送る"""
        # Arrange
        state.keepalive_seconds = 0.01
        response = await subscribe_events(state)
        body = response.body_iterator
        await body.__anext__()  # リプレイ

        # Act
        frame = await asyncio.wait_for(body.__anext__(), timeout=1)

        # Assert
        assert frame == ": keep-alive\n\n"
        await body.aclose()

    @pytest.mark.asyncio
    async def test_disconnect_unsubscribes(self, state):
        """クライアント切断で購読が解除される"""
        # Arrange
        response = await subscribe_events(state)
        body = response.body_iterator
        await body.__anext__()
        assert state.emitter.subscriber_count == 1

        # Act
        await body.aclose()

        # Assert
        assert state.emitter.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_emitter_close_ends_stream(self, state):
        """エミッター停止でストリームが終了する"""
        # Arrange
        response = await subscribe_events(state)
        body = response.body_iterator
        await body.__anext__()

        # Act
        state.emitter.close()

        # Assert
        with pytest.raises(StopAsyncIteration):
            await body.__anext__()


class TestScreenStream:
    """GET /internal/screen"""

    @pytest.mark.asyncio
    async def test_screen_replay_and_updates(self, state):
        """最新画面のリプレイと更新を受け取る"""
        # Arrange
        state.emitter.update_screen_and_emit_changes("before")
        response = await subscribe_screen(state)
        body = response.body_iterator

        # Act
        first = await body.__anext__()
        state.emitter.update_status_and_emit_changes(ConversationStatus.CHANGING)
        state.emitter.update_screen_and_emit_changes("after")
        second = await asyncio.wait_for(body.__anext__(), timeout=1)

        # Assert
        assert parse_frame(first) == ("screen_update", {"screen": "before"})
        assert parse_frame(second) == ("screen_update", {"screen": "after"})
        await body.aclose()
