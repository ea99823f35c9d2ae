"""agentrelay テスト設定"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from agentrelay.core import (
    ConversationTracker,
    DefaultMessageFormatter,
    ScreenSourceUnavailableError,
)


class FakeScreenSource:
    """テスト用の画面ソース

    text を書き換えると次の read_screen に反映される。
    """

    def __init__(self, text: str = "") -> None:
        self.text = text
        self.written: list[bytes] = []
        self.fail_writes = False

    def read_screen(self) -> str:
        return self.text

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise ScreenSourceUnavailableError("pane is gone")
        self.written.append(data)


class FakeClock:
    """手動で進める時計"""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def drain_deliveries(tracker: ConversationTracker) -> None:
    """送信タスクの完了を待つ"""
    if tracker._deliveries:
        await asyncio.gather(*list(tracker._deliveries))


@pytest.fixture
def screen():
    """テスト用画面ソース"""
    return FakeScreenSource()


@pytest.fixture
def clock():
    """テスト用時計"""
    return FakeClock()


@pytest.fixture
def tracker(screen, clock):
    """FakeScreenSource に接続したトラッカー"""
    return ConversationTracker(
        screen=screen,
        formatter=DefaultMessageFormatter(),
        stability_window=timedelta(seconds=2),
        clock=clock,
    )


@pytest.fixture(autouse=True)
def reset_app_state():
    """各テストでAppStateをリセット"""
    from agentrelay.api.dependencies import AppState

    AppState.reset()
    yield
    AppState.reset()
