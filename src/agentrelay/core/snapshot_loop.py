"""スナップショットループ

バックエンドの状態を一定間隔で読み取り、エミッターに渡して差分を配信する。
1ティック内の投入順は status -> messages -> screen。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from .backend import ConversationBackend
from .emitter import EventEmitter

logger = logging.getLogger(__name__)


class SnapshotLoop:
    """エミッター駆動ループ"""

    def __init__(
        self,
        backend: ConversationBackend,
        emitter: EventEmitter,
        interval_seconds: float = 0.025,
    ):
        self.backend = backend
        self.emitter = emitter
        self.interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    def tick(self) -> None:
        """1ティック分の変化を配信"""
        self.emitter.update_status_and_emit_changes(self.backend.status())
        self.emitter.update_messages_and_emit_changes(self.backend.messages())
        self.emitter.update_screen_and_emit_changes(self.backend.screen())

    async def start(self) -> None:
        """ループを開始"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """ループを停止"""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                self.tick()
            except Exception:
                # 1ティックの失敗でループ全体を止めない
                logger.exception("スナップショットループでエラー")
            await asyncio.sleep(self.interval)
