"""会話トラッカー

端末画面のスナップショットを定期的に取得し、送信前の画面（ベースライン）との
差分からエージェントの返答を切り出して、ユーザー/エージェントのメッセージ列に変換する。

状態遷移:
- STABLE -> CHANGING: send_message 時
- CHANGING -> STABLE: 画面が安定ウィンドウの間変化しなかった時、または書き込み失敗時

1ターンのエージェントメッセージは1つだけで、ポーリングごとに内容が上書きされる。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta

from .errors import AgentBusyError, EmptyInputError, ScreenSourceUnavailableError
from .models import (
    ConversationMessage,
    ConversationRole,
    ConversationStatus,
    MessageKind,
    MessagePart,
    Snapshot,
    utcnow,
)
from .msgfmt import MessageFormatter
from .rwlock import ReadWriteLock
from .screen import ScreenSource

logger = logging.getLogger(__name__)

# 約40fps（スナップショット取得自体にも時間がかかるので実際はやや少ない）
DEFAULT_SNAPSHOT_INTERVAL = timedelta(milliseconds=25)
DEFAULT_STABILITY_WINDOW = timedelta(seconds=2)


def find_new_output(baseline: str, current: str) -> str:
    """ベースライン以降に追加された画面領域を返す

    画面は追記のみという前提で、ベースラインが現在画面の先頭に残っていればその続きを返す。
    スクロールや再描画でベースラインが崩れた場合は、ベースラインに存在しない最初の行以降を返す。
    全行がベースラインに含まれる場合は画面全体を返す。
    """
    if current.startswith(baseline):
        return current[len(baseline) :]

    # capture-pane は行末の空白を落とすことがある
    trimmed = baseline.rstrip()
    if current.startswith(trimmed):
        return current[len(trimmed) :]

    logger.debug("ベースラインが画面先頭に見つからないため行単位の差分にフォールバック")
    baseline_lines = set(baseline.split("\n"))
    current_lines = current.split("\n")
    for index, line in enumerate(current_lines):
        if line.strip() and line not in baseline_lines:
            return "\n".join(current_lines[index:])
    return current


class ConversationTracker:
    """端末画面の差分から会話を組み立てるトラッカー

    状態は ReadWriteLock で保護し、アクセサは常にコピーを返す。
    """

    def __init__(
        self,
        screen: ScreenSource,
        formatter: MessageFormatter,
        snapshot_interval: timedelta = DEFAULT_SNAPSHOT_INTERVAL,
        stability_window: timedelta = DEFAULT_STABILITY_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            screen: 画面ソース
            formatter: 入力変換と装飾除去を行うフォーマッタ
            snapshot_interval: ポーリング間隔
            stability_window: この時間画面が変化しなければターン完了とみなす
            clock: 現在時刻の取得関数（テストで差し替え）
        """
        self._screen = screen
        self._formatter = formatter
        self.snapshot_interval = snapshot_interval
        self.stability_window = stability_window
        self._clock = clock

        self._lock = ReadWriteLock()
        self._messages: list[ConversationMessage] = []
        self._status = ConversationStatus.STABLE
        self._baseline: Snapshot | None = None
        self._last_snapshot: Snapshot | None = None
        self._last_change_at: datetime | None = None
        # 現在上書き中のエージェントメッセージの位置
        self._live_agent_index: int | None = None
        self._last_user_input = ""
        self._user_has_spoken = False

        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[None]] = set()
        self._last_delivery: asyncio.Task[None] | None = None

    # --- アクセサ ---

    def messages(self) -> list[ConversationMessage]:
        """メッセージ一覧のコピー"""
        with self._lock.read():
            return [replace(m) for m in self._messages]

    def status(self) -> ConversationStatus:
        with self._lock.read():
            return self._status

    def screen(self) -> str:
        """最後に観測した画面テキスト"""
        with self._lock.read():
            return self._last_snapshot.text if self._last_snapshot else ""

    # --- 送信 ---

    async def send_message(self, text: str, kind: MessageKind = MessageKind.USER) -> None:
        """メッセージを送信

        user は状態を更新して書き込みをバックグラウンドに投げた時点で戻る。
        エージェントの返答は待たない。
        raw は書き込みの完了まで待つ。
        書き込みは送信順に1つずつ行う。

        Raises:
            AgentBusyError: ターン進行中
            EmptyInputError: 送信内容が空
            ScreenSourceUnavailableError: raw の書き込みに失敗
        """
        if kind == MessageKind.RAW:
            if not text:
                raise EmptyInputError()
            # 呼び出し元が切断されても書き込みは完了させる
            await asyncio.shield(self._dispatch([MessagePart(text)], record_failure=False))
            return

        if self.status() == ConversationStatus.CHANGING:
            raise AgentBusyError()
        parts = self._formatter.format_input(text)
        content = "".join(p.content for p in parts if not p.hidden)
        if not parts or not content:
            raise EmptyInputError()

        # 書き込み前の画面をベースラインにする（ロック外で取得）
        try:
            baseline_text: str | None = await asyncio.to_thread(self._screen.read_screen)
        except ScreenSourceUnavailableError:
            logger.warning("ベースライン取得に失敗。最後の観測画面で代用")
            baseline_text = None

        with self._lock.write():
            if self._status == ConversationStatus.CHANGING:
                raise AgentBusyError()

            now = self._clock()
            if baseline_text is not None:
                self._baseline = Snapshot(baseline_text, now)
            else:
                self._baseline = self._last_snapshot or Snapshot("", now)
            self._messages.append(
                ConversationMessage(
                    id=len(self._messages),
                    role=ConversationRole.USER,
                    content=content,
                    timestamp=now,
                )
            )
            self._status = ConversationStatus.CHANGING
            self._last_change_at = now
            self._live_agent_index = None
            self._last_user_input = content
            self._user_has_spoken = True

        logger.info(f"ターン開始: {len(content)}文字")
        self._dispatch(parts, record_failure=True)

    def _dispatch(self, parts: list[MessagePart], record_failure: bool) -> asyncio.Task[None]:
        """書き込みを独立したタスクとして実行

        各タスクは直前のタスクの完了を待ってから書き込むため、
        端末には送信順にバイト列が届く。
        """
        previous = self._last_delivery
        task = asyncio.create_task(self._deliver(parts, record_failure, previous))
        self._last_delivery = task
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)
        return task

    async def _deliver(
        self,
        parts: list[MessagePart],
        record_failure: bool,
        previous: asyncio.Task[None] | None,
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            for part in parts:
                await asyncio.to_thread(self._screen.write, part.encode())
        except (ScreenSourceUnavailableError, OSError) as e:
            logger.error(f"エージェントへの書き込みに失敗: {e}")
            if record_failure:
                self._record_failure(e)
                return
            if isinstance(e, ScreenSourceUnavailableError):
                raise
            raise ScreenSourceUnavailableError(str(e)) from e

    def _record_failure(self, error: Exception) -> None:
        """書き込み失敗をエージェントメッセージとして記録し、会話を送信可能に戻す"""
        with self._lock.write():
            now = self._clock()
            self._messages.append(
                ConversationMessage(
                    id=len(self._messages),
                    role=ConversationRole.AGENT,
                    content=f"Error: {error}",
                    timestamp=now,
                )
            )
            self._live_agent_index = None
            self._status = ConversationStatus.STABLE

    # --- ポーリング ---

    def poll(self) -> None:
        """画面を1回取得して会話状態を更新"""
        text = self._screen.read_screen()
        with self._lock.write():
            self._apply_snapshot(Snapshot(text, self._clock()))

    def _apply_snapshot(self, snapshot: Snapshot) -> None:
        if self._last_snapshot is not None and snapshot.text == self._last_snapshot.text:
            if (
                self._status == ConversationStatus.CHANGING
                and self._last_change_at is not None
                and snapshot.taken_at - self._last_change_at >= self.stability_window
            ):
                self._status = ConversationStatus.STABLE
                self._live_agent_index = None
                logger.info("画面が安定したためターン完了")
            return

        self._last_snapshot = snapshot
        self._last_change_at = snapshot.taken_at

        if not self._user_has_spoken:
            # 最初の送信前は画面全体を最初のエージェントメッセージとみなす
            self._upsert_agent_message(self._formatter.strip_chrome(snapshot.text, ""), snapshot)
            return

        if self._status != ConversationStatus.CHANGING or self._baseline is None:
            return

        region = find_new_output(self._baseline.text, snapshot.text)
        content = self._formatter.strip_chrome(region, self._last_user_input)
        self._upsert_agent_message(content, snapshot)

    def _upsert_agent_message(self, content: str, snapshot: Snapshot) -> None:
        """ターンのエージェントメッセージを作成、または内容を上書き"""
        if not content:
            return
        if self._live_agent_index is None:
            self._messages.append(
                ConversationMessage(
                    id=len(self._messages),
                    role=ConversationRole.AGENT,
                    content=content,
                    timestamp=snapshot.taken_at,
                )
            )
            self._live_agent_index = len(self._messages) - 1
            return

        message = self._messages[self._live_agent_index]
        if message.content != content:
            message.content = content
            message.timestamp = snapshot.taken_at

    async def start_polling(self) -> None:
        """ポーリングループを開始"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())

    async def stop_polling(self) -> None:
        """ポーリングループを停止"""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _poll_loop(self) -> None:
        interval = self.snapshot_interval.total_seconds()
        while self._running:
            try:
                await asyncio.to_thread(self.poll)
            except ScreenSourceUnavailableError as e:
                logger.debug(f"画面取得に失敗: {e}")
            await asyncio.sleep(interval)
