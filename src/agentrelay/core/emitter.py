"""イベントエミッター

会話の状態スナップショットを前回配信時と比較し、変化分だけを
status_change / message_update / screen_update イベントとして全購読者に配信する。

購読者ごとに上限付きキューを持ち、キューが満杯なら黙って捨てる。
ペイロードは常に最新の完全な値なので、次のイベントで自然に追いつく。
全メソッドはイベントループ上から呼ぶこと。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import StrEnum
from itertools import count
from typing import Any

from .models import ConversationMessage, ConversationStatus

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1024


class EventType(StrEnum):
    """イベント種別"""

    MESSAGE_UPDATE = "message_update"
    STATUS_CHANGE = "status_change"
    SCREEN_UPDATE = "screen_update"


class SubscriptionStream(StrEnum):
    """購読するストリーム

    - CONVERSATION: status_change と message_update
    - SCREEN: screen_update のみ（デバッグ用）
    """

    CONVERSATION = "conversation"
    SCREEN = "screen"


_STREAM_EVENTS: dict[SubscriptionStream, frozenset[EventType]] = {
    SubscriptionStream.CONVERSATION: frozenset({EventType.STATUS_CHANGE, EventType.MESSAGE_UPDATE}),
    SubscriptionStream.SCREEN: frozenset({EventType.SCREEN_UPDATE}),
}


@dataclass(frozen=True)
class Event:
    """配信イベント（不変）"""

    type: EventType
    payload: dict[str, Any]
    sequence: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": str(self.type), "payload": self.payload, "sequence": self.sequence}


@dataclass
class Subscriber:
    """購読者

    キューは購読者の配信タスクだけが取り出し、エミッターだけが投入する。
    """

    id: int
    stream: SubscriptionStream
    queue: asyncio.Queue[Event]
    done: asyncio.Event = field(default_factory=asyncio.Event)

    def accepts(self, event_type: EventType) -> bool:
        return event_type in _STREAM_EVENTS[self.stream]

    async def next_event(self, timeout: float | None = None) -> Event | None:
        """次のイベントを待つ

        Returns:
            イベント。購読解除済みなら None

        Raises:
            TimeoutError: timeout 秒以内にイベントが来なかった場合
        """
        if self.done.is_set():
            return None
        getter = asyncio.ensure_future(self.queue.get())
        closer = asyncio.ensure_future(self.done.wait())
        try:
            finished, _ = await asyncio.wait(
                {getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (getter, closer):
                if not task.done():
                    task.cancel()
        if getter in finished:
            return getter.result()
        if closer in finished:
            return None
        raise TimeoutError


class EventEmitter:
    """状態変化を購読者へファンアウトする

    最後に配信した status / messages / screen を保持し、
    新しい購読者にはそこから再構成したリプレイを返す（履歴は持たない）。
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._subscriber_ids = count(1)
        self._sequence = count(1)

        self._status = ConversationStatus.STABLE
        self._messages: dict[int, ConversationMessage] = {}
        self._screen = ""

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _make_event(self, event_type: EventType, payload: dict[str, Any]) -> Event:
        return Event(type=event_type, payload=payload, sequence=next(self._sequence))

    @staticmethod
    def _status_payload(status: ConversationStatus) -> dict[str, Any]:
        return {"status": str(status.to_agent_status())}

    def _broadcast(self, event: Event) -> None:
        """非ブロッキングで全購読者に投入（満杯なら破棄）"""
        for subscriber in self._subscribers.values():
            if not subscriber.accepts(event.type):
                continue
            try:
                subscriber.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(
                    f"キュー満杯のためイベントを破棄: subscriber={subscriber.id}, "
                    f"type={event.type}, sequence={event.sequence}"
                )

    # --- 購読 ---

    def subscribe(
        self, stream: SubscriptionStream = SubscriptionStream.CONVERSATION
    ) -> tuple[Subscriber, list[Event]]:
        """購読を開始

        Returns:
            (購読者, 現在の状態を再構成するリプレイイベント列)
        """
        subscriber = Subscriber(
            id=next(self._subscriber_ids),
            stream=stream,
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        self._subscribers[subscriber.id] = subscriber

        replay: list[Event] = []
        if stream == SubscriptionStream.CONVERSATION:
            replay.append(
                self._make_event(EventType.STATUS_CHANGE, self._status_payload(self._status))
            )
            for message_id in sorted(self._messages):
                replay.append(
                    self._make_event(
                        EventType.MESSAGE_UPDATE, self._messages[message_id].to_dict()
                    )
                )
        else:
            replay.append(self._make_event(EventType.SCREEN_UPDATE, {"screen": self._screen}))

        logger.info(f"購読開始: subscriber={subscriber.id}, stream={stream}")
        return subscriber, replay

    def unsubscribe(self, subscriber_id: int) -> None:
        """購読を解除（何度呼んでもよい）"""
        subscriber = self._subscribers.pop(subscriber_id, None)
        if subscriber is None:
            return
        subscriber.done.set()
        logger.info(f"購読解除: subscriber={subscriber_id}")

    def close(self) -> None:
        """全購読者を解除"""
        for subscriber_id in list(self._subscribers):
            self.unsubscribe(subscriber_id)

    # --- 変化検出と配信 ---

    def update_status_and_emit_changes(self, status: ConversationStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self._broadcast(self._make_event(EventType.STATUS_CHANGE, self._status_payload(status)))

    def update_messages_and_emit_changes(self, messages: list[ConversationMessage]) -> None:
        for message in messages:
            previous = self._messages.get(message.id)
            if previous is not None and previous.content == message.content:
                continue
            self._messages[message.id] = replace(message)
            self._broadcast(self._make_event(EventType.MESSAGE_UPDATE, message.to_dict()))

    def update_screen_and_emit_changes(self, screen: str) -> None:
        if screen == self._screen:
            return
        self._screen = screen
        self._broadcast(self._make_event(EventType.SCREEN_UPDATE, {"screen": screen}))
