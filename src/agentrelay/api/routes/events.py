"""Events エンドポイント

会話イベントと画面のリアルタイム配信（SSE）。
接続直後に現在の状態を再構成するイベントを送り、以降は変化分のみを送る。
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from ...core import Event, SubscriptionStream
from ..dependencies import AppState, AppStateDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: Event) -> str:
    """イベントを名前付きSSEフレームに変換"""
    data = json.dumps(event.payload, ensure_ascii=False)
    return f"id: {event.sequence}\nevent: {event.type}\ndata: {data}\n\n"


def _stream(state: AppState, stream: SubscriptionStream) -> StreamingResponse:
    emitter = state.require_emitter()
    keepalive = state.keepalive_seconds

    async def event_generator() -> AsyncGenerator[str, None]:
        subscriber, replay = emitter.subscribe(stream)
        try:
            for event in replay:
                yield format_sse(event)
            while True:
                try:
                    event = await subscriber.next_event(timeout=keepalive)
                except TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if event is None:
                    logger.info(f"購読が終了しました: subscriber={subscriber.id}")
                    return
                yield format_sse(event)
        finally:
            emitter.unsubscribe(subscriber.id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/events")
async def subscribe_events(state: AppStateDep) -> StreamingResponse:
    """会話イベントをSSEで配信

    イベント:
    - status_change: {"status": "stable" | "running"}
    - message_update: メッセージ全体（差分ではない）

    エージェント実行中は最後のメッセージが頻繁に更新され、そのたびに送信される。
    """
    return _stream(state, SubscriptionStream.CONVERSATION)


@router.get("/internal/screen", include_in_schema=False)
async def subscribe_screen(state: AppStateDep) -> StreamingResponse:
    """端末画面をSSEで配信（デバッグ用）"""
    return _stream(state, SubscriptionStream.SCREEN)
