"""agentrelay HTTP API

FastAPIベースの HTTP/SSE API。
会話履歴の取得、メッセージ送信、状態取得、イベント購読を提供。
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventEmitter, SessionConversation, SnapshotLoop, get_settings
from .dependencies import create_backend, get_app_state
from .routes import events_router, messages_router, system_router

logger = logging.getLogger(__name__)

# --- ライフサイクル ---


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """アプリケーションライフサイクル"""
    # 起動時
    settings = get_settings()
    state = get_app_state()

    # テストなどで注入済みのバックエンドはそのまま使う
    owns_backend = state.backend is None
    if owns_backend:
        state.backend = await create_backend(settings)
    if state.emitter is None:
        state.emitter = EventEmitter(queue_size=settings.emitter.queue_size)
    state.keepalive_seconds = settings.emitter.keepalive_seconds

    backend = state.backend
    state.snapshot_loop = SnapshotLoop(
        backend,
        state.emitter,
        interval_seconds=settings.tracker.snapshot_interval_ms / 1000,
    )
    await backend.start_polling()
    await state.snapshot_loop.start()
    logger.info(f"agentrelay 起動: backend={type(backend).__name__}")

    yield

    # シャットダウン時
    await state.snapshot_loop.stop()
    await backend.stop_polling()
    state.emitter.close()
    if owns_backend:
        if isinstance(backend, SessionConversation):
            await backend.close()
        state.backend = None
    state.snapshot_loop = None


# --- FastAPIアプリケーション ---

app = FastAPI(
    title="agentrelay",
    description="画面指向のCLIエージェントを操作する HTTP API",
    version=__version__,
    lifespan=lifespan,
)

# CORS設定（設定ファイルから読み込み）
settings = get_settings()
cors_config = settings.server.cors
if cors_config.enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_config.allow_origins,
        allow_credentials=cors_config.allow_credentials,
        allow_methods=cors_config.allow_methods,
        allow_headers=cors_config.allow_headers,
        expose_headers=["Link"],
        max_age=300,
    )

# ルーターを登録
app.include_router(system_router)
app.include_router(messages_router)
app.include_router(events_router)
