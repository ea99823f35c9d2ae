"""System エンドポイント

ヘルスチェックなどシステム系のエンドポイント。
"""

from fastapi import APIRouter

from ... import __version__
from ...core import ConversationTracker, SessionConversation
from ..dependencies import AppStateDep
from ..models import HealthResponse

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health_check(state: AppStateDep) -> HealthResponse:
    """ヘルスチェック"""
    backend = state.backend
    if isinstance(backend, ConversationTracker):
        kind: str | None = "terminal"
    elif isinstance(backend, SessionConversation):
        kind = "session"
    elif backend is not None:
        kind = type(backend).__name__
    else:
        kind = None
    return HealthResponse(
        status="healthy",
        version=__version__,
        backend=kind,
        agent_status=str(backend.status().to_agent_status()) if backend else None,
    )
