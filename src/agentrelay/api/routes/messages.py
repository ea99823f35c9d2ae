"""Messages エンドポイント

会話履歴の取得、メッセージ送信、エージェント状態の取得。
"""

from fastapi import APIRouter, HTTPException, status

from ...core import (
    AgentBusyError,
    EmptyInputError,
    MessageKind,
    ScreenSourceUnavailableError,
    UnsupportedOperationError,
)
from ..dependencies import AppStateDep
from ..models import (
    Message,
    MessagesResponse,
    SendMessageRequest,
    SendMessageResponse,
    StatusResponse,
)

router = APIRouter(tags=["Conversation"])


@router.get("/messages", response_model=MessagesResponse)
async def get_messages(state: AppStateDep) -> MessagesResponse:
    """会話履歴を取得"""
    backend = state.require_backend()
    return MessagesResponse(
        messages=[
            Message(id=m.id, role=str(m.role), content=m.content, time=m.timestamp)
            for m in backend.messages()
        ]
    )


@router.post("/message", response_model=SendMessageResponse)
async def create_message(request: SendMessageRequest, state: AppStateDep) -> SendMessageResponse:
    """メッセージを送信

    type=user はエージェントが stable でなければ 409 を返す。
    type=raw は端末への書き込みに失敗すると 503 を返す。
    送信の受理を返すだけで、エージェントの返答は待たない。
    """
    backend = state.require_backend()
    try:
        await backend.send_message(request.content, MessageKind(request.type))
    except AgentBusyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except (EmptyInputError, UnsupportedOperationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except ScreenSourceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return SendMessageResponse(ok=True)


@router.get("/status", response_model=StatusResponse)
async def get_status(state: AppStateDep) -> StatusResponse:
    """エージェントの状態を取得"""
    backend = state.require_backend()
    return StatusResponse(status=str(backend.status().to_agent_status()))
