"""API リクエスト/レスポンスモデル

FastAPIエンドポイントで使用するPydanticモデル。
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

# --- メッセージ モデル ---


class Message(BaseModel):
    """会話メッセージ"""

    id: int = Field(..., description="作成順に増加する一意なID")
    role: Literal["user", "agent"]
    content: str
    time: datetime = Field(..., description="最終更新時刻")


class MessagesResponse(BaseModel):
    """会話履歴レスポンス"""

    messages: list[Message]


class SendMessageRequest(BaseModel):
    """メッセージ送信リクエスト

    type=user はエージェントが stable の時のみ受け付ける。
    type=raw は端末にそのまま書き込む（制御キー等）。
    """

    type: Literal["user", "raw"] = Field(..., description="メッセージ種別")
    content: str = Field(..., description="メッセージ本文")


class SendMessageResponse(BaseModel):
    """メッセージ送信レスポンス"""

    ok: bool = True


# --- 状態 モデル ---


class StatusResponse(BaseModel):
    """エージェント状態レスポンス"""

    status: Literal["stable", "running"]


class HealthResponse(BaseModel):
    """ヘルスチェックレスポンス"""

    status: str
    version: str
    backend: str | None
    agent_status: Literal["stable", "running"] | None = None
