"""会話モデル

トラッカー・エミッター・API で共有するデータ型。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class ConversationRole(StrEnum):
    """メッセージの発言者"""

    USER = "user"
    AGENT = "agent"


class AgentStatus(StrEnum):
    """API上のエージェント状態"""

    STABLE = "stable"
    RUNNING = "running"


class ConversationStatus(StrEnum):
    """会話の状態

    - STABLE: 進行中のターンなし（送信可能）
    - CHANGING: ターン進行中（送信不可）
    """

    STABLE = "stable"
    CHANGING = "changing"

    def to_agent_status(self) -> AgentStatus:
        """API上の状態表現に変換"""
        if self is ConversationStatus.CHANGING:
            return AgentStatus.RUNNING
        return AgentStatus.STABLE


class MessageKind(StrEnum):
    """送信メッセージの種別

    - USER: フォーマッタを通した通常の入力
    - RAW: フォーマットせずにそのまま書き込むバイト列（制御キー等）
    """

    USER = "user"
    RAW = "raw"


def utcnow() -> datetime:
    """現在時刻（UTC）"""
    return datetime.now(timezone.utc)


@dataclass
class ConversationMessage:
    """会話の1メッセージ

    エージェントのメッセージはターン進行中に内容が上書きされる。
    """

    id: int
    role: ConversationRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """API配信用の辞書に変換"""
        return {
            "id": self.id,
            "role": str(self.role),
            "content": self.content,
            "time": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Snapshot:
    """画面キャプチャ（不変）"""

    text: str
    taken_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class MessagePart:
    """端末に書き込む入力の断片

    hidden な断片（起動用キーや送信キー）はユーザーメッセージの内容に含めない。
    """

    content: str
    hidden: bool = False

    def encode(self) -> bytes:
        """端末に書き込むバイト列"""
        return self.content.encode("utf-8")
