"""agentrelay Core モジュール

会話の組み立てと配信を提供:
- Tracker: 端末画面の差分から会話メッセージを組み立てる
- Emitter: 状態変化を購読者へ配信する
- Session: REST セッション型エージェント用バックエンド
- Config: 設定管理
"""

from .backend import ConversationBackend
from .config import AgentRelaySettings, get_settings, reload_settings
from .emitter import Event, EventEmitter, EventType, Subscriber, SubscriptionStream
from .errors import (
    AgentBusyError,
    AgentRelayError,
    EmptyInputError,
    ScreenSourceUnavailableError,
    UnsupportedOperationError,
)
from .models import (
    AgentStatus,
    ConversationMessage,
    ConversationRole,
    ConversationStatus,
    MessageKind,
    MessagePart,
    Snapshot,
)
from .msgfmt import (
    AgentType,
    ClaudeMessageFormatter,
    DefaultMessageFormatter,
    MessageFormatter,
    get_formatter,
)
from .screen import ScreenSource, TmuxScreenSource
from .session import SessionClient, SessionConversation
from .snapshot_loop import SnapshotLoop
from .tracker import ConversationTracker

__all__ = [
    # Config
    "get_settings",
    "reload_settings",
    "AgentRelaySettings",
    # Models
    "AgentStatus",
    "ConversationMessage",
    "ConversationRole",
    "ConversationStatus",
    "MessageKind",
    "MessagePart",
    "Snapshot",
    # Errors
    "AgentRelayError",
    "AgentBusyError",
    "EmptyInputError",
    "ScreenSourceUnavailableError",
    "UnsupportedOperationError",
    # Backends
    "ConversationBackend",
    "ConversationTracker",
    "SessionClient",
    "SessionConversation",
    "ScreenSource",
    "TmuxScreenSource",
    # Formatting
    "AgentType",
    "MessageFormatter",
    "DefaultMessageFormatter",
    "ClaudeMessageFormatter",
    "get_formatter",
    # Events
    "Event",
    "EventEmitter",
    "EventType",
    "Subscriber",
    "SubscriptionStream",
    "SnapshotLoop",
]
