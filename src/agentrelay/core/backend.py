"""会話バックエンドのインターフェース

端末差分トラッカー（ConversationTracker）と
REST セッション（SessionConversation）の共通契約。API 層はこれだけに依存する。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import ConversationMessage, ConversationStatus, MessageKind


@runtime_checkable
class ConversationBackend(Protocol):
    """会話バックエンド"""

    async def send_message(self, text: str, kind: MessageKind = MessageKind.USER) -> None: ...

    def messages(self) -> list[ConversationMessage]: ...

    def status(self) -> ConversationStatus: ...

    def screen(self) -> str: ...

    async def start_polling(self) -> None: ...

    async def stop_polling(self) -> None: ...
