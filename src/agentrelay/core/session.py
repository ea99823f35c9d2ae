"""REST セッションバックエンド

端末ではなく HTTP のセッション API を持つエージェント（OpenCode 形式）向け。
画面差分は不要で、送信した1メッセージに対して返答を1メッセージとして記録する。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any
from uuid import uuid4

import httpx

from .errors import AgentBusyError, EmptyInputError, UnsupportedOperationError
from .models import (
    ConversationMessage,
    ConversationRole,
    ConversationStatus,
    MessageKind,
    utcnow,
)
from .rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODEL = "claude-3-5-sonnet-20241022"


class SessionClient:
    """セッション API の HTTP クライアント"""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:4096",
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def create_session(self) -> dict[str, Any]:
        """セッションを作成"""
        response = await self._client.post("/session", json={})
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def delete_session(self, session_id: str) -> None:
        response = await self._client.delete(f"/session/{session_id}")
        response.raise_for_status()

    async def get_providers(self) -> dict[str, Any]:
        """利用可能なプロバイダー一覧を取得"""
        response = await self._client.get("/config/providers")
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data

    async def send_message(
        self, session_id: str, text: str, provider_id: str, model_id: str
    ) -> dict[str, Any]:
        """メッセージを送信し、返答を待つ"""
        response = await self._client.post(
            f"/session/{session_id}/message",
            json={
                "messageID": f"msg_{uuid4().hex[:16]}",
                "providerID": provider_id,
                "modelID": model_id,
                "parts": [{"type": "text", "text": text}],
            },
        )
        response.raise_for_status()
        data: dict[str, Any] = response.json()
        return data


def extract_reply_text(reply: dict[str, Any]) -> str:
    """返答のテキスト断片を改行で連結"""
    parts = reply.get("parts")
    if parts is None:
        parts = reply.get("message", {}).get("parts", [])
    texts = []
    for part in parts:
        text = part.get("text") or part.get("content") or ""
        if text:
            texts.append(text)
    return "\n".join(texts)


class SessionConversation:
    """REST セッションを ConversationBackend として扱う"""

    def __init__(
        self,
        client: SessionClient,
        provider_id: str | None = None,
        model_id: str | None = None,
    ):
        self._client = client
        self.provider_id = provider_id
        self.model_id = model_id
        self.session_id: str | None = None

        self._lock = ReadWriteLock()
        self._messages: list[ConversationMessage] = []
        self._status = ConversationStatus.STABLE
        self._pending: set[asyncio.Task[None]] = set()

    async def open(self) -> None:
        """セッションを作成し、既定のプロバイダー/モデルを決める"""
        session = await self._client.create_session()
        self.session_id = session["id"]

        if self.provider_id is None or self.model_id is None:
            try:
                self._resolve_defaults(await self._client.get_providers())
            except httpx.HTTPError as e:
                logger.warning(f"プロバイダー一覧の取得に失敗。既定値を使用: {e}")
        self.provider_id = self.provider_id or DEFAULT_PROVIDER
        self.model_id = self.model_id or DEFAULT_MODEL
        logger.info(
            f"セッション作成: session={self.session_id}, "
            f"provider={self.provider_id}, model={self.model_id}"
        )

    def _resolve_defaults(self, providers: dict[str, Any]) -> None:
        entries = providers.get("providers") or []
        if not entries:
            return
        first = entries[0]
        if self.provider_id is None:
            self.provider_id = first.get("id")
        if self.model_id is None:
            models = first.get("models") or {}
            self.model_id = next(iter(models), None)

    async def close(self) -> None:
        """セッションを削除してクライアントを閉じる"""
        if self.session_id is not None:
            try:
                await self._client.delete_session(self.session_id)
            except httpx.HTTPError as e:
                logger.warning(f"セッション削除に失敗: {e}")
        await self._client.close()

    # --- ConversationBackend ---

    def messages(self) -> list[ConversationMessage]:
        with self._lock.read():
            return [replace(m) for m in self._messages]

    def status(self) -> ConversationStatus:
        with self._lock.read():
            return self._status

    def screen(self) -> str:
        return ""

    async def start_polling(self) -> None:
        pass

    async def stop_polling(self) -> None:
        pass

    async def send_message(self, text: str, kind: MessageKind = MessageKind.USER) -> None:
        """メッセージを送信（返答はバックグラウンドで受け取る）

        Raises:
            UnsupportedOperationError: raw 送信
            AgentBusyError: 返答待ち
            EmptyInputError: 送信内容が空
        """
        if kind == MessageKind.RAW:
            raise UnsupportedOperationError("raw messages are not supported by session backends")

        content = text.strip()
        with self._lock.write():
            if self._status == ConversationStatus.CHANGING:
                raise AgentBusyError()
            if not content:
                raise EmptyInputError()
            self._append(ConversationRole.USER, content)
            self._status = ConversationStatus.CHANGING

        task = asyncio.create_task(self._exchange(content))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _append(self, role: ConversationRole, content: str) -> None:
        self._messages.append(
            ConversationMessage(id=len(self._messages), role=role, content=content, timestamp=utcnow())
        )

    async def _exchange(self, content: str) -> None:
        if self.session_id is None or self.provider_id is None or self.model_id is None:
            reply_text = "Error: session is not open"
            logger.error("セッション未作成のまま送信された")
        else:
            try:
                reply = await self._client.send_message(
                    self.session_id, content, self.provider_id, self.model_id
                )
                reply_text = extract_reply_text(reply)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"セッションへの送信に失敗: {e}")
                reply_text = f"Error: {e}"

        with self._lock.write():
            if reply_text:
                self._append(ConversationRole.AGENT, reply_text)
            self._status = ConversationStatus.STABLE
