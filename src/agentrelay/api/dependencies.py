"""API 依存性注入

FastAPIの依存性注入パターンでグローバル状態を管理。
テスト時にモックへの差し替えが容易になります。
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, status

from ..core import (
    AgentRelaySettings,
    ConversationBackend,
    ConversationTracker,
    EventEmitter,
    SessionClient,
    SessionConversation,
    TmuxScreenSource,
    get_formatter,
)
from ..core.screen import pane_exists
from ..core.snapshot_loop import SnapshotLoop

logger = logging.getLogger(__name__)


class AppState:
    """アプリケーション状態

    シングルトンパターンで状態を管理。
    テスト時は reset() でリセット可能。
    """

    _instance: AppState | None = None

    def __init__(self) -> None:
        self.backend: ConversationBackend | None = None
        self.emitter: EventEmitter | None = None
        self.snapshot_loop: SnapshotLoop | None = None
        self.keepalive_seconds: float = 15.0

    @classmethod
    def get_instance(cls) -> AppState:
        """シングルトンインスタンスを取得"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """インスタンスをリセット（テスト用）"""
        cls._instance = None

    def require_backend(self) -> ConversationBackend:
        """バックエンドを取得（未設定なら503）"""
        if self.backend is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="no agent backend available",
            )
        return self.backend

    def require_emitter(self) -> EventEmitter:
        """エミッターを取得（未設定なら503）"""
        if self.emitter is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="event emitter is not running",
            )
        return self.emitter


def get_app_state() -> AppState:
    """アプリケーション状態を取得（依存性注入用）"""
    return AppState.get_instance()


# 型エイリアス（FastAPIの Depends で使用）
AppStateDep = Annotated[AppState, Depends(get_app_state)]


async def create_backend(settings: AgentRelaySettings) -> ConversationBackend:
    """設定からバックエンドを構築

    Raises:
        ValueError: 端末バックエンドで tmux ターゲットが未設定
    """
    agent = settings.agent
    if agent.backend == "session":
        conversation = SessionConversation(
            SessionClient(agent.session_url),
            provider_id=agent.provider,
            model_id=agent.model,
        )
        await conversation.open()
        return conversation

    if not agent.tmux_target:
        raise ValueError("agent.tmux_target is required for the terminal backend")
    if not pane_exists(agent.tmux_target):
        logger.warning(f"tmux ターゲットが見つかりません: {agent.tmux_target}")
    return ConversationTracker(
        screen=TmuxScreenSource(agent.tmux_target, history_lines=agent.history_lines),
        formatter=get_formatter(agent.type),
        snapshot_interval=timedelta(milliseconds=settings.tracker.snapshot_interval_ms),
        stability_window=timedelta(seconds=settings.tracker.stability_window_seconds),
    )

