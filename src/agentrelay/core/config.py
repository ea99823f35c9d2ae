"""agentrelay 設定管理モジュール

Pydantic Settingsを使用した型安全な設定管理。
agentrelay.config.yaml と環境変数から設定を読み込む。
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .msgfmt import AgentType


class CORSConfig(BaseModel):
    """CORS設定"""

    enabled: bool = Field(default=True, description="CORSを有効にするか")
    allow_origins: list[str] = Field(
        default=["*"],
        description="許可するオリジン（本番では具体的なオリジンを指定）",
    )
    allow_credentials: bool = Field(default=True)
    allow_methods: list[str] = Field(default=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
    allow_headers: list[str] = Field(
        default=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"]
    )


class ServerConfig(BaseModel):
    """サーバー設定"""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3284, ge=1, le=65535)
    cors: CORSConfig = Field(default_factory=CORSConfig)


class TrackerConfig(BaseModel):
    """会話トラッカー設定"""

    snapshot_interval_ms: int = Field(
        default=25, ge=5, le=1000, description="画面スナップショットの取得間隔（ミリ秒）"
    )
    stability_window_seconds: float = Field(
        default=2.0, ge=0.1, le=60.0, description="この時間画面が変化しなければターン完了"
    )


class EmitterConfig(BaseModel):
    """イベント配信設定"""

    queue_size: int = Field(default=1024, ge=1, description="購読者ごとのキュー上限")
    keepalive_seconds: float = Field(default=15.0, gt=0, description="SSE keep-alive 間隔秒")


class AgentConfig(BaseModel):
    """接続先エージェント設定"""

    type: AgentType = Field(default=AgentType.CUSTOM, description="エージェント種別")
    backend: Literal["terminal", "session"] = Field(default="terminal")
    tmux_target: str | None = Field(default=None, description="端末バックエンドの tmux ターゲット")
    history_lines: int = Field(default=0, ge=0, description="画面に含めるスクロールバック行数")
    session_url: str = Field(
        default="http://127.0.0.1:4096", description="セッションバックエンドのURL"
    )
    provider: str | None = Field(default=None, description="セッションのプロバイダーID")
    model: str | None = Field(default=None, description="セッションのモデルID")


class LoggingConfig(BaseModel):
    """ロギング設定"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class AgentRelaySettings(BaseSettings):
    """agentrelay 全体設定

    設定の優先順位:
    1. 環境変数
    2. agentrelay.config.yaml
    3. デフォルト値
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTRELAY_",
        env_nested_delimiter="__",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    emitter: EmitterConfig = Field(default_factory=EmitterConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML の値は init 引数として渡されるため、環境変数を優先させる
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, config_path: Path | str | None = None) -> "AgentRelaySettings":
        """YAMLファイルから設定を読み込む

        Args:
            config_path: 設定ファイルパス。Noneの場合はデフォルトパスを探索

        Returns:
            AgentRelaySettings インスタンス
        """
        if config_path is None:
            search_paths = [
                Path.cwd() / "agentrelay.config.yaml",
                Path.cwd() / "agentrelay.config.yml",
                Path.home() / ".agentrelay" / "config.yaml",
            ]
            for path in search_paths:
                if path.exists():
                    config_path = path
                    break

        if config_path and Path(config_path).exists():
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
            return cls(**yaml_config)

        return cls()


# グローバル設定インスタンス（遅延初期化）
_settings: AgentRelaySettings | None = None


def get_settings() -> AgentRelaySettings:
    """設定シングルトンを取得"""
    global _settings
    if _settings is None:
        _settings = AgentRelaySettings.from_yaml()
    return _settings


def reload_settings(config_path: Path | str | None = None) -> AgentRelaySettings:
    """設定を再読み込み"""
    global _settings
    _settings = AgentRelaySettings.from_yaml(config_path)
    return _settings
