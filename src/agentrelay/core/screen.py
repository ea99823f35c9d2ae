"""画面ソース

エージェントが動いている端末の「現在の画面テキスト取得」と「バイト列の書き込み」。
端末エミュレーションは tmux に任せ、capture-pane / send-keys で操作する。
"""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

from .errors import ScreenSourceUnavailableError

logger = logging.getLogger(__name__)


class ScreenSource(Protocol):
    """画面ソースのインターフェース"""

    def read_screen(self) -> str:
        """現在レンダリングされている画面テキストを返す"""
        ...

    def write(self, data: bytes) -> None:
        """生のバイト列を端末に書き込む

        Raises:
            ScreenSourceUnavailableError: 書き込みに失敗した場合
        """
        ...


# =============================================================================
# tmux 低レベル操作
# =============================================================================


def tmux(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    """tmux コマンドを実行する。"""
    cmd = ["tmux"] + list(args)
    return subprocess.run(cmd, capture_output=True, text=True, check=check)


def pane_exists(target: str) -> bool:
    """ターゲットのペインが存在するか確認する。"""
    try:
        result = tmux("display-message", "-p", "-t", target, "#{pane_id}", check=False)
    except OSError:
        return False
    return result.returncode == 0


class TmuxScreenSource:
    """tmux ペインを画面ソースとして扱う

    エージェントのプロセス自体はペイン内で既に起動している前提。
    """

    def __init__(self, target: str, history_lines: int = 0) -> None:
        """
        Args:
            target: tmux のターゲット（例: "agent:0.0"）
            history_lines: 画面上端より前のスクロールバックを何行含めるか
        """
        self.target = target
        self.history_lines = history_lines

    def read_screen(self) -> str:
        args = ["capture-pane", "-p", "-t", self.target]
        if self.history_lines > 0:
            args += ["-S", f"-{self.history_lines}"]
        try:
            result = tmux(*args)
        except (subprocess.CalledProcessError, OSError) as e:
            raise ScreenSourceUnavailableError(
                f"failed to capture tmux pane {self.target}: {e}"
            ) from e
        return result.stdout.rstrip("\n")

    def write(self, data: bytes) -> None:
        text = data.decode("utf-8", errors="replace")
        if not text:
            return
        try:
            # -l: キー名として解釈させずリテラルで送る
            tmux("send-keys", "-t", self.target, "-l", "--", text)
        except (subprocess.CalledProcessError, OSError) as e:
            logger.error(f"tmux への書き込みに失敗: target={self.target}")
            raise ScreenSourceUnavailableError(
                f"failed to write to tmux pane {self.target}: {e}"
            ) from e
