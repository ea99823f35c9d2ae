"""メッセージフォーマッタ

論理メッセージを端末への入力に変換し、エージェント出力から
装飾（入力のエコー、プロンプト、入力ボックス）を取り除く。
エージェント種別ごとの差分はサブクラスで表現する。
"""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Protocol

from .models import MessagePart


class AgentType(StrEnum):
    """対応エージェント種別"""

    CLAUDE = "claude"
    GOOSE = "goose"
    AIDER = "aider"
    CODEX = "codex"
    GEMINI = "gemini"
    CUSTOM = "custom"


class MessageFormatter(Protocol):
    """フォーマッタのインターフェース"""

    def format_input(self, text: str) -> list[MessagePart]:
        """論理メッセージを端末に送る断片列に変換（空なら空リスト）"""
        ...

    def strip_chrome(self, output: str, user_input: str) -> str:
        """エージェント出力から装飾行を除去"""
        ...


# 罫線・ボックス文字
BOX_CHARS = "│┃╭╮╰╯┌┐└┘├┤┬┴┼─━═║╔╗╚╝"
PROMPT_MARKERS = ">$#%❯›»"

# "prompt>", "$", "user@host:~$", "(venv) $" など
PROMPT_LINE_RE = re.compile(r"^(?:\([\w.\-]+\)\s)?[\w.@~:/\-]{0,32}\s?[>$#%❯›»]$")
SEPARATOR_LINE_RE = re.compile(r"^[─━═\-_=~]{3,}$")


def _normalize(line: str) -> str:
    """空白とボックス文字を取り除いた比較用文字列"""
    return "".join(ch for ch in line if not ch.isspace() and ch not in BOX_CHARS)


def _echo_piece(line: str, rest: str) -> str:
    """エコー先頭行のうち、入力の続きに一致する部分を返す

    プロンプト記号より前（"prompt> hello" の "prompt>"）は読み飛ばす。
    """
    if rest.startswith(line):
        return line
    for pos in range(1, len(line)):
        if line[pos - 1] in PROMPT_MARKERS and rest.startswith(line[pos:]):
            return line[pos:]
    return ""


class DefaultMessageFormatter:
    """汎用フォーマッタ

    入力: 起動用の不可視キー + 本文 + 送信キー。
    出力: 先頭のエコー行と末尾のプロンプト/区切り線を除去。
    """

    # 末尾から除去するエージェント固有のフッター
    footer_patterns: tuple[re.Pattern[str], ...] = ()

    def format_input(self, text: str) -> list[MessagePart]:
        text = text.strip()
        if not text:
            return []
        return [
            # 一部のTUIは最初のキー入力で入力欄をアクティブにする
            MessagePart("x\b", hidden=True),
            MessagePart(text),
            MessagePart("\r", hidden=True),
        ]

    def strip_chrome(self, output: str, user_input: str) -> str:
        lines = [line.rstrip() for line in output.split("\n")]

        start = 0
        while start < len(lines) and not lines[start].strip():
            start += 1
        start = self._skip_echo(lines, start, user_input)

        end = len(lines)
        while end > start and self.is_trailing_chrome(lines[end - 1]):
            end -= 1

        body = lines[start:end]
        while body and not body[0].strip():
            body.pop(0)
        return "\n".join(body)

    def _skip_echo(self, lines: list[str], start: int, user_input: str) -> int:
        """入力のエコー行を読み飛ばした位置を返す

        入力は折り返して複数行に表示されることがあるため、
        正規化した文字列を連結して突き合わせる。
        表示途中の部分的なエコーも除去するが、その後に本文の行が続く場合は
        入力の接頭辞に一致しただけの返答とみなして除去しない。
        """
        target = _normalize(user_input)
        if not target:
            return start

        consumed = 0
        index = start
        while index < len(lines) and consumed < len(target):
            normalized = _normalize(lines[index])
            if not normalized:
                index += 1
                continue
            rest = target[consumed:]
            if consumed == 0:
                piece = _echo_piece(normalized, rest)
            else:
                piece = normalized if rest.startswith(normalized) else ""
            if not piece:
                break
            consumed += len(piece)
            index += 1

        if not consumed:
            return start
        if consumed < len(target) and any(
            not self.is_trailing_chrome(line) for line in lines[index:]
        ):
            return start
        return index

    def is_trailing_chrome(self, line: str) -> bool:
        """末尾の装飾行（空行・プロンプト・区切り線・入力ボックス）か"""
        stripped = line.strip()
        if not stripped:
            return True
        inner = stripped.strip(BOX_CHARS + " ")
        if not inner:
            return True
        if PROMPT_LINE_RE.match(inner) or SEPARATOR_LINE_RE.match(inner):
            return True
        return any(pattern.search(inner) for pattern in self.footer_patterns)


class ClaudeMessageFormatter(DefaultMessageFormatter):
    """Claude Code 用

    入力ボックスの下に表示されるヒント行も装飾として扱う。
    """

    footer_patterns = (
        re.compile(r"\?\s*for shortcuts"),
        re.compile(r"esc to interrupt", re.IGNORECASE),
        re.compile(r"auto-accept edits", re.IGNORECASE),
    )


_FORMATTERS: dict[AgentType, type[DefaultMessageFormatter]] = {
    AgentType.CLAUDE: ClaudeMessageFormatter,
}


def get_formatter(agent_type: AgentType | str) -> DefaultMessageFormatter:
    """エージェント種別に対応するフォーマッタを取得"""
    formatter_cls = _FORMATTERS.get(AgentType(agent_type), DefaultMessageFormatter)
    return formatter_cls()
