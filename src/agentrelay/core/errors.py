"""agentrelay 例外

send_message の検証エラーと、画面ソースへの書き込み失敗を表す。
"""


class AgentRelayError(Exception):
    """agentrelay の基底例外"""

    pass


class AgentBusyError(AgentRelayError):
    """ターン進行中に送信しようとした"""

    def __init__(self, message: str = "agent is currently running") -> None:
        super().__init__(message)


class EmptyInputError(AgentRelayError):
    """送信内容が空"""

    def __init__(self, message: str = "message content cannot be empty") -> None:
        super().__init__(message)


class ScreenSourceUnavailableError(AgentRelayError):
    """画面ソース（端末）への書き込み・読み取りに失敗した"""

    pass


class UnsupportedOperationError(AgentRelayError):
    """バックエンドが対応していない操作"""

    pass
