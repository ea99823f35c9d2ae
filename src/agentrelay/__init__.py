"""agentrelay

画面指向の対話型CLIエージェントを HTTP/SSE API として公開する。
"""

__version__ = "0.1.0"
