"""agentrelay API

FastAPIベースの HTTP/SSE API。
"""

from .server import app

__all__ = ["app"]
