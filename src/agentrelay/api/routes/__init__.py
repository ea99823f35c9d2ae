"""API ルート

FastAPIルーターを機能別に分割。
"""

from .events import router as events_router
from .messages import router as messages_router
from .system import router as system_router

__all__ = [
    "events_router",
    "messages_router",
    "system_router",
]
