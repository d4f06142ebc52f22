"""API endpoints package for the relay."""

from relay.app.api.chat import router as chat_router

__all__ = [
    "chat_router",
]
