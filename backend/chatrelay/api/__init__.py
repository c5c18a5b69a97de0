"""API routers."""

from chatrelay.api.chat import router as chat_router
from chatrelay.api.health import router as health_router
from chatrelay.api.providers import router as providers_router

__all__ = [
    "chat_router",
    "health_router",
    "providers_router",
]
