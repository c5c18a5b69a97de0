"""
chatrelay application.

FastAPI application with structured logging, error handling, and the
provider registry wired into app state.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay import __version__
from chatrelay.api import chat_router, health_router, providers_router
from chatrelay.config import get_settings
from chatrelay.core import get_logger, setup_logging
from chatrelay.core.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    setup_exception_handlers,
)
from chatrelay.providers import ProviderRegistry
from chatrelay.services import ChatService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting chatrelay",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "providers": settings.providers_enabled_list,
        },
    )

    _app.state.start_time = datetime.now(UTC)

    # Registry and service may be injected ahead of startup (tests)
    registry_created = False
    if getattr(_app.state, "provider_registry", None) is None:
        _app.state.provider_registry = ProviderRegistry(settings)
        registry_created = True
    if getattr(_app.state, "chat_service", None) is None:
        _app.state.chat_service = ChatService(_app.state.provider_registry, settings)

    yield

    logger.info("Shutting down chatrelay")
    if registry_created:
        await _app.state.provider_registry.aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="chatrelay",
        description="Streaming chat relay across interchangeable LLM providers",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    setup_exception_handlers(app)

    # Last added runs first
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    app.include_router(health_router)
    app.include_router(providers_router)
    app.include_router(chat_router)

    return app


app = create_app()
