"""
Health check and metrics endpoints.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from chatrelay import __version__
from chatrelay.config import get_settings
from chatrelay.core.metrics import metrics

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck(request: Request) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic service health status plus the registered providers.
    """
    settings = get_settings()
    registry = getattr(request.app.state, "provider_registry", None)

    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "debug": settings.debug,
        "providers": list(registry.providers) if registry is not None else [],
    }


@router.get("/metrics")
async def metrics_snapshot() -> dict[str, Any]:
    """In-process counters and gauges."""
    return {"metrics": metrics.snapshot()}
