"""Health and liveness endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from portal_shared import __version__
from portal_shared.config import get_settings

SERVICE_NAME = "membership-payments-api"

router = APIRouter(tags=["health"])


@router.get("/health", summary="Service health")
def health() -> dict[str, Any]:
    settings = get_settings()
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": settings.environment,
        "version": __version__,
        "stripe_webhook_configured": bool(settings.resolve_secret("webhook_secret")),
    }


@router.get("/ping", summary="Liveness check")
def ping() -> dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": SERVICE_NAME,
    }
