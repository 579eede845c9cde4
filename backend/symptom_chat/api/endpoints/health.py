"""
Health check endpoints.
Simple endpoints for monitoring application health and status.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from symptom_chat.config.settings import Settings, get_settings

APP_VERSION = "1.0.0"

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    timestamp: datetime
    version: str
    environment: str
    upstream: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, settings: Settings = Depends(get_settings)):
    """Basic health check endpoint. Reports whether the upstream is configured."""
    configured = getattr(request.app.state, "upstream_config", None) is not None
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        environment=settings.environment,
        upstream="configured" if configured else "not_configured",
    )
