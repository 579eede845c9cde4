"""
Symptom Checker Chat - Backend
FastAPI application relaying chat and image requests to Azure OpenAI.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from symptom_chat.api.endpoints.health import APP_VERSION
from symptom_chat.api.routers import api_router
from symptom_chat.config.settings import Settings, get_settings
from symptom_chat.middleware.error_handling import (
    ErrorHandlingMiddleware,
    register_exception_handlers,
)
from symptom_chat.middleware.request_logging import RequestLoggingMiddleware
from symptom_chat.services.upstream import load_upstream_config


def configure_logging(settings: Settings) -> None:
    """Configure root logging once, from settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    # Startup
    settings: Settings = app.state.settings
    logging.info(f"Starting {settings.app_name} ({settings.environment})")

    if app.state.upstream_config is None:
        logging.error("Chat relay will answer 500 until the Azure configuration is provided")

    # One pooled client for all upstream calls; the timeout is enforced here
    app.state.http_client = httpx.AsyncClient(
        timeout=settings.upstream_timeout_seconds,
        transport=app.state.upstream_transport,
    )

    yield

    # Shutdown
    logging.info("Shutting down...")
    await app.state.http_client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Settings override, defaults to the environment
        upstream_transport: httpx transport override for the upstream client
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Relay between the Symptom Checker chat UI and Azure OpenAI",
        version=APP_VERSION,
        lifespan=lifespan,
        redirect_slashes=False,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    # Built once at process start and shared by reference
    app.state.settings = settings
    app.state.upstream_config = load_upstream_config(settings)
    app.state.upstream_transport = upstream_transport

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.add_middleware(ErrorHandlingMiddleware)
    if settings.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    # Include API router; the browser client posts to /api/chat
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
