"""
Error handling middleware.
Centralizes error handling and response formatting. Every failure reaches the
client as a flat {"error": "<message>"} object.
"""
import json
import logging
import traceback
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware

from symptom_chat.services.upstream.errors import RelayError

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = "Invalid Request"
UNEXPECTED_ERROR_MESSAGE = "Unexpected Server Error"


def error_response(status_code: int, message: str) -> JSONResponse:
    """Build the flat error payload used for every failure."""
    return JSONResponse(status_code=status_code, content={"error": message})


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Middleware for centralized error handling and logging."""

    async def _get_request_body(self, request: Request) -> dict:
        """
        Safely extract request body for error logging.
        """
        try:
            if hasattr(request.state, "body"):
                body_bytes = request.state.body
            else:
                body_bytes = await request.body()
                request.state.body = body_bytes

            if not body_bytes:
                return None

            body_str = body_bytes.decode("utf-8")
            return json.loads(body_str)
        except Exception:
            return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            response = await call_next(request)
            return response

        except RelayError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(
                "Relay error",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "error": e.message,
                    "error_type": type(e).__name__,
                    "upstream_status": getattr(e, "upstream_status", None),
                },
            )
            return error_response(e.status_code, e.message)

        except ValidationError as e:
            body = await self._get_request_body(request)

            logger.warning(
                "Validation error",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "errors": e.errors(),
                    "request_body": body,
                },
            )
            return error_response(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST_MESSAGE)

        except Exception as e:
            # Get settings to check if we're in dev mode
            from symptom_chat.config.settings import get_settings

            try:
                settings = getattr(request.app.state, "settings", None) or get_settings()
                is_production = settings.is_production
            except Exception:
                is_production = True  # Default to production mode for safety

            logger.error(
                "Unhandled error",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "traceback": traceback.format_exc() if not is_production else None,
                },
                exc_info=True,
            )

            # Don't expose internal errors in production; never return a traceback
            if is_production:
                message = UNEXPECTED_ERROR_MESSAGE
            else:
                message = f"{type(e).__name__}: {str(e)}" if str(e) else UNEXPECTED_ERROR_MESSAGE

            return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, message)


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies as a flat 400 error."""
    logger.warning(
        "Request validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        },
    )
    return error_response(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST_MESSAGE)


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers for errors FastAPI resolves before the middleware sees them."""
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
