"""
Chat controller for the relay endpoint.

Validates the request, dispatches it to the upstream deployment and relays the
answer as a text stream (chat) or a JSON reply (image).
"""
import logging
from typing import Optional

import httpx
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from symptom_chat.api.models.chat import ChatRequest, ImageResult
from symptom_chat.services.upstream import (
    Capability,
    ConfigurationError,
    UpstreamConfig,
    UpstreamDispatcher,
    relay_response,
    resolve_capability,
)

logger = logging.getLogger(__name__)


class ChatController:
    """Controller for chat and image relay operations."""

    def __init__(self, upstream_config: Optional[UpstreamConfig], client: httpx.AsyncClient):
        """
        Args:
            upstream_config: Config built at startup, None when incomplete
            client: Shared upstream HTTP client
        """
        self.upstream_config = upstream_config
        self.client = client

    def _validate_request(self, request: ChatRequest) -> Capability:
        """
        Validate the relay request before any network call.

        Raises:
            ConfigurationError: If the upstream is not configured
            InvalidCapabilityError: If capability is not chat or image
        """
        if self.upstream_config is None:
            raise ConfigurationError()
        return resolve_capability(request.capability)

    async def handle(self, request: ChatRequest):
        """
        Relay one user turn upstream.

        Upstream status is checked before the streaming response is created,
        so failures are always reported as a JSON error, never mid-stream.

        Returns:
            StreamingResponse of text/plain deltas (chat) or JSONResponse
            with the ImageResult (image)
        """
        capability = self._validate_request(request)
        dispatcher = UpstreamDispatcher(self.upstream_config, self.client)

        spec = dispatcher.build_request(capability, request.input, request.history)
        logger.info(
            f"Relaying {capability.value} request "
            f"(history={len(request.history or [])}, input_chars={len(request.input)})"
        )
        upstream = await dispatcher.send(spec)
        result = await relay_response(upstream, capability, self.upstream_config.reassemble_lines)

        if isinstance(result, ImageResult):
            return JSONResponse(content=result.model_dump())

        return StreamingResponse(
            result,
            media_type="text/plain",
            # Also runs when the client disconnects mid-stream
            background=BackgroundTask(upstream.aclose),
        )
