"""
Chat relay endpoints.

Proxies chat turns to the Azure OpenAI chat deployment (streamed as plain
text) and image prompts to the image deployment (returned as Markdown).
"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import Response

from symptom_chat.api.models import ChatRequest, ErrorResponse, ImageResult
from symptom_chat.controllers.chat_controller import ChatController

# ============================================================================
# Dependency Injection
# ============================================================================


def get_chat_controller(request: Request) -> ChatController:
    """Dependency injection for ChatController."""
    return ChatController(
        upstream_config=request.app.state.upstream_config,
        client=request.app.state.http_client,
    )


# ============================================================================
# Router
# ============================================================================

router = APIRouter()


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/chat",
    status_code=status.HTTP_200_OK,
    responses={
        200: {
            "content": {"text/plain": {}},
            "model": ImageResult,
            "description": "Streamed text (chat) or Markdown image reply (image)",
        },
        400: {"model": ErrorResponse, "description": "Invalid Type or invalid request"},
        500: {"model": ErrorResponse, "description": "Configuration or upstream error"},
    },
)
async def relay_chat(
    request: ChatRequest,
    controller: ChatController = Depends(get_chat_controller),
) -> Response:
    """
    Chat relay endpoint.

    - capability "chat": streams the assistant reply as text/plain; the body is
      the raw concatenation of text deltas
    - capability "image": returns {"content": "![Generated Image](<url>)", "role": "assistant"}

    Errors are returned as {"error": "<message>"}.
    """
    return await controller.handle(request)
