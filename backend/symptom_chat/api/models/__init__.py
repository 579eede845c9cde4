from .chat import ChatRequest, ChatTurn, ImageResult
from .error import ErrorResponse

__all__ = [
    "ErrorResponse",
    "ChatRequest",
    "ChatTurn",
    "ImageResult",
]
