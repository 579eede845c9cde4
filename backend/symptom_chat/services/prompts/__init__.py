from .chat_prompts import (
    CHAT_SYSTEM_PROMPT_TEMPLATE,
    IMAGE_MARKDOWN_TEMPLATE,
)

__all__ = [
    "CHAT_SYSTEM_PROMPT_TEMPLATE",
    "IMAGE_MARKDOWN_TEMPLATE",
]
