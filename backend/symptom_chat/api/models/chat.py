"""
Request and response models for the chat relay endpoint.
"""
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatTurn(BaseModel):
    """One message of a conversation, in chronological order."""

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Payload for the chat relay.

    - input: The new user message (or image prompt)
    - capability: "chat" or "image" (the browser client sends it as ``type``)
    - history: Prior turns (the browser client sends them as ``messages``)

    capability is left unvalidated here so that an unknown value is reported
    as "Invalid Type" rather than as a schema error.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    input: str
    capability: Any = Field(
        default=None, validation_alias=AliasChoices("capability", "type")
    )
    history: Optional[List[ChatTurn]] = Field(
        default=None, validation_alias=AliasChoices("history", "messages")
    )


class ImageResult(BaseModel):
    """Final reply for the image capability."""

    content: str
    role: Literal["assistant"] = "assistant"
