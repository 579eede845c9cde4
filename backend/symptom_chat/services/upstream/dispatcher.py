"""
Request dispatcher for the Azure OpenAI deployments.

Turns a user turn, its conversation history and the requested capability into
a concrete upstream request (URL, headers, JSON body) and sends it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx

from symptom_chat.api.models.chat import ChatTurn
from symptom_chat.services.prompts import CHAT_SYSTEM_PROMPT_TEMPLATE
from symptom_chat.services.upstream.config import UpstreamConfig
from symptom_chat.services.upstream.errors import InvalidCapabilityError, UpstreamError

logger = logging.getLogger(__name__)

IMAGE_SIZE = "1024x1024"
IMAGES_PER_REQUEST = 1


class Capability(str, Enum):
    """Operation modes supported by the relay."""

    CHAT = "chat"
    IMAGE = "image"


@dataclass
class RequestSpec:
    """A fully built upstream request. Never persisted."""

    capability: Capability
    endpoint_url: str
    headers: Dict[str, str]
    body: Dict[str, Any] = field(default_factory=dict)


def resolve_capability(value: Any) -> Capability:
    """
    Map a raw capability value onto Capability.

    Raises:
        InvalidCapabilityError: For anything other than "chat" or "image"
    """
    if isinstance(value, Capability):
        return value
    if isinstance(value, str):
        for capability in Capability:
            if capability.value == value:
                return capability
    raise InvalidCapabilityError()


def format_current_datetime(now: Optional[datetime] = None) -> str:
    """
    Human readable local date and time including the timezone,
    e.g. "Monday, October 19, 2026 at 3:04 PM UTC".
    """
    now = (now or datetime.now()).astimezone()
    hour = now.hour % 12 or 12
    return (
        f"{now:%A}, {now:%B} {now.day}, {now.year} "
        f"at {hour}:{now:%M} {now:%p} {now.tzname()}"
    )


def build_system_turn(now: Optional[datetime] = None) -> ChatTurn:
    """Synthesize the system instruction. Must be rebuilt for every request."""
    content = CHAT_SYSTEM_PROMPT_TEMPLATE.format(current_datetime=format_current_datetime(now))
    return ChatTurn(role="system", content=content)


def build_chat_messages(
    user_input: str,
    history: Optional[Sequence[ChatTurn]] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, str]]:
    """
    Build the outbound message sequence.

    Client supplied system turns are dropped so exactly one system turn, the
    freshly synthesized one, leads the conversation.
    """
    filtered_history = [turn for turn in (history or []) if turn.role != "system"]
    turns = [
        build_system_turn(now),
        *filtered_history,
        ChatTurn(role="user", content=user_input),
    ]
    return [turn.model_dump() for turn in turns]


class UpstreamDispatcher:
    """Builds and sends one upstream request per call."""

    def __init__(self, config: UpstreamConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    def _endpoint_url(self, capability: Capability) -> str:
        if capability is Capability.CHAT:
            deployment, path, version = (
                self.config.chat_deployment,
                "chat/completions",
                self.config.chat_api_version,
            )
        else:
            deployment, path, version = (
                self.config.image_deployment,
                "images/generations",
                self.config.image_api_version,
            )
        return (
            f"{self.config.normalized_base_url}openai/deployments/"
            f"{deployment}/{path}?api-version={version}"
        )

    def build_request(
        self,
        capability: Any,
        user_input: str,
        history: Optional[Sequence[ChatTurn]] = None,
        now: Optional[datetime] = None,
    ) -> RequestSpec:
        """
        Build the upstream request for a user turn.

        Args:
            capability: "chat" / "image" (or a Capability)
            user_input: The new user message or image prompt
            history: Prior turns; ignored for image generation
            now: Clock override, defaults to the current time

        Returns:
            RequestSpec ready to be sent

        Raises:
            InvalidCapabilityError: If capability is not recognized
        """
        capability = resolve_capability(capability)

        if capability is Capability.CHAT:
            body = {
                "messages": build_chat_messages(user_input, history, now),
                "stream": True,
            }
        else:
            # Image generation is stateless per call
            body = {
                "prompt": user_input,
                "size": IMAGE_SIZE,
                "n": IMAGES_PER_REQUEST,
            }

        return RequestSpec(
            capability=capability,
            endpoint_url=self._endpoint_url(capability),
            headers={
                "Content-Type": "application/json",
                "api-key": self.config.api_key,
            },
            body=body,
        )

    async def send(self, spec: RequestSpec) -> httpx.Response:
        """
        Issue exactly one POST for the spec, without retries.

        The response is opened in streaming mode; the caller owns it and must
        close it (the relay does this on every path).

        Raises:
            UpstreamError: If the upstream cannot be reached
        """
        logger.debug(f"Upstream POST {spec.endpoint_url} capability={spec.capability.value}")
        request = self.client.build_request(
            "POST", spec.endpoint_url, headers=spec.headers, json=spec.body
        )
        try:
            return await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"Upstream request timed out: {e}")
            raise UpstreamError("Upstream request timed out")
        except httpx.RequestError as e:
            logger.error(f"Upstream request failed: {type(e).__name__}: {e}")
            raise UpstreamError("Could not reach the upstream API")
