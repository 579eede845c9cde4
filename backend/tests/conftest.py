"""
Shared fixtures for the relay tests.

The upstream Azure OpenAI API is replaced by an httpx.MockTransport so no
network access is needed.
"""
import json
from typing import AsyncIterator, Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app
from symptom_chat.config.settings import Settings

BASE_URL = "https://example-resource.openai.azure.com"
API_KEY = "test-azure-key"


def sse_event(content: Optional[str] = None) -> bytes:
    """One chat-completion chunk as an event-stream line."""
    delta = {} if content is None else {"content": content}
    return f"data: {json.dumps({'choices': [{'index': 0, 'delta': delta}]}, ensure_ascii=False)}\n".encode("utf-8")


async def byte_chunks(chunks: List[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class FakeUpstream:
    """Records outbound requests and answers with a canned response."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(200)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)

    def stream(self, chunks: List[bytes], status_code: int = 200) -> None:
        self.responder = lambda request: httpx.Response(
            status_code,
            headers={"content-type": "text/event-stream"},
            content=byte_chunks(chunks),
        )

    def respond_json(self, payload, status_code: int = 200) -> None:
        self.responder = lambda request: httpx.Response(status_code, json=payload)

    def respond_text(self, text: str, status_code: int) -> None:
        self.responder = lambda request: httpx.Response(status_code, text=text)

    def fail_with(self, exc: Exception) -> None:
        def responder(request):
            raise exc

        self.responder = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_settings(**overrides) -> Settings:
    values = {
        "environment": "test",
        "azure_openai_api_base_url": BASE_URL,
        "azure_openai_api_key": API_KEY,
        "enable_request_logging": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def client(settings, upstream):
    app = create_app(settings, upstream_transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def unconfigured_client(upstream):
    settings = make_settings(azure_openai_api_base_url=None, azure_openai_api_key=None)
    app = create_app(settings, upstream_transport=upstream.transport)
    with TestClient(app) as test_client:
        yield test_client
