"""
Test the chat relay endpoint end to end.

The FastAPI app runs in-process through TestClient; the Azure OpenAI upstream
is an httpx.MockTransport recording every outbound request.
"""
import asyncio
import json

import httpx

from conftest import API_KEY, BASE_URL, make_settings, sse_event
from main import create_app

CHAT_URL = "/api/chat"


def chat_payload(**overrides) -> dict:
    payload = {
        "input": "what time is it?",
        "capability": "chat",
        "history": [{"role": "user", "content": "hi"}],
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Chat capability
# ============================================================================


def test_chat_streams_plain_text(client, upstream):
    upstream.stream([
        sse_event("The time "),
        b"data: {not json}\n",
        sse_event("is noon."),
        b"data: [DONE]\n",
    ])

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "The time is noon."


def test_chat_builds_upstream_request(client, upstream):
    upstream.stream([b"data: [DONE]\n"])
    history = [
        {"role": "system", "content": "stale instructions"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello! How can I help?"},
        {"role": "system", "content": "more stale instructions"},
    ]

    client.post(CHAT_URL, json=chat_payload(history=history))

    assert upstream.call_count == 1
    request = upstream.requests[0]
    assert str(request.url) == (
        f"{BASE_URL}/openai/deployments/gpt-4/chat/completions?api-version=2024-02-15-preview"
    )
    assert request.headers["api-key"] == API_KEY
    assert request.headers["content-type"] == "application/json"

    body = upstream.last_body
    assert body["stream"] is True
    roles = [m["role"] for m in body["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert "The current date and time is:" in body["messages"][0]["content"]
    assert body["messages"][-1] == {"role": "user", "content": "what time is it?"}


def test_chat_reassembles_events_split_across_chunks(client, upstream):
    upstream.stream([
        b'data: {"choices":[{"delta":{"content":"Hel',
        b'lo"}}]}\n',
        b"data: [DONE]\n",
    ])

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.text == "Hello"


def test_browser_client_field_names_are_accepted(client, upstream):
    upstream.stream([sse_event("ok")])

    response = client.post(
        CHAT_URL,
        json={
            "input": "hello",
            "type": "chat",
            "model": "gpt-4.1",
            "messages": [{"role": "assistant", "content": "hi"}],
        },
    )

    assert response.status_code == 200
    assert response.text == "ok"
    assert [m["role"] for m in upstream.last_body["messages"]] == ["system", "assistant", "user"]


# ============================================================================
# Image capability
# ============================================================================


def test_image_returns_markdown_reply(client, upstream):
    upstream.respond_json({"created": 1700000000, "data": [{"url": "http://x/y.png"}]})

    response = client.post(
        CHAT_URL,
        json=chat_payload(input="a calm beach", capability="image"),
    )

    assert response.status_code == 200
    assert response.json() == {"content": "![Generated Image](http://x/y.png)", "role": "assistant"}
    assert str(upstream.requests[0].url) == (
        f"{BASE_URL}/openai/deployments/dall-e-3/images/generations?api-version=2024-02-01"
    )
    assert upstream.last_body == {"prompt": "a calm beach", "size": "1024x1024", "n": 1}


def test_image_without_url_is_a_500(client, upstream):
    upstream.respond_json({"data": []})

    response = client.post(CHAT_URL, json=chat_payload(capability="image"))

    assert response.status_code == 500
    assert response.json() == {"error": "No image returned"}


# ============================================================================
# Errors
# ============================================================================


def test_invalid_capability_is_rejected_without_upstream_call(client, upstream):
    for capability in ("video", "", None, 7):
        response = client.post(CHAT_URL, json=chat_payload(capability=capability))

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid Type"}

    assert upstream.call_count == 0


def test_missing_capability_is_rejected(client, upstream):
    response = client.post(CHAT_URL, json={"input": "hello"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid Type"}
    assert upstream.call_count == 0


def test_missing_configuration_is_a_500(unconfigured_client, upstream):
    response = unconfigured_client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Missing Azure Configuration"}
    assert upstream.call_count == 0


def test_upstream_rate_limit_message_is_relayed(client, upstream):
    upstream.respond_json({"error": {"message": "rate limited"}}, status_code=429)

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "rate limited"}


def test_upstream_plain_text_error_is_relayed(client, upstream):
    upstream.respond_text("deployment is warming up", status_code=503)

    response = client.post(CHAT_URL, json=chat_payload(capability="image"))

    assert response.status_code == 500
    assert response.json() == {"error": "deployment is warming up"}


def test_upstream_empty_error_falls_back_to_reason_phrase(client, upstream):
    upstream.respond_text("", status_code=502)

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Bad Gateway"}


def test_unreachable_upstream_is_a_500(client, upstream):
    upstream.fail_with(httpx.ConnectError("connection refused"))

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Could not reach the upstream API"}


def test_malformed_body_is_a_400(client, upstream):
    response = client.post(CHAT_URL, content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid Request"}
    assert upstream.call_count == 0


def test_invalid_history_turn_is_a_400(client, upstream):
    response = client.post(
        CHAT_URL,
        json=chat_payload(history=[{"role": "tool", "content": "x"}]),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid Request"}
    assert upstream.call_count == 0


def test_responses_carry_process_time_header(client, upstream):
    upstream.stream([sse_event("ok")])

    response = client.post(CHAT_URL, json=chat_payload())

    assert "x-process-time" in response.headers


def test_upstream_json_error_without_message_is_not_relayed_verbatim(client, upstream):
    upstream.respond_json(
        {"error": {"code": "InternalError", "innererror": {"trace": "abc"}}},
        status_code=500,
    )

    response = client.post(CHAT_URL, json=chat_payload())

    assert response.status_code == 500
    assert response.json() == {"error": "Internal Server Error"}
    assert "innererror" not in response.text


def test_missing_input_is_a_400(client, upstream):
    response = client.post(CHAT_URL, json={"capability": "chat"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid Request"}
    assert upstream.call_count == 0


# ============================================================================
# Client disconnect
# ============================================================================


async def test_client_disconnect_stops_upstream_reads(upstream):
    reads = []

    async def endless_events():
        while True:
            reads.append(len(reads))
            yield sse_event(f"t{len(reads)} ")
            await asyncio.sleep(0.01)

    upstream.responder = lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=endless_events()
    )
    app = create_app(make_settings(), upstream_transport=upstream.transport)
    # Driven without lifespan, so the shared client is set up here
    app.state.http_client = httpx.AsyncClient(transport=upstream.transport)

    body = json.dumps(chat_payload()).encode("utf-8")
    first_chunk_sent = asyncio.Event()
    request_delivered = False
    sent = []

    async def receive():
        nonlocal request_delivered
        if not request_delivered:
            request_delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        await first_chunk_sent.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            first_chunk_sent.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": CHAT_URL,
        "raw_path": CHAT_URL.encode("ascii"),
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode("ascii")),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }

    try:
        await asyncio.wait_for(app(scope, receive, send), timeout=5)
    finally:
        await app.state.http_client.aclose()

    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 200
    assert first_chunk_sent.is_set()
    assert upstream.call_count == 1

    reads_at_disconnect = len(reads)
    await asyncio.sleep(0.1)
    assert len(reads) == reads_at_disconnect
