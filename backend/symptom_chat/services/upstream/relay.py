"""
Response relay for upstream Azure OpenAI responses.

Translates the upstream protocol into the caller-facing contract:

- chat: a server-sent-event token stream is re-chunked into plain text deltas
- image: a single JSON document is reduced to a Markdown image reply

Stream parsing is split into a socket-free state machine (StreamRelay) and thin
async generators that drive it from an httpx response.
"""
import codecs
import json
import logging
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, List, Optional, Union

import httpx

from symptom_chat.api.models.chat import ImageResult
from symptom_chat.services.prompts import IMAGE_MARKDOWN_TEMPLATE
from symptom_chat.services.upstream.dispatcher import Capability
from symptom_chat.services.upstream.errors import (
    DataShapeError,
    MalformedEventError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
# Upper bound for one held-back event line (characters)
MAX_PENDING_LINE_CHARS = 1024 * 1024


# ============================================================================
# Event parsing
# ============================================================================


def parse_event_line(line: str) -> Optional[str]:
    """
    Extract the text delta carried by one event-stream line.

    Returns:
        The first choice's delta content, or None when the line carries no
        content (not a data line, the [DONE] sentinel, empty or missing delta)

    Raises:
        MalformedEventError: If the data payload is not valid JSON
    """
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    if payload.strip() == DONE_SENTINEL:
        return None

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedEventError(line, str(e))

    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


# ============================================================================
# Streaming state machine
# ============================================================================


class RelayState(str, Enum):
    READING = "reading"
    CLOSED = "closed"


class StreamRelay:
    """
    Pull-based chat stream relay: READING -> (emit | skip)* -> CLOSED.

    Bytes go in through feed(), text deltas come out. Multi-byte characters
    split across chunks are buffered by the incremental decoder. With
    reassemble_lines a trailing partial line is held until the next chunk
    completes it; without it each chunk is split on its own and an event cut
    in half is dropped as malformed.

    A pending line longer than max_line_chars is discarded up to its next
    newline and counted as one skipped line.
    """

    def __init__(self, reassemble_lines: bool = True, max_line_chars: int = MAX_PENDING_LINE_CHARS):
        self.reassemble_lines = reassemble_lines
        self.max_line_chars = max_line_chars
        self.state = RelayState.READING
        self.emitted = 0
        self.skipped = 0
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending: List[str] = []
        self._pending_size = 0
        self._discarding = False

    @property
    def closed(self) -> bool:
        return self.state is RelayState.CLOSED

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one upstream chunk and return the tokens it completes."""
        if self.closed:
            raise RuntimeError("Cannot feed a closed stream relay")

        text = self._decoder.decode(chunk)
        if not self.reassemble_lines:
            return self._process(text.split("\n"))

        lines = text.split("\n")
        tail = lines.pop()
        if lines:
            # The first complete line finishes whatever was held back
            head = lines.pop(0)
            if not self._discarding:
                lines.insert(0, "".join(self._pending) + head)
            self._reset_pending()
        self._hold(tail)
        return self._process(lines)

    def finish(self) -> List[str]:
        """Flush the decoder and any pending line, then close."""
        if self.closed:
            return []

        self._hold(self._decoder.decode(b"", final=True))
        tail = "" if self._discarding else "".join(self._pending)
        self._reset_pending()
        tokens = self._process([tail]) if tail else []
        self.close()
        return tokens

    def close(self) -> None:
        """Enter the terminal state. Safe to call any number of times."""
        if self.closed:
            return
        self.state = RelayState.CLOSED
        self._reset_pending()
        logger.debug(f"Stream relay closed: emitted={self.emitted} skipped={self.skipped}")

    def _hold(self, piece: str) -> None:
        if self._discarding or not piece:
            return
        self._pending.append(piece)
        self._pending_size += len(piece)
        if self._pending_size > self.max_line_chars:
            self.skipped += 1
            logger.warning(f"Dropping event line longer than {self.max_line_chars} characters")
            self._pending = []
            self._pending_size = 0
            self._discarding = True

    def _reset_pending(self) -> None:
        self._pending = []
        self._pending_size = 0
        self._discarding = False

    def _process(self, lines: List[str]) -> List[str]:
        tokens = []
        for line in lines:
            try:
                token = parse_event_line(line)
            except MalformedEventError as e:
                # Upstream frames may be cut mid-JSON; skip rather than fail the stream
                self.skipped += 1
                logger.debug(f"Skipping malformed event line: {e.reason}")
                continue
            if token:
                self.emitted += 1
                tokens.append(token)
        return tokens


async def relay_chat_stream(
    chunks: AsyncIterable[bytes], reassemble_lines: bool = True
) -> AsyncIterator[str]:
    """
    Relay an async byte-chunk source as text deltas.

    Reads one chunk at a time, so the source is only polled as fast as the
    consumer pulls. The relay is closed on every exit path.
    """
    relay = StreamRelay(reassemble_lines=reassemble_lines)
    try:
        async for chunk in chunks:
            for token in relay.feed(chunk):
                yield token
        for token in relay.finish():
            yield token
    finally:
        relay.close()


async def relay_upstream_chat(
    response: httpx.Response, reassemble_lines: bool = True
) -> AsyncIterator[str]:
    """
    Relay a streaming upstream chat response, closing it when done.

    A read error after streaming has started ends the stream early; the
    status line has already been sent so it is logged rather than raised.
    """
    tokens = relay_chat_stream(response.aiter_bytes(), reassemble_lines)
    try:
        async for token in tokens:
            yield token
    except httpx.HTTPError as e:
        logger.error(f"Upstream stream interrupted: {type(e).__name__}: {e}")
    finally:
        await tokens.aclose()
        await response.aclose()


# ============================================================================
# Error and single-shot responses
# ============================================================================


def extract_error_message(body_text: str, reason_phrase: str = "", status_code: int = None) -> str:
    """
    Best-effort human readable message from a failed upstream response.

    Order: error.message, error (if a string), raw body (only when it is not
    JSON), reason phrase. A JSON document is never returned as the message.
    """
    try:
        parsed = json.loads(body_text)
        is_json = True
    except (json.JSONDecodeError, TypeError):
        parsed = None
        is_json = False

    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
        elif isinstance(error, str) and error:
            return error

    if not is_json and body_text and body_text.strip():
        return body_text.strip()
    if reason_phrase:
        return reason_phrase
    return f"Upstream request failed with status {status_code}"


async def raise_for_upstream_status(response: httpx.Response) -> None:
    """
    Raise UpstreamError for any non-success status.

    The body is read and the response closed before raising.
    """
    if response.is_success:
        return

    try:
        await response.aread()
        body_text = response.text
    except httpx.HTTPError:
        body_text = ""
    finally:
        await response.aclose()

    message = extract_error_message(body_text, response.reason_phrase, response.status_code)
    logger.warning(f"Upstream returned {response.status_code}: {message}")
    raise UpstreamError(message, upstream_status=response.status_code)


def build_image_result(payload: Any) -> ImageResult:
    """
    Wrap the first generated image URL as a Markdown reply.

    Raises:
        DataShapeError: If no image URL is present
    """
    items = payload.get("data") if isinstance(payload, dict) else None
    first = items[0] if isinstance(items, list) and items else None
    url = first.get("url") if isinstance(first, dict) else None
    if not isinstance(url, str) or not url:
        raise DataShapeError()
    return ImageResult(content=IMAGE_MARKDOWN_TEMPLATE.format(url=url))


async def read_image_result(response: httpx.Response) -> ImageResult:
    """Read the full image response once and build the reply."""
    try:
        await response.aread()
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, httpx.HTTPError) as e:
        logger.error(f"Unreadable image response: {type(e).__name__}: {e}")
        raise DataShapeError()
    finally:
        await response.aclose()

    return build_image_result(payload)


async def relay_response(
    response: httpx.Response, capability: Capability, reassemble_lines: bool = True
) -> Union[AsyncIterator[str], ImageResult]:
    """
    Relay an upstream response according to the capability.

    Returns:
        An async iterator of text deltas (chat) or an ImageResult (image)

    Raises:
        UpstreamError: On a non-success upstream status
        DataShapeError: If the image response has no URL
    """
    await raise_for_upstream_status(response)

    if capability is Capability.CHAT:
        return relay_upstream_chat(response, reassemble_lines)
    return await read_image_result(response)
