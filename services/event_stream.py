# FILE: services/event_stream.py
"""
Server-sent phase events

Wire form: blocks separated by a blank line; a block's `data: ` line holds
one JSON event {type, data, timestamp}. Malformed blocks are logged and
skipped, they never end the stream.
"""

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, List, Optional, Union

import httpx
from pydantic import ValidationError

from core.collaborators import CancellationToken, PhaseEventSource
from core.errors import EventStreamError
from models.understanding import PhaseEvent

logger = logging.getLogger("event_stream")

DATA_PREFIX = "data: "


def parse_block(block: str) -> Optional[PhaseEvent]:
    """One SSE block -> PhaseEvent, or None for comments/keep-alives/garbage."""
    payload_lines = []
    for line in block.splitlines():
        if line.startswith(DATA_PREFIX):
            payload_lines.append(line[len(DATA_PREFIX):])
        elif line.startswith("data:"):
            payload_lines.append(line[len("data:"):])
    if not payload_lines:
        return None

    payload = "\n".join(payload_lines)
    try:
        return PhaseEvent.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Failed to parse SSE event: %s (%s)", payload[:200], e)
        return None


async def parse_sse(chunks: AsyncIterable[Union[str, bytes]]) -> AsyncIterator[PhaseEvent]:
    """
    Re-assemble arbitrary text chunks into events. A trailing block without
    the closing blank line is still parsed when the stream ends.
    """
    buffer = ""
    async for chunk in chunks:
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        buffer += chunk.replace("\r\n", "\n")
        blocks = buffer.split("\n\n")
        buffer = blocks.pop()
        for block in blocks:
            event = parse_block(block)
            if event is not None:
                yield event

    if buffer.strip():
        event = parse_block(buffer)
        if event is not None:
            yield event


def encode_event(event: Union[PhaseEvent, Dict[str, Any]]) -> str:
    """PhaseEvent -> SSE block (used by replays and the test server)."""
    if isinstance(event, PhaseEvent):
        event = event.model_dump(exclude_none=True)
    return f"{DATA_PREFIX}{json.dumps(event, default=str)}\n\n"


# -----------------------------
# Sources
# -----------------------------
class ReplayPhaseEventSource(PhaseEventSource):
    """Feeds a fixed list of events; used for dry runs and tests."""

    def __init__(self, events: Iterable[Union[PhaseEvent, Dict[str, Any]]]):
        self._events: List[PhaseEvent] = [
            e if isinstance(e, PhaseEvent) else PhaseEvent.model_validate(e) for e in events
        ]

    async def stream(self, request: Dict[str, Any], token: CancellationToken) -> AsyncIterator[PhaseEvent]:
        for event in self._events:
            if token.cancelled:
                return
            yield event


class HttpPhaseEventSource(PhaseEventSource):
    """
    POSTs the turn request to the reasoning service and streams its SSE reply.
    Connection failures and non-2xx answers raise EventStreamError.
    """

    def __init__(self, url: str, api_key: str = "", timeout: float = 120.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream(self, request: Dict[str, Any], token: CancellationToken) -> AsyncIterator[PhaseEvent]:
        if not self.url:
            raise EventStreamError("REASONING_SERVICE_URL is not configured")

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream("POST", self.url, json=request, headers=self._headers()) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise EventStreamError(
                        f"HTTP error! status: {response.status_code} {body[:200]}",
                        status_code=response.status_code,
                    )
                async for event in parse_sse(response.aiter_text()):
                    if token.cancelled:
                        logger.info("stream abandoned: turn cancelled")
                        return
                    yield event
        except httpx.TimeoutException as e:
            raise EventStreamError(f"Phase-event stream timed out: {e}") from e
        except httpx.RequestError as e:
            raise EventStreamError(f"Phase-event stream failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()
