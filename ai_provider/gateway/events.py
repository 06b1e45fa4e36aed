"""Server-Sent-Event codec.

Parses SSE-framed text into ``StreamEvent`` records and encodes records back
into the canonical wire format::

    id:<id>
    event:<kind>
    data:<payload>
    <blank line>

A record with no ``event`` and the literal payload ``[DONE]`` is the OpenAI
end-of-stream sentinel; callers must check for it before decoding ``data``
as JSON (see ``StreamEvent.is_done``).
"""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from typing import Any

from ai_provider.core.exceptions import AiProviderError
from ai_provider.gateway.types import ResponseResult, StreamEventType

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
_RECORD_SEPARATOR = "\n\n"


@dataclass
class StreamEvent:
    """One SSE record. Every field is optional on the wire.

    ``data`` is whatever ``encode_event`` was given (text, a dict, an error),
    but ``parse_event_stream`` always returns it as the raw text of the
    ``data:`` lines. Structured payloads are decoded by the reader, e.g.
    ``convert_event_to_message``.
    """

    id: str | None = None
    event: str | None = None
    data: Any = None

    @property
    def is_done(self) -> bool:
        return self.event is None and self.data == DONE_SENTINEL


# ---------------------------------------------------------------------------
# Parse / encode
# ---------------------------------------------------------------------------


def parse_event_stream(text: str) -> list[StreamEvent]:
    """Parse SSE text into records.

    Tolerates partial input: a trailing record without its blank-line
    terminator is still returned. Comment lines (``:ping``) and blocks with
    no known field are skipped.
    """
    events: list[StreamEvent] = []
    text = text.replace("\r\n", "\n")

    for block in text.split(_RECORD_SEPARATOR):
        event = StreamEvent()
        data_lines: list[str] = []
        has_field = False

        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]

            if name == "id":
                event.id = value
            elif name == "event":
                event.event = value
            elif name == "data":
                data_lines.append(value)
            else:
                continue
            has_field = True

        if not has_field:
            continue
        if data_lines:
            event.data = "\n".join(data_lines)
        events.append(event)

    return events


def _field(name: str, value: str) -> str:
    # Readers drop one leading space, so a value that starts with one needs a separator space
    if value.startswith(" "):
        return f"{name}: {value}"
    return f"{name}:{value}"


def encode_event(event: StreamEvent) -> str:
    """Encode a record in the canonical SSE framing.

    String data is written verbatim (one ``data:`` line per text line);
    errors are written as their ``to_dict()`` payload and anything else as
    JSON.
    """
    lines: list[str] = []
    if event.id is not None:
        lines.append(_field("id", event.id))
    if event.event is not None:
        lines.append(_field("event", event.event))
    if event.data is not None:
        data = event.data
        if isinstance(data, AiProviderError):
            data = json.dumps(data.to_dict(), ensure_ascii=False)
        elif not isinstance(data, str):
            data = json.dumps(data, ensure_ascii=False)
        lines.extend(_field("data", line) for line in data.split("\n"))
    return "\n".join(lines) + _RECORD_SEPARATOR


# ---------------------------------------------------------------------------
# Incremental decoding
# ---------------------------------------------------------------------------


class EventStreamDecoder:
    """Turns an arbitrarily chunked byte stream into complete SSE records.

    Holds back the text after the last blank line until the next chunk
    completes it, and decodes UTF-8 incrementally so a multi-byte character
    split across chunks survives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        cut = self._buffer.rfind(_RECORD_SEPARATOR)
        if cut == -1:
            return []
        complete = self._buffer[: cut + len(_RECORD_SEPARATOR)]
        self._buffer = self._buffer[cut + len(_RECORD_SEPARATOR) :]
        return parse_event_stream(complete)

    def flush(self) -> list[StreamEvent]:
        """Parse whatever is left once the upstream has ended."""
        rest = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not rest.strip():
            return []
        return parse_event_stream(rest)


# ---------------------------------------------------------------------------
# Caller side: canonical events -> messages
# ---------------------------------------------------------------------------


@dataclass
class StreamMessage:
    """A decoded canonical event, as seen by a consumer of the gateway."""

    type: StreamEventType
    id: str | None = None
    content: str | None = None
    result: ResponseResult | None = None
    error: dict[str, Any] | None = None


def convert_event_to_message(event: StreamEvent) -> StreamMessage | None:
    """Decode one canonical event. Returns None for unknown kinds."""
    try:
        kind = StreamEventType(event.event)
    except ValueError:
        logger.debug("Skipping unknown stream event kind: %s", event.event)
        return None

    payload = json.loads(event.data) if event.data else {}

    if kind == StreamEventType.CONTENT:
        return StreamMessage(type=kind, id=event.id, content=payload.get("response", ""))
    if kind == StreamEventType.END:
        result = payload.get("response", ResponseResult.INCOMPLETE_UNKNOWN.value)
        return StreamMessage(type=kind, id=event.id, result=ResponseResult(result))
    return StreamMessage(type=kind, id=event.id, error=payload)


async def iter_messages(stream: AsyncIterable[bytes | str]) -> AsyncIterator[StreamMessage]:
    """Read a canonical event stream and yield typed messages as they arrive."""
    decoder = EventStreamDecoder()
    async for chunk in stream:
        for event in decoder.feed(chunk):
            message = convert_event_to_message(event)
            if message is not None:
                yield message
    for event in decoder.flush():
        message = convert_event_to_message(event)
        if message is not None:
            yield message
