"""Stream transformer: provider SSE in, canonical events out.

One ``StreamTransformer`` per in-flight stream. Each upstream chunk is
decoded into provider-native SSE records, which are handled in arrival
order:

  - ``event: error``            -> one canonical ``error`` event, stream ends
  - ``data: [DONE]``            -> stream ends, nothing emitted
  - ``data: {json}``            -> one ``content`` event (after the optional
                                   rewrite callback), plus one ``end`` event
                                   and stream end if a finish reason is set

``EventStream`` bridges the upstream ``httpx.Response`` into the transformer
and is what callers iterate. A decode or callback failure is raised to the
reader and the upstream response is closed so no connection is left open.
"""

from __future__ import annotations

import itertools
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Mapping
from typing import Any

import httpx

from ai_provider.core.exceptions import ProviderResponseNoContentError
from ai_provider.gateway.events import EventStreamDecoder, StreamEvent, encode_event
from ai_provider.gateway.types import (
    OPENAI_FINISH_REASONS,
    ResponseResult,
    StreamChunkCallback,
    StreamEventType,
    map_response_result,
)

logger = logging.getLogger(__name__)

# (decoded record) -> (content delta, finish reason or None)
DeltaParser = Callable[[dict[str, Any]], tuple[str, str | None]]


def parse_openai_delta(data: dict[str, Any]) -> tuple[str, str | None]:
    """Chat Completions chunk: ``choices[0].delta.content`` / ``finish_reason``."""
    choice = data["choices"][0]
    content = (choice.get("delta") or {}).get("content") or ""
    return content, choice.get("finish_reason")


def parse_gemini_delta(data: dict[str, Any]) -> tuple[str, str | None]:
    """Gemini chunk: ``candidates[0].content.parts[].text`` / ``finishReason``."""
    candidate = data["candidates"][0]
    parts = (candidate.get("content") or {}).get("parts") or []
    content = "".join(part.get("text", "") for part in parts)
    return content, candidate.get("finishReason")


# ---------------------------------------------------------------------------
# Transformer
# ---------------------------------------------------------------------------


class StreamTransformer:
    """Single-pass converter from provider SSE records to canonical events."""

    def __init__(
        self,
        provider_name: str,
        chunk_callback: StreamChunkCallback | None = None,
        delta_parser: DeltaParser = parse_openai_delta,
        finish_reasons: Mapping[str, ResponseResult] = OPENAI_FINISH_REASONS,
    ):
        self.provider_name = provider_name
        self.chunk_callback = chunk_callback
        self.delta_parser = delta_parser
        self.finish_reasons = finish_reasons
        self.finished = False
        self._decoder = EventStreamDecoder()
        self._ids = itertools.count(1)

    async def transform(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Consume upstream chunks and yield encoded canonical events."""
        async for chunk in chunks:
            for record in self._decoder.feed(chunk):
                for encoded in await self._handle(record):
                    yield encoded
                if self.finished:
                    return

        for record in self._decoder.flush():
            for encoded in await self._handle(record):
                yield encoded
            if self.finished:
                return

    async def _handle(self, record: StreamEvent) -> list[bytes]:
        if record.event == StreamEventType.ERROR.value:
            logger.warning("%s stream reported an error: %s", self.provider_name, record.data)
            error = ProviderResponseNoContentError(f"{self.provider_name} stream", body=record.data or "")
            self.finished = True
            return [self._encode(StreamEventType.ERROR, error)]

        # Only data-only records carry content
        if record.event is not None or not record.data:
            return []

        if record.is_done:
            self.finished = True
            return []

        content, finish_reason = self.delta_parser(json.loads(record.data))
        if self.chunk_callback is not None:
            content = await self.chunk_callback(content)

        out = [self._encode(StreamEventType.CONTENT, {"response": content})]
        if finish_reason:
            result = map_response_result(finish_reason, self.finish_reasons)
            out.append(self._encode(StreamEventType.END, {"response": result.value}))
            self.finished = True
        return out

    def _encode(self, kind: StreamEventType, data: Any) -> bytes:
        event = StreamEvent(id=str(next(self._ids)), event=kind.value, data=data)
        return encode_event(event).encode("utf-8")


# ---------------------------------------------------------------------------
# Upstream -> transformer pipeline
# ---------------------------------------------------------------------------


class EventStream:
    """Async iterator of canonical SSE frames (``bytes``) for one request.

    Returned to the caller before any upstream byte is read. Closing it, or
    any failure while reading it, closes the upstream response.
    """

    def __init__(self, upstream: httpx.Response, transformer: StreamTransformer):
        self.upstream = upstream
        self.transformer = transformer
        self.closed = False
        self._events = transformer.transform(upstream.aiter_bytes())

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> bytes:
        if self.closed:
            raise StopAsyncIteration
        try:
            return await self._events.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except BaseException as e:
            logger.warning("%s stream failed: %s", self.transformer.provider_name, e)
            await self.aclose()
            raise

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._events.aclose()
        finally:
            await self.upstream.aclose()

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def pipe_stream(upstream: httpx.Response, transformer: StreamTransformer) -> EventStream:
    """Connect an open upstream response to a transformer."""
    return EventStream(upstream, transformer)
