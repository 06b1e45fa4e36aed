"""Core types and DTOs for the provider gateway."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ai_provider.core.exceptions import OptionError

if TYPE_CHECKING:
    from ai_provider.core.config import PoolOptions
    from ai_provider.gateway.clients import CheckResponseFn, ProviderClient


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ResponseResult(str, Enum):
    """Completion status of a model response."""

    COMPLETE = "COMPLETE"
    INCOMPLETE_MAX_TOKENS = "INCOMPLETE_MAX_TOKENS"  # truncated by max_tokens
    INCOMPLETE_UNKNOWN = "INCOMPLETE_UNKNOWN"


class StreamEventType(str, Enum):
    """Kinds of canonical stream events."""

    CONTENT = "content"
    ERROR = "error"
    END = "end"


# Backend finish-reason vocabularies. Anything not listed is INCOMPLETE_UNKNOWN.
OPENAI_FINISH_REASONS: dict[str, ResponseResult] = {
    "stop": ResponseResult.COMPLETE,
    "length": ResponseResult.INCOMPLETE_MAX_TOKENS,
}

GEMINI_FINISH_REASONS: dict[str, ResponseResult] = {
    "STOP": ResponseResult.COMPLETE,
    "MAX_TOKENS": ResponseResult.INCOMPLETE_MAX_TOKENS,
}


def map_response_result(
    finish_reason: str | None,
    vocabulary: Mapping[str, ResponseResult] = OPENAI_FINISH_REASONS,
) -> ResponseResult:
    """Map a backend finish reason onto the three-valued ResponseResult."""
    if not finish_reason:
        return ResponseResult.INCOMPLETE_UNKNOWN
    return vocabulary.get(finish_reason, ResponseResult.INCOMPLETE_UNKNOWN)


# ---------------------------------------------------------------------------
# Canonical request
# ---------------------------------------------------------------------------

StreamChunkCallback = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class ChatTurn:
    """One prior prompt/response exchange."""

    prompt: str
    response: str


@dataclass(frozen=True)
class ProviderRequestOptions:
    """Per-request options passed through to the provider adapter.

    ``tools``, ``tool_choice`` and ``response_format`` are forwarded untouched;
    the gateway never executes tools.
    """

    context: str | None = None  # system prompt
    history: Sequence[ChatTurn] = ()  # oldest first
    session_id: str | None = None
    user: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    on_stream_chunk: StreamChunkCallback | None = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    response_format: dict[str, Any] | None = None
    tools: list[dict[str, Any]] | None = None
    allowed_tools: list[str] | None = None
    tool_choice: str | None = None
    api_key: str | None = None  # per-request bearer override


@dataclass(frozen=True)
class AiRequest:
    """A logical "ask a model" request handed to the gateway.

    ``models`` optionally overrides the configured candidate list with
    ``"provider:model"`` tokens, tried in the given order.
    """

    prompt: str
    models: Sequence[str] | None = None
    options: ProviderRequestOptions = field(default_factory=ProviderRequestOptions)


# ---------------------------------------------------------------------------
# Canonical response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentResponse:
    """Buffered canonical response."""

    text: str
    result: ResponseResult = ResponseResult.COMPLETE

    def to_dict(self) -> dict:
        return {"text": self.text, "result": self.result.value}


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelCandidate:
    """One (provider, model) pair the gateway may try."""

    provider: str
    model: str

    @property
    def token(self) -> str:
        return f"{self.provider}:{self.model}"

    @classmethod
    def parse(cls, token: str) -> ModelCandidate:
        """Parse a ``provider:model`` token. Model names may contain colons."""
        provider, sep, model = token.strip().partition(":")
        if not sep or not provider or not model:
            raise OptionError(f'Model "{token}" must be in the form "provider:model"')
        return cls(provider=provider.lower(), model=model)


def parse_models(text: str) -> list[ModelCandidate]:
    """Parse a comma-separated ``provider:model`` list, keeping its order."""
    return [ModelCandidate.parse(token) for token in text.split(",") if token.strip()]


# ---------------------------------------------------------------------------
# Provider config
# ---------------------------------------------------------------------------


@dataclass
class ProviderConfig:
    """Construction-time configuration for one provider adapter.

    Unset fields fall back to the adapter's defaults. ``client`` replaces the
    HTTP client entirely (used by tests and custom transports).
    """

    api_key: str = ""
    base_url: str | None = None
    api_path: str | None = None
    user_agent: str | None = None
    pool_options: PoolOptions | None = None
    extra_headers: dict[str, str] = field(default_factory=dict)
    check_response_fn: CheckResponseFn | None = None
    client: ProviderClient | None = None
