"""Provider clients: pooled HTTP transport owners, one per backend.

Each client owns an ``httpx.AsyncClient`` (the connection pool) plus a fixed
header set, both created in ``init`` and released in ``close``. ``request``
does one buffered round trip and returns the decoded JSON; ``stream`` returns
the still-open ``httpx.Response`` whose bytes the caller consumes.

Both paths run a response check before returning. The default check maps
429 to ``ProviderExceededQuotaError`` and every other non-2xx status to
``ProviderResponseError``; a custom check replaces it entirely.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ai_provider.core.config import DEFAULT_POOL_OPTIONS, DEFAULT_USER_AGENT, PoolOptions
from ai_provider.core.exceptions import ProviderExceededQuotaError, ProviderResponseError

logger = logging.getLogger(__name__)


@dataclass
class ProviderClientContext:
    """Per-adapter context handed to every client call."""

    logger: logging.Logger = field(default_factory=lambda: logger)


@dataclass
class ClientHandle:
    """Pool and static headers owned by exactly one client instance."""

    pool: httpx.AsyncClient
    headers: dict[str, str]


CheckResponseFn = Callable[[httpx.Response, ProviderClientContext, str], Awaitable[None]]


class ProviderClient(Protocol):
    """Capability set every provider client implements."""

    async def init(self, context: ProviderClientContext) -> Any: ...

    async def close(self, handle: Any, context: ProviderClientContext) -> None: ...

    async def request(self, handle: Any, request: dict[str, Any], context: ProviderClientContext) -> dict: ...

    async def stream(self, handle: Any, request: dict[str, Any], context: ProviderClientContext) -> Any: ...


async def check_response(response: httpx.Response, context: ProviderClientContext, provider_name: str) -> None:
    """Default response check: raise a typed error for any non-2xx status."""
    if response.is_success:
        return

    await response.aread()
    error_text = response.text
    context.logger.error(
        "%s API response error: %d %s",
        provider_name,
        response.status_code,
        error_text,
        extra={"provider": provider_name, "status_code": response.status_code},
    )
    if response.status_code == 429:
        raise ProviderExceededQuotaError(provider_name, response.status_code, error_text)
    raise ProviderResponseError(provider_name, response.status_code, error_text)


def _drop_none(body: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in body.items() if value is not None}


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


class BaseProviderClient(ABC):
    """Shared pooled-HTTP plumbing; subclasses supply the wire body."""

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        api_path: str,
        api_key: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        pool_options: PoolOptions = DEFAULT_POOL_OPTIONS,
        extra_headers: dict[str, str] | None = None,
        check_response_fn: CheckResponseFn | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider_name = provider_name
        self.base_url = base_url.rstrip("/")
        self.api_path = api_path
        self.api_key = api_key or ""
        self.user_agent = user_agent
        self.pool_options = pool_options
        self.extra_headers = dict(extra_headers or {})
        self.check_response_fn = check_response_fn or check_response
        self._transport = transport

    async def init(self, context: ProviderClientContext) -> ClientHandle:
        pool = httpx.AsyncClient(
            base_url=self.base_url,
            limits=self.pool_options.limits(),
            timeout=self.pool_options.timeouts(),
            transport=self._transport,
        )
        headers = {
            **(self._auth_headers(self.api_key) if self.api_key else {}),
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            **self.extra_headers,
        }
        return ClientHandle(pool=pool, headers=headers)

    async def close(self, handle: ClientHandle | None, context: ProviderClientContext) -> None:
        if handle is None:
            return
        await handle.pool.aclose()

    async def request(
        self, handle: ClientHandle, request: dict[str, Any], context: ProviderClientContext
    ) -> dict:
        path = self._path(request, stream=False)
        context.logger.debug("%s request to %s", self.provider_name, path, extra={"provider": self.provider_name})

        response = await handle.pool.post(
            path,
            headers=self._request_headers(handle, request),
            params=self._params(stream=False),
            json=self._body(request, stream=False),
        )
        await self.check_response_fn(response, context, self.provider_name)

        data = response.json()
        context.logger.debug("%s response received", self.provider_name, extra={"provider": self.provider_name})
        return data

    async def stream(
        self, handle: ClientHandle, request: dict[str, Any], context: ProviderClientContext
    ) -> httpx.Response:
        path = self._path(request, stream=True)
        context.logger.debug("%s stream request to %s", self.provider_name, path, extra={"provider": self.provider_name})

        http_request = handle.pool.build_request(
            "POST",
            path,
            headers=self._request_headers(handle, request),
            params=self._params(stream=True),
            json=self._body(request, stream=True),
        )
        response = await handle.pool.send(http_request, stream=True)
        try:
            await self.check_response_fn(response, context, self.provider_name)
        except BaseException:
            await response.aclose()
            raise
        return response

    # --- Wire shape hooks ---

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _request_headers(self, handle: ClientHandle, request: dict[str, Any]) -> dict[str, str]:
        headers = {**handle.headers, **(request.get("extra_headers") or {})}
        if request.get("virtual_key"):
            headers.update(self._auth_headers(request["virtual_key"]))
        return headers

    def _path(self, request: dict[str, Any], stream: bool) -> str:
        return self.api_path

    def _params(self, stream: bool) -> dict[str, str] | None:
        return None

    @abstractmethod
    def _body(self, request: dict[str, Any], stream: bool) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# OpenAI-shaped clients (OpenAI, DeepSeek, LiteLLM)
# ---------------------------------------------------------------------------


def _chat_completions_body(request: dict[str, Any], stream: bool) -> dict[str, Any]:
    return {
        "model": request["model"],
        "messages": request["messages"],
        "max_tokens": request.get("max_tokens"),
        "temperature": request.get("temperature"),
        "tools": request.get("tools"),
        "tool_choice": request.get("tool_choice"),
        "response_format": request.get("response_format"),
        "user": request.get("user"),
        "stream": stream,
    }


class OpenAIClient(BaseProviderClient):
    """Chat Completions wire format."""

    def _body(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        return _drop_none(_chat_completions_body(request, stream))


class LiteLLMClient(BaseProviderClient):
    """LiteLLM proxy: Chat Completions plus session tracking."""

    def _body(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        body = _chat_completions_body(request, stream)
        body["allowed_tools"] = request.get("allowed_tools")
        body["litellm_session_id"] = request.get("session_id")
        body["n"] = 1
        return _drop_none(body)


# ---------------------------------------------------------------------------
# Gemini client
# ---------------------------------------------------------------------------


class GeminiClient(BaseProviderClient):
    """Google AI generateContent / streamGenerateContent wire format.

    ``api_path`` is a template with ``{model}`` and ``{action}`` placeholders.
    The key travels in ``x-goog-api-key`` rather than a bearer token.
    """

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-goog-api-key": api_key}

    def _path(self, request: dict[str, Any], stream: bool) -> str:
        action = "streamGenerateContent" if stream else "generateContent"
        return self.api_path.format(model=request["model"], action=action)

    def _params(self, stream: bool) -> dict[str, str] | None:
        # SSE framing instead of a JSON array
        return {"alt": "sse"} if stream else None

    def _body(self, request: dict[str, Any], stream: bool) -> dict[str, Any]:
        return _drop_none(
            {
                "contents": request["contents"],
                "systemInstruction": request.get("systemInstruction"),
                "generationConfig": request.get("generationConfig"),
                "tools": request.get("tools"),
                "toolConfig": request.get("toolConfig"),
            }
        )
