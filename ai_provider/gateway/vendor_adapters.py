"""Provider adapters: canonical request in, canonical response or stream out.

Each adapter translates ``(model, prompt, options)`` into its backend's
native request, hands it to its Provider Client, and maps the result back:

  - OpenAI / DeepSeek: Chat Completions, ``choices[0].message.content``
  - LiteLLM: Chat Completions through the proxy, session id + virtual key
  - Gemini: native generateContent, ``candidates[0].content.parts[].text``

A buffered response with no extractable text raises
``ProviderResponseNoContentError``. A streaming request returns an
``EventStream`` at once; canonical events flow as upstream bytes arrive.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from ai_provider.core.config import DEFAULT_POOL_OPTIONS, DEFAULT_USER_AGENT
from ai_provider.core.exceptions import OptionError, ProviderResponseNoContentError
from ai_provider.gateway.clients import (
    BaseProviderClient,
    ClientHandle,
    GeminiClient,
    LiteLLMClient,
    OpenAIClient,
    ProviderClientContext,
)
from ai_provider.gateway.stream import (
    DeltaParser,
    EventStream,
    StreamTransformer,
    parse_gemini_delta,
    parse_openai_delta,
    pipe_stream,
)
from ai_provider.gateway.types import (
    GEMINI_FINISH_REASONS,
    OPENAI_FINISH_REASONS,
    ChatTurn,
    ContentResponse,
    ProviderConfig,
    ProviderRequestOptions,
    ResponseResult,
    map_response_result,
)

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
    """Base class for all provider adapters."""

    name: str
    client_cls: type[BaseProviderClient]
    default_base_url: str
    default_api_path: str
    delta_parser: DeltaParser = staticmethod(parse_openai_delta)
    finish_reasons: Mapping[str, ResponseResult] = OPENAI_FINISH_REASONS

    def __init__(self, config: ProviderConfig | None = None, log: logging.Logger | None = None):
        self.config = config or ProviderConfig()
        self.context = ProviderClientContext(logger=log or logger)
        self.client = self.config.client or self._build_client(self.config)
        self.api: ClientHandle | Any = None

    def _build_client(self, config: ProviderConfig) -> BaseProviderClient:
        return self.client_cls(
            provider_name=self.name,
            base_url=config.base_url or self.default_base_url,
            api_path=config.api_path or self.default_api_path,
            api_key=config.api_key,
            user_agent=config.user_agent or DEFAULT_USER_AGENT,
            pool_options=config.pool_options or DEFAULT_POOL_OPTIONS,
            extra_headers=config.extra_headers,
            check_response_fn=config.check_response_fn,
        )

    async def init(self) -> None:
        self.api = await self.client.init(self.context)

    async def close(self) -> None:
        api, self.api = self.api, None
        await self.client.close(api, self.context)

    async def request(
        self, model: str, prompt: str, options: ProviderRequestOptions | None = None
    ) -> ContentResponse | EventStream:
        """Send one prompt to ``model``.

        Returns a ``ContentResponse`` or, when ``options.stream`` is set, an
        ``EventStream`` of canonical events.
        """
        options = options or ProviderRequestOptions()
        if self.api is None:
            raise OptionError(f"{self.name} provider is not initialized", provider=self.name)

        native = self.build_request(model, prompt, options)

        if options.stream:
            upstream = await self.client.stream(self.api, native, self.context)
            transformer = StreamTransformer(
                self.name,
                chunk_callback=options.on_stream_chunk,
                delta_parser=self.delta_parser,
                finish_reasons=self.finish_reasons,
            )
            return pipe_stream(upstream, transformer)

        data = await self.client.request(self.api, native, self.context)
        return self.parse_response(data)

    def _common_fields(self, model: str, options: ProviderRequestOptions) -> dict[str, Any]:
        return {
            "model": model,
            "session_id": options.session_id,
            "user": options.user,
            "extra_headers": dict(options.extra_headers),
            "virtual_key": options.api_key,
        }

    @abstractmethod
    def build_request(self, model: str, prompt: str, options: ProviderRequestOptions) -> dict[str, Any]:
        """Build the backend-native request for the client."""
        ...

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> ContentResponse:
        """Map a backend-native buffered response to ``ContentResponse``."""
        ...


# ---------------------------------------------------------------------------
# Chat Completions adapters (OpenAI, DeepSeek, LiteLLM)
# ---------------------------------------------------------------------------


def history_to_messages(history: Sequence[ChatTurn]) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    for turn in history:
        messages.append({"role": "user", "content": turn.prompt})
        messages.append({"role": "assistant", "content": turn.response})
    return messages


class OpenAICompatibleProvider(BaseProvider):
    """Any backend speaking the Chat Completions format."""

    client_cls = OpenAIClient
    default_api_path = "/v1/chat/completions"

    def build_request(self, model: str, prompt: str, options: ProviderRequestOptions) -> dict[str, Any]:
        messages = [{"role": "system", "content": options.context}] if options.context else []
        messages.extend(history_to_messages(options.history))
        messages.append({"role": "user", "content": prompt})

        return {
            **self._common_fields(model, options),
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "response_format": options.response_format,
            "tools": options.tools,
            "tool_choice": options.tool_choice,
            "allowed_tools": options.allowed_tools,
        }

    def parse_response(self, data: dict[str, Any]) -> ContentResponse:
        choices = data.get("choices") or [{}]
        choice = choices[0]
        text = (choice.get("message") or {}).get("content")
        if not text:
            raise ProviderResponseNoContentError(self.name)
        return ContentResponse(text=text, result=map_response_result(choice.get("finish_reason")))


class OpenAIProvider(OpenAICompatibleProvider):
    name = "openai"
    default_base_url = "https://api.openai.com"


class DeepSeekProvider(OpenAICompatibleProvider):
    name = "deepseek"
    default_base_url = "https://api.deepseek.com"
    default_api_path = "/chat/completions"


class LiteLLMProvider(OpenAICompatibleProvider):
    """LiteLLM proxy. Models are proxy aliases; ``options.api_key`` is the virtual key."""

    name = "litellm"
    client_cls = LiteLLMClient
    default_base_url = "http://localhost:4000"


# ---------------------------------------------------------------------------
# Gemini adapter (Google AI native format)
# ---------------------------------------------------------------------------


# Chat Completions tool_choice -> Gemini functionCallingConfig.mode
_GEMINI_TOOL_MODES = {"auto": "AUTO", "none": "NONE", "required": "ANY"}


class GeminiProvider(BaseProvider):
    """Google AI generateContent.

    History turns use ``user``/``model`` roles and the system prompt goes in
    ``systemInstruction``. A JSON-schema ``response_format`` becomes
    ``responseMimeType``/``responseSchema``.
    """

    name = "gemini"
    client_cls = GeminiClient
    default_base_url = "https://generativelanguage.googleapis.com"
    default_api_path = "/v1beta/models/{model}:{action}"
    delta_parser = staticmethod(parse_gemini_delta)
    finish_reasons = GEMINI_FINISH_REASONS

    def build_request(self, model: str, prompt: str, options: ProviderRequestOptions) -> dict[str, Any]:
        contents: list[dict[str, Any]] = []
        for turn in options.history:
            contents.append({"role": "user", "parts": [{"text": turn.prompt}]})
            contents.append({"role": "model", "parts": [{"text": turn.response}]})
        contents.append({"role": "user", "parts": [{"text": prompt}]})

        request: dict[str, Any] = {
            **self._common_fields(model, options),
            "contents": contents,
            "generationConfig": self._generation_config(options) or None,
            "tools": options.tools,
        }
        if options.context:
            request["systemInstruction"] = {"parts": [{"text": options.context}]}
        if options.tool_choice:
            mode = _GEMINI_TOOL_MODES.get(options.tool_choice, options.tool_choice.upper())
            request["toolConfig"] = {"functionCallingConfig": {"mode": mode}}
            if options.allowed_tools:
                request["toolConfig"]["functionCallingConfig"]["allowedFunctionNames"] = list(options.allowed_tools)
        return request

    @staticmethod
    def _generation_config(options: ProviderRequestOptions) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if options.temperature is not None:
            config["temperature"] = options.temperature
        if options.max_tokens is not None:
            config["maxOutputTokens"] = options.max_tokens

        response_format = options.response_format or {}
        if response_format.get("type") == "json_object":
            config["responseMimeType"] = "application/json"
        elif response_format.get("type") == "json_schema":
            config["responseMimeType"] = "application/json"
            schema = (response_format.get("json_schema") or {}).get("schema")
            if schema:
                config["responseSchema"] = schema
        return config

    def parse_response(self, data: dict[str, Any]) -> ContentResponse:
        candidates = data.get("candidates") or [{}]
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise ProviderResponseNoContentError(self.name)
        return ContentResponse(
            text=text,
            result=map_response_result(candidate.get("finishReason"), GEMINI_FINISH_REASONS),
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "deepseek": DeepSeekProvider,
    "gemini": GeminiProvider,
    "litellm": LiteLLMProvider,
}


def create_ai_provider(name: str, config: ProviderConfig | None = None, log: logging.Logger | None = None) -> BaseProvider:
    """Factory: build the adapter registered under ``name``."""
    cls = ADAPTER_REGISTRY.get(name.lower())
    if cls is None:
        raise OptionError(f'Provider "{name}" is not supported', provider=name)
    return cls(config, log)
