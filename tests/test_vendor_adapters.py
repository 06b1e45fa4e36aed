"""Tests for the provider adapters and the adapter registry."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from ai_provider.core.exceptions import OptionError, ProviderExceededQuotaError, ProviderResponseNoContentError
from ai_provider.gateway.clients import GeminiClient, LiteLLMClient, OpenAIClient
from ai_provider.gateway.events import iter_messages
from ai_provider.gateway.stream import EventStream
from ai_provider.gateway.types import (
    ChatTurn,
    ContentResponse,
    ProviderConfig,
    ProviderRequestOptions,
    ResponseResult,
    StreamEventType,
)
from ai_provider.gateway.vendor_adapters import (
    ADAPTER_REGISTRY,
    DeepSeekProvider,
    GeminiProvider,
    LiteLLMProvider,
    OpenAIProvider,
    create_ai_provider,
)


def _make_httpx_response(status_code: int, json_data: dict | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request("POST", "https://example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, request=request)
    return httpx.Response(status_code, text=text, request=request)


def _openai_json(text: str | None = "Hello world", finish_reason: str = "stop") -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20},
    }


def _gemini_json(*texts: str, finish_reason: str = "STOP") -> dict:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": t} for t in texts]},
                "finishReason": finish_reason,
            }
        ]
    }


HISTORY = (ChatTurn(prompt="What is 2+2?", response="4"), ChatTurn(prompt="And 3+3?", response="6"))


# ==========================================================================
# Test: Registry
# ==========================================================================


class TestRegistry:
    """Test provider-name dispatch."""

    def test_registered_names(self):
        assert set(ADAPTER_REGISTRY) == {"openai", "deepseek", "gemini", "litellm"}

    @pytest.mark.parametrize(
        "name, cls",
        [("openai", OpenAIProvider), ("DeepSeek", DeepSeekProvider), ("gemini", GeminiProvider), ("litellm", LiteLLMProvider)],
    )
    def test_create(self, name, cls):
        assert isinstance(create_ai_provider(name, ProviderConfig(api_key="k")), cls)

    def test_unknown_provider(self):
        with pytest.raises(OptionError) as exc_info:
            create_ai_provider("mistral")
        assert exc_info.value.code == "OPTION_ERROR"
        assert "mistral" in exc_info.value.message


# ==========================================================================
# Test: construction defaults
# ==========================================================================


class TestProviderDefaults:
    """Test default base URLs and config overrides."""

    def test_openai_defaults(self):
        provider = OpenAIProvider(ProviderConfig(api_key="k"))
        assert isinstance(provider.client, OpenAIClient)
        assert provider.client.base_url == "https://api.openai.com"
        assert provider.client.api_path == "/v1/chat/completions"

    def test_deepseek_defaults(self):
        provider = DeepSeekProvider(ProviderConfig(api_key="k"))
        assert provider.client.base_url == "https://api.deepseek.com"
        assert provider.client.api_path == "/chat/completions"
        assert provider.client.provider_name == "deepseek"

    def test_litellm_defaults(self):
        provider = LiteLLMProvider()
        assert isinstance(provider.client, LiteLLMClient)
        assert provider.client.base_url == "http://localhost:4000"
        assert provider.client.api_key == ""

    def test_gemini_defaults(self):
        provider = GeminiProvider(ProviderConfig(api_key="g"))
        assert isinstance(provider.client, GeminiClient)
        assert provider.client.api_path == "/v1beta/models/{model}:{action}"

    def test_config_overrides(self):
        provider = OpenAIProvider(
            ProviderConfig(api_key="k", base_url="https://proxy.internal", api_path="/chat", user_agent="svc/2")
        )
        assert provider.client.base_url == "https://proxy.internal"
        assert provider.client.api_path == "/chat"
        assert provider.client.user_agent == "svc/2"

    def test_injected_client_used(self):
        client = AsyncMock()
        assert OpenAIProvider(ProviderConfig(client=client)).client is client


# ==========================================================================
# Test: Chat Completions adapters
# ==========================================================================


class TestOpenAICompatibleProvider:
    """Test canonical <-> Chat Completions mapping."""

    def test_messages_order(self):
        request = OpenAIProvider().build_request(
            "gpt-4o-mini",
            "And 4+4?",
            ProviderRequestOptions(context="You are a calculator", history=HISTORY),
        )
        assert request["messages"] == [
            {"role": "system", "content": "You are a calculator"},
            {"role": "user", "content": "What is 2+2?"},
            {"role": "assistant", "content": "4"},
            {"role": "user", "content": "And 3+3?"},
            {"role": "assistant", "content": "6"},
            {"role": "user", "content": "And 4+4?"},
        ]

    def test_no_system_message_without_context(self):
        request = OpenAIProvider().build_request("gpt-4o-mini", "Hi", ProviderRequestOptions())
        assert request["messages"] == [{"role": "user", "content": "Hi"}]

    def test_options_forwarded(self):
        options = ProviderRequestOptions(
            temperature=0.3,
            max_tokens=100,
            session_id="s-1",
            user="u-1",
            api_key="vk-1",
            extra_headers={"X-A": "1"},
            tool_choice="none",
        )
        request = LiteLLMProvider().build_request("alias", "Hi", options)
        assert request["model"] == "alias"
        assert request["temperature"] == 0.3
        assert request["max_tokens"] == 100
        assert request["session_id"] == "s-1"
        assert request["user"] == "u-1"
        assert request["virtual_key"] == "vk-1"
        assert request["extra_headers"] == {"X-A": "1"}
        assert request["tool_choice"] == "none"

    def test_parse_response(self):
        response = OpenAIProvider().parse_response(_openai_json("Hi there"))
        assert response == ContentResponse(text="Hi there", result=ResponseResult.COMPLETE)

    @pytest.mark.parametrize(
        "finish_reason, result",
        [
            ("stop", ResponseResult.COMPLETE),
            ("length", ResponseResult.INCOMPLETE_MAX_TOKENS),
            ("tool_calls", ResponseResult.INCOMPLETE_UNKNOWN),
            (None, ResponseResult.INCOMPLETE_UNKNOWN),
        ],
    )
    def test_finish_reason_mapping(self, finish_reason, result):
        assert OpenAIProvider().parse_response(_openai_json("x", finish_reason)).result == result

    @pytest.mark.parametrize(
        "data",
        [_openai_json(None), _openai_json(""), {"choices": []}, {}],
    )
    def test_no_content(self, data):
        with pytest.raises(ProviderResponseNoContentError) as exc_info:
            DeepSeekProvider().parse_response(data)
        assert exc_info.value.message == "Ai Provider Response: No content from deepseek"

    @pytest.mark.asyncio
    async def test_request_before_init(self):
        with pytest.raises(OptionError, match="not initialized"):
            await OpenAIProvider().request("gpt-4o-mini", "Hi")

    @pytest.mark.asyncio
    async def test_buffered_request_with_mock_client(self):
        client = AsyncMock()
        client.init.return_value = "handle"
        client.request.return_value = _openai_json("ok")
        provider = OpenAIProvider(ProviderConfig(client=client))
        await provider.init()

        response = await provider.request("gpt-4o-mini", "Hi", ProviderRequestOptions(max_tokens=5))

        assert response.text == "ok"
        handle, native, ctx = client.request.call_args.args
        assert handle == "handle"
        assert native["model"] == "gpt-4o-mini"
        assert native["max_tokens"] == 5
        assert ctx is provider.context

        await provider.close()
        client.close.assert_awaited_once_with("handle", provider.context)
        assert provider.api is None

    @pytest.mark.asyncio
    async def test_end_to_end_buffered(self, mock_transport, recorded_requests):
        client = OpenAIClient(
            "openai",
            "https://api.openai.com",
            "/v1/chat/completions",
            api_key="sk-test",
            transport=mock_transport(lambda r: _make_httpx_response(200, _openai_json())),
        )
        provider = OpenAIProvider(ProviderConfig(client=client))
        await provider.init()

        response = await provider.request("gpt-4o-mini", "Hello", ProviderRequestOptions(context="Be brief"))

        assert response == ContentResponse(text="Hello world", result=ResponseResult.COMPLETE)
        body = json.loads(recorded_requests[0].content)
        assert body["messages"][0] == {"role": "system", "content": "Be brief"}
        assert body["stream"] is False
        await provider.close()

    @pytest.mark.asyncio
    async def test_end_to_end_empty_content(self, mock_transport):
        client = OpenAIClient(
            "openai",
            "https://api.openai.com",
            "/v1/chat/completions",
            transport=mock_transport(lambda r: _make_httpx_response(200, _openai_json(""))),
        )
        provider = OpenAIProvider(ProviderConfig(client=client))
        await provider.init()
        with pytest.raises(ProviderResponseNoContentError):
            await provider.request("gpt-4o-mini", "Hello")
        await provider.close()

    @pytest.mark.asyncio
    async def test_end_to_end_quota(self, mock_transport):
        client = OpenAIClient(
            "deepseek",
            "https://api.deepseek.com",
            "/chat/completions",
            transport=mock_transport(lambda r: _make_httpx_response(429, text="Server busy")),
        )
        provider = DeepSeekProvider(ProviderConfig(client=client))
        await provider.init()
        with pytest.raises(ProviderExceededQuotaError, match="deepseek Response: 429 - Server busy"):
            await provider.request("deepseek-chat", "Hello")
        await provider.close()

    @pytest.mark.asyncio
    async def test_end_to_end_stream(self, mock_transport, recorded_requests):
        sse = (
            'data: {"choices": [{"delta": {"role": "assistant", "content": "Hel"}, "finish_reason": null}]}\n\n'
            'data: {"choices": [{"delta": {"content": "lo"}, "finish_reason": null}]}\n\n'
            'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n'
            "data: [DONE]\n\n"
        ).encode()
        client = LiteLLMClient(
            "litellm",
            "http://localhost:4000",
            "/v1/chat/completions",
            transport=mock_transport(lambda r: httpx.Response(200, content=sse)),
        )
        provider = LiteLLMProvider(ProviderConfig(client=client))
        await provider.init()

        stream = await provider.request("alias", "Hi", ProviderRequestOptions(stream=True, api_key="vk-9"))

        assert isinstance(stream, EventStream)
        messages = [m async for m in iter_messages(stream)]
        assert [m.type for m in messages] == [StreamEventType.CONTENT] * 3 + [StreamEventType.END]
        assert "".join(m.content for m in messages[:3]) == "Hello"
        assert messages[-1].result == ResponseResult.COMPLETE
        assert stream.upstream.is_closed

        sent = recorded_requests[0]
        assert sent.headers["Authorization"] == "Bearer vk-9"
        assert json.loads(sent.content)["stream"] is True
        await provider.close()

    @pytest.mark.asyncio
    async def test_stream_chunk_callback(self, mock_transport):
        sse = b'data: {"choices": [{"delta": {"content": "secret"}, "finish_reason": "stop"}]}\n\n'
        client = OpenAIClient(
            "openai",
            "https://api.openai.com",
            "/v1/chat/completions",
            transport=mock_transport(lambda r: httpx.Response(200, content=sse)),
        )

        async def redact(text: str) -> str:
            return "*" * len(text)

        provider = OpenAIProvider(ProviderConfig(client=client))
        await provider.init()
        stream = await provider.request("gpt-4o-mini", "Hi", ProviderRequestOptions(stream=True, on_stream_chunk=redact))
        messages = [m async for m in iter_messages(stream)]
        assert messages[0].content == "******"
        await provider.close()


# ==========================================================================
# Test: Gemini adapter
# ==========================================================================


class TestGeminiProvider:
    """Test canonical <-> Gemini native mapping."""

    def test_contents_and_system_instruction(self):
        request = GeminiProvider().build_request(
            "gemini-2.0-flash",
            "And 4+4?",
            ProviderRequestOptions(context="You are a calculator", history=HISTORY[:1]),
        )
        assert request["contents"] == [
            {"role": "user", "parts": [{"text": "What is 2+2?"}]},
            {"role": "model", "parts": [{"text": "4"}]},
            {"role": "user", "parts": [{"text": "And 4+4?"}]},
        ]
        assert request["systemInstruction"] == {"parts": [{"text": "You are a calculator"}]}
        assert request["generationConfig"] is None

    def test_generation_config(self):
        schema = {"type": "object", "properties": {"answer": {"type": "integer"}}}
        request = GeminiProvider().build_request(
            "gemini-2.0-flash",
            "Hi",
            ProviderRequestOptions(
                temperature=0.0,
                max_tokens=256,
                response_format={"type": "json_schema", "json_schema": {"name": "a", "schema": schema}},
            ),
        )
        assert request["generationConfig"] == {
            "temperature": 0.0,
            "maxOutputTokens": 256,
            "responseMimeType": "application/json",
            "responseSchema": schema,
        }

    def test_tool_config(self):
        request = GeminiProvider().build_request(
            "gemini-2.0-flash",
            "Hi",
            ProviderRequestOptions(tool_choice="required", allowed_tools=["lookup"]),
        )
        assert request["toolConfig"] == {
            "functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": ["lookup"]}
        }

    def test_parse_response_joins_parts(self):
        response = GeminiProvider().parse_response(_gemini_json("Hello", " world"))
        assert response == ContentResponse(text="Hello world", result=ResponseResult.COMPLETE)

    @pytest.mark.parametrize(
        "finish_reason, result",
        [
            ("STOP", ResponseResult.COMPLETE),
            ("MAX_TOKENS", ResponseResult.INCOMPLETE_MAX_TOKENS),
            ("RECITATION", ResponseResult.INCOMPLETE_UNKNOWN),
        ],
    )
    def test_finish_reason_mapping(self, finish_reason, result):
        assert GeminiProvider().parse_response(_gemini_json("x", finish_reason=finish_reason)).result == result

    def test_safety_block_is_no_content(self):
        data = {"candidates": [{"finishReason": "SAFETY", "safetyRatings": []}]}
        with pytest.raises(ProviderResponseNoContentError, match="No content from gemini"):
            GeminiProvider().parse_response(data)

    @pytest.mark.asyncio
    async def test_end_to_end_stream(self, mock_transport, recorded_requests):
        sse = (
            'data: {"candidates": [{"content": {"parts": [{"text": "Bon"}], "role": "model"}}]}\r\n\r\n'
            'data: {"candidates": [{"content": {"parts": [{"text": "jour"}], "role": "model"}, '
            '"finishReason": "MAX_TOKENS"}]}\r\n\r\n'
        ).encode()
        client = GeminiClient(
            "gemini",
            "https://generativelanguage.googleapis.com",
            "/v1beta/models/{model}:{action}",
            api_key="g-key",
            transport=mock_transport(lambda r: httpx.Response(200, content=sse)),
        )
        provider = GeminiProvider(ProviderConfig(client=client))
        await provider.init()

        stream = await provider.request("gemini-2.0-flash", "Hi", ProviderRequestOptions(stream=True))
        messages = [m async for m in iter_messages(stream)]

        assert [m.content for m in messages if m.type == StreamEventType.CONTENT] == ["Bon", "jour"]
        assert messages[-1].result == ResponseResult.INCOMPLETE_MAX_TOKENS
        assert recorded_requests[0].url.params["alt"] == "sse"
        await provider.close()
