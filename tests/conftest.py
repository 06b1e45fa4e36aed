"""Shared fixtures for the provider gateway tests."""

import logging

import httpx
import pytest

from ai_provider.core.config import settings

# Override settings for tests
settings.log_level = "DEBUG"
settings.log_json = False

_PROVIDER_ENV_VARS = (
    "OPENAI_API_KEY",
    "DEEPSEEK_API_KEY",
    "GEMINI_API_KEY",
    "LITELLM_API_KEY",
    "OPENAI_BASE_URL",
    "DEEPSEEK_BASE_URL",
    "GEMINI_BASE_URL",
    "LITELLM_BASE_URL",
    "AI_MODELS",
)


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch):
    """Keep real credentials in the environment out of Settings() built by tests."""
    for name in _PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def recorded_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def mock_transport(recorded_requests):
    """Build an httpx.MockTransport that records requests and answers with ``respond(request)``."""

    def factory(respond) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return respond(request)

        return httpx.MockTransport(handler)

    return factory
