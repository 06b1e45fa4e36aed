from __future__ import annotations

from dataclasses import dataclass

import httpx
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_USER_AGENT = "ai-provider/0.1.0"


@dataclass(frozen=True)
class PoolOptions:
    """Connection-pool tuning for one provider client."""

    max_connections: int = 50
    max_keepalive_connections: int = 20
    keepalive_expiry: float = 30.0
    timeout: float = 120.0  # read/write/pool timeout, streaming needs it long
    connect_timeout: float = 10.0

    def limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections,
            keepalive_expiry=self.keepalive_expiry,
        )

    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=self.connect_timeout)


DEFAULT_POOL_OPTIONS = PoolOptions()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider credentials (empty = provider not configured, except litellm)
    openai_api_key: str = ""
    deepseek_api_key: str = ""
    gemini_api_key: str = ""
    litellm_api_key: str = ""

    # Base URL overrides (empty = adapter default)
    openai_base_url: str = ""
    deepseek_base_url: str = ""
    gemini_base_url: str = ""
    litellm_base_url: str = ""

    # Default-priority candidate list, e.g. "deepseek:deepseek-chat,openai:gpt-4o-mini"
    ai_models: str = "openai:gpt-4o-mini"

    user_agent: str = DEFAULT_USER_AGENT

    # Pool
    pool_max_connections: int = DEFAULT_POOL_OPTIONS.max_connections
    pool_max_keepalive_connections: int = DEFAULT_POOL_OPTIONS.max_keepalive_connections
    pool_keepalive_expiry: float = DEFAULT_POOL_OPTIONS.keepalive_expiry
    request_timeout: float = DEFAULT_POOL_OPTIONS.timeout
    connect_timeout: float = DEFAULT_POOL_OPTIONS.connect_timeout

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    @property
    def pool_options(self) -> PoolOptions:
        return PoolOptions(
            max_connections=self.pool_max_connections,
            max_keepalive_connections=self.pool_max_keepalive_connections,
            keepalive_expiry=self.pool_keepalive_expiry,
            timeout=self.request_timeout,
            connect_timeout=self.connect_timeout,
        )

    def provider_credentials(self) -> dict[str, tuple[str, str]]:
        """Map provider name -> (api_key, base_url) for every configured provider.

        LiteLLM proxies often run without a master key, so a base URL alone
        is enough to configure it.
        """
        configured: dict[str, tuple[str, str]] = {}
        for name in ("openai", "deepseek", "gemini"):
            api_key = getattr(self, f"{name}_api_key")
            if api_key:
                configured[name] = (api_key, getattr(self, f"{name}_base_url"))
        if self.litellm_api_key or self.litellm_base_url:
            configured["litellm"] = (self.litellm_api_key, self.litellm_base_url)
        return configured


settings = Settings()


def validate_settings(current: Settings | None = None) -> None:
    """Validate routing settings. Called by entry points before building a gateway."""
    from ai_provider.core.exceptions import OptionError
    from ai_provider.gateway.types import parse_models

    current = current or settings
    errors: list[str] = []

    try:
        candidates = parse_models(current.ai_models)
    except OptionError as e:
        errors.append(f"AI_MODELS is invalid: {e.message}")
        candidates = []

    if not candidates and not errors:
        errors.append("AI_MODELS must list at least one provider:model pair")

    configured = current.provider_credentials()
    for candidate in candidates:
        if candidate.provider not in configured:
            errors.append(
                f"AI_MODELS references '{candidate.provider}' but no credentials are set "
                f"(set {candidate.provider.upper()}_API_KEY)"
            )

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
