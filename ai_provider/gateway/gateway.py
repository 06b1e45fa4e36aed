"""AI Gateway: ordered-candidate router over the provider adapters.

Main entry point for asking a model:
  1. Resolves the candidate list (caller override or configured default)
  2. Tries candidates strictly one after another
  3. Returns the first candidate's response or stream as soon as it succeeds
  4. On exhaustion, raises the last candidate's error

Usage:
    async with AiGateway(
        providers={"deepseek": ProviderConfig(api_key="..."), "openai": ProviderConfig(api_key="sk-...")},
        models=["deepseek:deepseek-chat", "openai:gpt-4o-mini"],
    ) as gateway:
        response = await gateway.request(AiRequest(prompt="Hello"))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ai_provider.core.config import Settings
from ai_provider.core.exceptions import AiProviderError, OptionError
from ai_provider.gateway.stream import EventStream
from ai_provider.gateway.types import (
    AiRequest,
    ContentResponse,
    ModelCandidate,
    ProviderConfig,
    parse_models,
)
from ai_provider.gateway.vendor_adapters import BaseProvider, create_ai_provider

logger = logging.getLogger(__name__)


class AiGateway:
    """Router/facade: configured adapters plus a default-priority candidate list."""

    def __init__(
        self,
        providers: dict[str, ProviderConfig],
        models: Sequence[ModelCandidate | str],
        log: logging.Logger | None = None,
    ):
        self.provider_configs = {name.lower(): config for name, config in providers.items()}
        self.models = [m if isinstance(m, ModelCandidate) else ModelCandidate.parse(m) for m in models]
        self.logger = log or logger
        self.providers: dict[str, BaseProvider] = {}

    @classmethod
    def from_settings(cls, current: Settings) -> AiGateway:
        """Build a gateway from environment settings."""
        providers = {
            name: ProviderConfig(
                api_key=api_key,
                base_url=base_url or None,
                user_agent=current.user_agent,
                pool_options=current.pool_options,
            )
            for name, (api_key, base_url) in current.provider_credentials().items()
        }
        return cls(providers=providers, models=parse_models(current.ai_models))

    async def init(self) -> None:
        """Create one adapter per configured provider and open its pool."""
        for candidate in self.models:
            if candidate.provider not in self.provider_configs:
                raise OptionError(
                    f'Model "{candidate.token}" references unconfigured provider "{candidate.provider}"',
                    provider=candidate.provider,
                )

        for name, config in self.provider_configs.items():
            provider = create_ai_provider(name, config, self.logger)
            self.providers[name] = provider
            await provider.init()
            self.logger.debug("Provider %s initialized", name, extra={"provider": name})

        self.logger.info(
            "AI gateway ready: providers=%s models=%s",
            ",".join(self.providers),
            ",".join(c.token for c in self.models),
        )

    async def close(self) -> None:
        """Close every adapter, including ones whose init never completed.

        A failing close does not stop the others; the first error is raised
        once every adapter has been tried.
        """
        providers, self.providers = self.providers, {}
        first_error: Exception | None = None
        for name, provider in providers.items():
            try:
                await provider.close()
            except Exception as e:
                self.logger.error("Provider %s failed to close: %s", name, e, extra={"provider": name})
                first_error = first_error or e
                continue
            self.logger.debug("Provider %s closed", name, extra={"provider": name})
        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> AiGateway:
        try:
            await self.init()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _resolve_candidates(self, request: AiRequest) -> list[ModelCandidate]:
        candidates = [ModelCandidate.parse(token) for token in request.models] if request.models else self.models
        for candidate in candidates:
            if candidate.provider not in self.providers:
                raise OptionError(
                    f'Provider "{candidate.provider}" is not configured',
                    provider=candidate.provider,
                )
        return list(candidates)

    async def request(self, request: AiRequest) -> ContentResponse | EventStream:
        """Try each candidate in order; the first success wins.

        Earlier failures are logged and dropped; if every candidate fails,
        the last error is raised. ``OptionError`` is raised immediately.
        """
        candidates = self._resolve_candidates(request)
        if not candidates:
            raise OptionError("No models to try")

        last_error: Exception | None = None
        for candidate in candidates:
            provider = self.providers[candidate.provider]
            try:
                response = await provider.request(candidate.model, request.prompt, request.options)
            except OptionError:
                raise
            except Exception as e:
                if isinstance(e, AiProviderError):
                    e.model = candidate.model
                self.logger.warning(
                    "Candidate %s failed: %s",
                    candidate.token,
                    e,
                    extra={"provider": candidate.provider, "model": candidate.model},
                )
                last_error = e
                continue

            self.logger.debug(
                "Candidate %s succeeded",
                candidate.token,
                extra={"provider": candidate.provider, "model": candidate.model},
            )
            return response

        self.logger.error(
            "All %d candidates failed, last: %s",
            len(candidates),
            candidates[-1].token,
            extra={"provider": candidates[-1].provider, "model": candidates[-1].model},
        )
        raise last_error
