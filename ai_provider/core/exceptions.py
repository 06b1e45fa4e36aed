"""Typed errors surfaced by the provider gateway.

Every error carries a stable machine-readable ``code`` so callers can branch
on it without parsing messages:

  - PROVIDER_EXCEEDED_QUOTA_ERROR: upstream answered 429
  - PROVIDER_RESPONSE_ERROR: any other non-2xx upstream status
  - PROVIDER_NO_CONTENT_ERROR: 2xx response without extractable text
  - OPTION_ERROR: invalid configuration (unknown provider, bad model token)
"""

from __future__ import annotations

from typing import Any


class AiProviderError(Exception):
    """Base class for all gateway errors."""

    code: str = "AI_PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int = 0,
        body: str = "",
        model: str = "",
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.body = body
        self.model = model  # set by the router for the candidate that raised

    def __str__(self) -> str:
        if self.model:
            return f"{self.message} (model: {self.model})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON payload used by canonical ``error`` events."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.provider:
            data["provider"] = self.provider
        if self.model:
            data["model"] = self.model
        if self.status_code:
            data["status_code"] = self.status_code
        return data


class ProviderExceededQuotaError(AiProviderError):
    """Upstream rejected the request with HTTP 429."""

    code = "PROVIDER_EXCEEDED_QUOTA_ERROR"

    def __init__(self, provider: str, status_code: int = 429, body: str = ""):
        super().__init__(
            f"Ai Provider Response: {provider} Response: {status_code} - {body}",
            provider=provider,
            status_code=status_code,
            body=body,
        )


class ProviderResponseError(AiProviderError):
    """Upstream answered with a non-2xx status other than 429."""

    code = "PROVIDER_RESPONSE_ERROR"

    def __init__(self, provider: str, status_code: int, body: str = ""):
        super().__init__(
            f"Ai Provider Response error: {provider} Response: {status_code} - {body}",
            provider=provider,
            status_code=status_code,
            body=body,
        )


class ProviderResponseNoContentError(AiProviderError):
    """Upstream succeeded but returned no text (or signalled a stream error)."""

    code = "PROVIDER_NO_CONTENT_ERROR"

    def __init__(self, provider: str, status_code: int = 0, body: str = ""):
        super().__init__(
            f"Ai Provider Response: No content from {provider}",
            provider=provider,
            status_code=status_code,
            body=body,
        )


class OptionError(AiProviderError):
    """Invalid configuration. Never retried and never a fallback signal."""

    code = "OPTION_ERROR"

    def __init__(self, detail: str, provider: str = ""):
        super().__init__(f"Option error: {detail}", provider=provider)
