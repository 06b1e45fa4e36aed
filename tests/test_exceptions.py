"""Tests for the typed gateway errors."""

from ai_provider.core.exceptions import (
    AiProviderError,
    OptionError,
    ProviderExceededQuotaError,
    ProviderResponseError,
    ProviderResponseNoContentError,
)


class TestErrors:
    """Test codes, messages and serialization."""

    def test_quota(self):
        error = ProviderExceededQuotaError("openai", 429, '{"error": "rate_limit"}')
        assert error.code == "PROVIDER_EXCEEDED_QUOTA_ERROR"
        assert str(error) == 'Ai Provider Response: openai Response: 429 - {"error": "rate_limit"}'
        assert error.body == '{"error": "rate_limit"}'

    def test_response_error(self):
        error = ProviderResponseError("gemini", 400, "bad request")
        assert error.code == "PROVIDER_RESPONSE_ERROR"
        assert error.message == "Ai Provider Response error: gemini Response: 400 - bad request"
        assert error.status_code == 400

    def test_no_content(self):
        error = ProviderResponseNoContentError("deepseek")
        assert error.code == "PROVIDER_NO_CONTENT_ERROR"
        assert error.message == "Ai Provider Response: No content from deepseek"

    def test_option_error(self):
        error = OptionError("unknown provider", provider="mistral")
        assert error.code == "OPTION_ERROR"
        assert error.message == "Option error: unknown provider"

    def test_common_base(self):
        for error in (
            ProviderExceededQuotaError("a"),
            ProviderResponseError("a", 500),
            ProviderResponseNoContentError("a"),
            OptionError("x"),
        ):
            assert isinstance(error, AiProviderError)

    def test_to_dict(self):
        assert ProviderResponseError("openai", 502, "upstream").to_dict() == {
            "code": "PROVIDER_RESPONSE_ERROR",
            "message": "Ai Provider Response error: openai Response: 502 - upstream",
            "provider": "openai",
            "status_code": 502,
        }
        assert OptionError("bad").to_dict() == {"code": "OPTION_ERROR", "message": "Option error: bad"}

    def test_model_in_str_and_dict(self):
        error = ProviderResponseError("openai", 500, "boom")
        error.model = "gpt-4o-mini"
        assert error.message == "Ai Provider Response error: openai Response: 500 - boom"
        assert str(error) == "Ai Provider Response error: openai Response: 500 - boom (model: gpt-4o-mini)"
        assert error.to_dict()["model"] == "gpt-4o-mini"
        assert "model" not in ProviderResponseError("openai", 500).to_dict()
