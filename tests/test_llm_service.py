"""Unit tests for the LLM helpers — JSON parsing and error classification."""
import pytest
from google.api_core.exceptions import ResourceExhausted

from app.exceptions import LLMQuotaExceededError, LLMResponseError
from app.services.llm_service import (
    is_quota_error,
    is_retryable_api_error,
    parse_json_response,
)


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"global": 80}') == {"global": 80}

    def test_markdown_fence(self):
        text = '```json\n{"global": 80, "insight": "ok"}\n```'
        assert parse_json_response(text) == {"global": 80, "insight": "ok"}

    def test_fence_without_language(self):
        assert parse_json_response('```\n{"love": 12}\n```') == {"love": 12}

    def test_surrounding_prose(self):
        text = 'Sure! Here is the result: {"global": 61, "love": 55} Hope it helps.'
        assert parse_json_response(text) == {"global": 61, "love": 55}

    def test_repairs_trailing_comma(self):
        assert parse_json_response('{"global": 61, "love": 55,}') == {"global": 61, "love": 55}

    def test_repairs_single_quotes(self):
        assert parse_json_response("{'global': 61}") == {"global": 61}

    def test_empty_raises(self):
        with pytest.raises(LLMResponseError):
            parse_json_response("   ")

    def test_json_array_is_not_an_object(self):
        with pytest.raises(LLMResponseError):
            parse_json_response("[1, 2, 3]")


class TestErrorClassification:

    @pytest.mark.parametrize(
        "message",
        [
            "402 Payment Required",
            "billing account disabled",
            "Payment required to continue",
            "Insufficient credits remaining",
        ],
    )
    def test_quota_messages(self, message):
        assert is_quota_error(RuntimeError(message))

    def test_quota_exception_type(self):
        assert is_quota_error(LLMQuotaExceededError("no details"))

    def test_generic_is_not_quota(self):
        assert not is_quota_error(TimeoutError("deadline exceeded"))

    @pytest.mark.parametrize("message", ["429 Too Many Requests", "503 Service Unavailable", "500 internal error"])
    def test_transient_errors_are_retryable(self, message):
        assert is_retryable_api_error(RuntimeError(message))

    def test_payment_failure_is_never_retried(self):
        assert not is_retryable_api_error(RuntimeError("402 Payment Required"))

    def test_gemini_rate_limit_is_retryable_not_quota(self):
        exc = ResourceExhausted("Resource has been exhausted (e.g. check quota).")

        assert is_retryable_api_error(exc)
        assert not is_quota_error(exc)

    def test_client_error_not_retryable(self):
        assert not is_retryable_api_error(ValueError("invalid argument"))
