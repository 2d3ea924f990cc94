"""
Provider Adapter Tests

Wire payloads, response parsing and failure classification for the
DeepSeek and Gemini adapters.
"""

import pytest

from conftest import deepseek_body, gemini_body

from planner_datashapes import ChatMessage, ErrorKind, GenerationConfig
from provider_adapters import (
    ADAPTERS, DeepseekAdapter, GeminiAdapter, ProviderError, get_adapter
)


MESSAGES = [
    ChatMessage.system("You are a wedding planner."),
    ChatMessage.user("Ideas for a spring wedding?"),
    ChatMessage.assistant("Pastels and peonies."),
]


# =============================================================================
# REGISTRY
# =============================================================================

class TestRegistry:

    def test_lookup_is_case_insensitive(self):
        adapter = get_adapter("Gemini", model="gemini-1.5-pro")
        assert isinstance(adapter, GeminiAdapter)
        assert adapter.model == "gemini-1.5-pro"

    def test_unknown_provider_raises(self):
        """
        EDGE: Unknown names fail loudly and list what is available.
        """
        with pytest.raises(ValueError, match="deepseek"):
            get_adapter("openai")

    def test_registry_contents(self):
        assert set(ADAPTERS) == {"deepseek", "gemini"}


# =============================================================================
# DEEPSEEK
# =============================================================================

class TestDeepseekAdapter:

    def test_payload_defaults(self):
        """
        HAPPY PATH: Unset settings fall back to provider defaults.
        """
        adapter = DeepseekAdapter()
        config = GenerationConfig().merged_over(adapter.defaults)

        payload = adapter.build_payload(MESSAGES, config)

        assert payload["model"] == "deepseek-chat"
        assert payload["temperature"] == 0.8
        assert payload["max_tokens"] == 2048
        assert payload["frequency_penalty"] == 0
        assert payload["presence_penalty"] == 0
        assert [m["role"] for m in payload["messages"]] == ["system", "user", "assistant"]

    def test_custom_base_url_is_normalized(self):
        adapter = DeepseekAdapter(base_url="http://proxy.local/v1/")
        assert adapter.endpoint() == "http://proxy.local/v1/chat/completions"

    def test_parse_response_with_usage(self):
        text, usage = DeepseekAdapter().parse_response(
            deepseek_body("hi", usage={"prompt_tokens": 3, "completion_tokens": 1, "total_tokens": 4})
        )
        assert text == "hi"
        assert usage.prompt_tokens == 3

    @pytest.mark.parametrize("body", [
        {},
        {"choices": []},
        deepseek_body(""),
        {"choices": ["oops"]},
        {"choices": [{"message": "hello"}]},
        {"choices": [{"message": {"content": 42}}]},
        {"choices": {"message": {"content": "hi"}}},
    ])
    def test_parse_response_rejects_bad_shapes(self, body):
        """
        EDGE: Missing choices, empty content or wrongly typed fields are a provider error.
        """
        with pytest.raises(ProviderError):
            DeepseekAdapter().parse_response(body)

    def test_content_filter_finish_reason(self):
        body = {"choices": [{"message": {"content": "partial"}, "finish_reason": "content_filter"}]}

        with pytest.raises(ProviderError) as exc_info:
            DeepseekAdapter().parse_response(body)

        assert DeepseekAdapter().classify(200, str(exc_info.value)) == ErrorKind.CONTENT_BLOCKED

    @pytest.mark.parametrize("status, message, kind", [
        (429, "Too Many Requests", ErrorKind.RATE_LIMITED),
        (None, "rate_limit_exceeded", ErrorKind.RATE_LIMITED),
        (402, "Insufficient Balance", ErrorKind.QUOTA_EXCEEDED),
        (400, "insufficient_quota", ErrorKind.QUOTA_EXCEEDED),
        (401, "Authentication Fails", ErrorKind.UNAUTHORIZED),
        (500, "Internal Server Error", ErrorKind.TRANSIENT),
        (None, "Read timed out", ErrorKind.TRANSIENT),
    ])
    def test_classify(self, status, message, kind):
        assert DeepseekAdapter().classify(status, message) == kind

    def test_rate_limit_wins_over_quota(self):
        """
        EDGE: A 429 that mentions quota is still retried as a rate limit.
        """
        assert DeepseekAdapter().classify(429, "quota window exhausted") == ErrorKind.RATE_LIMITED

    def test_error_message_prefers_body(self):
        body = {"error": {"message": "Authentication Fails", "type": "authentication_error"}}
        message = DeepseekAdapter().error_message(401, "Unauthorized", body)
        assert message == "authentication_error: Authentication Fails"

    def test_error_message_falls_back_to_status(self):
        assert DeepseekAdapter().error_message(503, "Service Unavailable", None) == "HTTP 503: Service Unavailable"


# =============================================================================
# GEMINI
# =============================================================================

class TestGeminiAdapter:

    def test_payload_shape(self):
        """
        HAPPY PATH: System prompt goes to systemInstruction, assistant maps to model.
        """
        adapter = GeminiAdapter()
        config = GenerationConfig(temperature=0.7).merged_over(adapter.defaults)

        payload = adapter.build_payload(MESSAGES, config)

        assert payload["systemInstruction"] == {"parts": [{"text": "You are a wedding planner."}]}
        assert [c["role"] for c in payload["contents"]] == ["user", "model"]
        assert payload["generationConfig"]["temperature"] == 0.7
        assert payload["generationConfig"]["topK"] == 40
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert len(payload["safetySettings"]) == 4

    def test_no_system_instruction_without_system_message(self):
        adapter = GeminiAdapter()
        payload = adapter.build_payload([ChatMessage.user("hi")], adapter.defaults)
        assert "systemInstruction" not in payload

    def test_endpoint_and_headers(self):
        adapter = GeminiAdapter()
        assert adapter.endpoint().endswith("/models/gemini-1.5-flash:generateContent")
        assert adapter.auth_headers("abc")["x-goog-api-key"] == "abc"

    def test_parse_response_joins_parts(self):
        body = {
            "candidates": [{"content": {"parts": [{"text": '{"a": '}, {"text": '1}'}]}, "finishReason": "STOP"}],
            "usageMetadata": {"promptTokenCount": 7, "candidatesTokenCount": 3, "totalTokenCount": 10},
        }
        text, usage = GeminiAdapter().parse_response(body)
        assert text == '{"a": 1}'
        assert usage.completion_tokens == 3

    def test_usage_omitted_when_not_reported(self):
        _, usage = GeminiAdapter().parse_response(gemini_body("ok"))
        assert usage is None

    def test_non_dict_usage_is_ignored(self):
        text, usage = GeminiAdapter().parse_response({**gemini_body("ok"), "usageMetadata": 5})
        assert text == "ok"
        assert usage is None

    @pytest.mark.parametrize("body", [
        [],
        {"candidates": []},
        {"candidates": ["oops"]},
        {"candidates": [{"content": {"parts": ["text"]}}]},
        {"candidates": [{"content": "text"}]},
        {"candidates": [{"content": {"parts": [{"text": ""}]}}]},
        {"promptFeedback": "blocked?", "candidates": []},
    ])
    def test_parse_response_rejects_bad_shapes(self, body):
        """
        EDGE: Wrongly typed candidates, content or parts are a provider error.
        """
        with pytest.raises(ProviderError):
            GeminiAdapter().parse_response(body)

    def test_safety_finish_reason_is_blocked(self):
        """
        EDGE: finishReason SAFETY raises a message that classifies as CONTENT_BLOCKED.
        """
        body = {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}

        with pytest.raises(ProviderError) as exc_info:
            GeminiAdapter().parse_response(body)

        assert GeminiAdapter().classify(None, str(exc_info.value)) == ErrorKind.CONTENT_BLOCKED

    @pytest.mark.parametrize("status, message, kind", [
        (429, "RESOURCE_EXHAUSTED: Resource has been exhausted (e.g. check quota).", ErrorKind.RATE_LIMITED),
        (400, "QUOTA_EXCEEDED", ErrorKind.QUOTA_EXCEEDED),
        (403, "PERMISSION_DENIED: Method doesn't allow unregistered callers", ErrorKind.UNAUTHORIZED),
        (400, "API_KEY_INVALID", ErrorKind.UNAUTHORIZED),
        (500, "INTERNAL", ErrorKind.TRANSIENT),
    ])
    def test_classify(self, status, message, kind):
        assert GeminiAdapter().classify(status, message) == kind

    def test_placeholder_detection(self):
        adapter = GeminiAdapter()
        assert adapter.is_placeholder("your_gemini_api_key_here")
        assert not adapter.is_placeholder("real-key")
