#!/usr/bin/env python3
"""
Provider Adapters - Wire format and failure markers per generative-text provider

The retry/backoff loop lives once in ai_connector.AIRequestClient. An adapter
only knows:
    - where to POST and how to authenticate
    - how to shape the request body and read the completion back
    - which status codes / message markers mean which ErrorKind

Adding a provider means adding an adapter class and registering it in ADAPTERS.
"""

from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple, Type

from planner_datashapes import ChatMessage, ErrorKind, GenerationConfig, MessageRole, TokenUsage


class ProviderError(Exception):
    """Provider call failed; message carries the text used for classification"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderAdapter:
    """Base adapter. Subclasses fill in the class-level tables and wire format."""

    name = "base"
    default_base_url = ""
    default_model = ""
    placeholder_key = ""

    defaults = GenerationConfig(temperature=0.8, max_output_tokens=2048, top_p=0.95)

    rate_limit_statuses: FrozenSet[int] = frozenset({429})
    rate_limit_markers: Tuple[str, ...] = ("429", "rate limit", "rate_limit")
    quota_statuses: FrozenSet[int] = frozenset()
    quota_markers: Tuple[str, ...] = ("quota",)
    auth_statuses: FrozenSet[int] = frozenset({401})
    auth_markers: Tuple[str, ...] = ("401", "unauthorized")
    safety_markers: Tuple[str, ...] = ()

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None):
        self.base_url = (base_url or self.default_base_url).rstrip('/')
        self.model = model or self.default_model

    def endpoint(self) -> str:
        raise NotImplementedError

    def auth_headers(self, api_key: str) -> Dict[str, str]:
        raise NotImplementedError

    def build_payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        raise NotImplementedError

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        """Return (completion_text, usage). Raise ProviderError on a bad shape."""
        raise NotImplementedError

    def is_placeholder(self, api_key: Optional[str]) -> bool:
        return bool(self.placeholder_key) and api_key == self.placeholder_key

    def error_message(self, status_code: int, reason: str, body: Any) -> str:
        """Pull the most descriptive message out of an error response body."""
        error = body.get('error') if isinstance(body, dict) else None
        if isinstance(error, dict):
            parts = [str(error[key]) for key in ('status', 'type', 'code', 'message') if error.get(key)]
            if parts:
                return ": ".join(dict.fromkeys(parts))
        if isinstance(error, str) and error:
            return error
        return f"HTTP {status_code}: {reason}"

    def classify(self, status_code: Optional[int], message: str) -> ErrorKind:
        """Map a failed attempt onto an ErrorKind. Order matters."""
        text = (message or "").lower()

        def matches(markers):
            return any(marker.lower() in text for marker in markers)

        if status_code in self.rate_limit_statuses or matches(self.rate_limit_markers):
            return ErrorKind.RATE_LIMITED
        if status_code in self.quota_statuses or matches(self.quota_markers):
            return ErrorKind.QUOTA_EXCEEDED
        if status_code in self.auth_statuses or matches(self.auth_markers):
            return ErrorKind.UNAUTHORIZED
        if matches(self.safety_markers):
            return ErrorKind.CONTENT_BLOCKED
        return ErrorKind.TRANSIENT

    def describe(self) -> Dict[str, Any]:
        return {'provider': self.name, 'base_url': self.base_url, 'model': self.model}


class DeepseekAdapter(ProviderAdapter):
    """OpenAI-compatible chat completions"""

    name = "deepseek"
    default_base_url = "https://api.deepseek.com/v1"
    default_model = "deepseek-chat"
    placeholder_key = "your_deepseek_api_key_here"

    defaults = GenerationConfig(
        temperature=0.8,
        max_output_tokens=2048,
        top_p=0.95,
        frequency_penalty=0,
        presence_penalty=0,
    )

    quota_statuses = frozenset({402})
    quota_markers = ("insufficient_quota", "insufficient balance", "quota")
    auth_markers = ("401", "unauthorized", "authentication fails", "invalid api key")
    safety_markers = ("content_filter", "content exists risk")

    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def auth_headers(self, api_key: str) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {api_key}',
        }

    def build_payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [message.to_dict() for message in messages],
            "temperature": config.temperature,
            "max_tokens": config.max_output_tokens,
            "top_p": config.top_p,
            "frequency_penalty": config.frequency_penalty,
            "presence_penalty": config.presence_penalty,
            "stream": False,
        }

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        choices = body.get('choices') if isinstance(body, dict) else None
        if not choices or not isinstance(choices, list):
            raise ProviderError("Invalid response format from Deepseek API")

        choice = choices[0]
        if not isinstance(choice, dict):
            raise ProviderError("Invalid response format from Deepseek API")
        if choice.get('finish_reason') == 'content_filter':
            raise ProviderError("Completion stopped by content_filter")

        message = choice.get('message')
        content = message.get('content') if isinstance(message, dict) else None
        if not content or not isinstance(content, str):
            raise ProviderError("No content received from Deepseek API")

        usage = None
        raw_usage = body.get('usage')
        if isinstance(raw_usage, dict):
            usage = TokenUsage(
                prompt_tokens=raw_usage.get('prompt_tokens') or 0,
                completion_tokens=raw_usage.get('completion_tokens') or 0,
                total_tokens=raw_usage.get('total_tokens') or 0,
            )
        return content, usage


class GeminiAdapter(ProviderAdapter):
    """Google Generative Language generateContent"""

    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"
    default_model = "gemini-1.5-flash"
    placeholder_key = "your_gemini_api_key_here"

    defaults = GenerationConfig(temperature=0.8, max_output_tokens=2048, top_p=0.95, top_k=40)

    rate_limit_markers = ("429", "rate limit", "resource_exhausted")
    quota_markers = ("quota_exceeded", "quota")
    auth_statuses = frozenset({401, 403})
    auth_markers = ("401", "unauthorized", "unauthenticated", "api_key_invalid", "permission_denied")
    safety_markers = ("safety",)

    BLOCKING_FINISH_REASONS = frozenset({"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII"})

    SAFETY_SETTINGS = [
        {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
        for category in (
            "HARM_CATEGORY_HARASSMENT",
            "HARM_CATEGORY_HATE_SPEECH",
            "HARM_CATEGORY_SEXUALLY_EXPLICIT",
            "HARM_CATEGORY_DANGEROUS_CONTENT",
        )
    ]

    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def auth_headers(self, api_key: str) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            'x-goog-api-key': api_key,
        }

    def build_payload(self, messages: Sequence[ChatMessage], config: GenerationConfig) -> Dict[str, Any]:
        system_parts: List[Dict[str, str]] = []
        contents: List[Dict[str, Any]] = []

        for message in messages:
            if message.role == MessageRole.SYSTEM:
                system_parts.append({"text": message.content})
                continue
            role = "model" if message.role == MessageRole.ASSISTANT else "user"
            contents.append({"role": role, "parts": [{"text": message.content}]})

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": config.temperature,
                "topK": config.top_k,
                "topP": config.top_p,
                "maxOutputTokens": config.max_output_tokens,
                "responseMimeType": "application/json",
            },
            "safetySettings": self.SAFETY_SETTINGS,
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    def parse_response(self, body: Dict[str, Any]) -> Tuple[str, Optional[TokenUsage]]:
        if not isinstance(body, dict):
            raise ProviderError("No response received from Gemini API")

        feedback = body.get('promptFeedback')
        block_reason = feedback.get('blockReason') if isinstance(feedback, dict) else None
        if block_reason:
            raise ProviderError(f"Content blocked by safety filters (blockReason={block_reason})")

        candidates = body.get('candidates')
        if not candidates or not isinstance(candidates, list):
            raise ProviderError("No response received from Gemini API")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise ProviderError("Invalid response format from Gemini API")
        finish_reason = candidate.get('finishReason')
        if finish_reason in self.BLOCKING_FINISH_REASONS:
            raise ProviderError(f"Content blocked by safety filters (finishReason={finish_reason})")

        content = candidate.get('content')
        parts = content.get('parts') if isinstance(content, dict) else None
        if not isinstance(parts, list) or not all(isinstance(part, dict) for part in parts):
            raise ProviderError("Invalid response format from Gemini API")
        text = "".join(str(part.get('text') or '') for part in parts)
        if not text:
            raise ProviderError("No content received from Gemini API")

        usage = None
        metadata = body.get('usageMetadata')
        if isinstance(metadata, dict):
            usage = TokenUsage(
                prompt_tokens=metadata.get('promptTokenCount') or 0,
                completion_tokens=metadata.get('candidatesTokenCount') or 0,
                total_tokens=metadata.get('totalTokenCount') or 0,
            )
        return text, usage


ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    DeepseekAdapter.name: DeepseekAdapter,
    GeminiAdapter.name: GeminiAdapter,
}


def get_adapter(name: str, base_url: Optional[str] = None, model: Optional[str] = None) -> ProviderAdapter:
    """Build the adapter registered under name"""
    try:
        adapter_cls = ADAPTERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown AI provider: {name}. Known: {', '.join(sorted(ADAPTERS))}")
    return adapter_cls(base_url=base_url, model=model)
