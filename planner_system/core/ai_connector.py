#!/usr/bin/env python3
"""
AI Connector - Resilient requests to hosted generative-text providers
One client, one retry loop; provider differences live in provider_adapters.

    client = AIRequestClient.from_config("deepseek")
    result = client.send([ChatMessage.user("Hello")])
    if result.success:
        print(result.payload)
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence

import requests

from planner_config import PlannerConfig
from planner_datashapes import (
    AIFailure, AISuccess, ChatMessage, ErrorKind, GenerationConfig, ResponseEnvelope
)
from planner_errors import ErrorCategory, ErrorHandler, ErrorSeverity, report_error
from provider_adapters import ProviderAdapter, ProviderError, get_adapter

logger = logging.getLogger(__name__)


def decode_completion(text: str) -> Any:
    """JSON-decode a completion; anything that isn't JSON comes back as {'content': text}."""
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return {"content": text}


class AIRequestClient:
    """
    Sends one logical request and returns AISuccess or a classified AIFailure.

    RATE_LIMITED and TRANSIENT failures are retried up to max_retries times;
    rate limits back off exponentially, other transient errors wait a flat
    base_delay. Everything else is returned on the first attempt.
    """

    def __init__(self,
                 adapter: ProviderAdapter,
                 api_key: Optional[str] = None,
                 max_retries: int = 3,
                 base_delay: float = 1.0,
                 request_timeout: float = 60.0,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 error_handler: Optional[ErrorHandler] = None):
        self.adapter = adapter
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.request_timeout = request_timeout
        self.error_handler = error_handler
        self._sleep = sleep
        self._session = session
        self._api_key: Optional[str] = None
        self.is_initialized = False

        self._initialize(api_key)

    @classmethod
    def from_config(cls, provider: Optional[str] = None, config=PlannerConfig, **kwargs) -> "AIRequestClient":
        """Build a client for a provider using credentials and policy from config"""
        provider = provider or config.DEFAULT_PROVIDER
        settings = config.get_provider_settings(provider)
        adapter = get_adapter(provider, base_url=settings['base_url'], model=settings['model'])

        kwargs.setdefault('max_retries', config.AI_MAX_RETRIES)
        kwargs.setdefault('base_delay', config.AI_RETRY_BASE_DELAY)
        kwargs.setdefault('request_timeout', config.AI_REQUEST_TIMEOUT)
        return cls(adapter, api_key=settings['api_key'], **kwargs)

    def _initialize(self, api_key: Optional[str]) -> None:
        if not api_key:
            logger.error(f"{self.adapter.name} API key not found in configuration")
            return

        if self.adapter.is_placeholder(api_key):
            logger.warning(f"Please replace the placeholder API key with your actual {self.adapter.name} API key")
            return

        self._api_key = api_key
        self.is_initialized = True
        logger.info(f"{self.adapter.name} API initialized successfully")

    def is_ready(self) -> bool:
        return self.is_initialized

    def get_config(self) -> Dict[str, Any]:
        """Current client configuration (credential presence only, never the key)"""
        return {
            **self.adapter.describe(),
            'is_initialized': self.is_initialized,
            'has_api_key': self._api_key is not None,
            'max_retries': self.max_retries,
            'base_delay': self.base_delay,
            'request_timeout': self.request_timeout,
        }

    def retry_delay(self, error_kind: ErrorKind, retry_number: int) -> float:
        """Seconds to wait before retry number retry_number (1-indexed)"""
        if error_kind == ErrorKind.RATE_LIMITED:
            return self.base_delay * (2 ** (retry_number - 1))
        return self.base_delay

    def send(self, messages: Sequence[ChatMessage], config: Optional[GenerationConfig] = None) -> ResponseEnvelope:
        """Send one request, retrying transient failures internally"""
        if not self.is_initialized:
            return AIFailure(
                ErrorKind.NOT_INITIALIZED,
                f"{self.adapter.name} API not properly initialized",
                attempts=0,
            )

        if not messages:
            raise ValueError("send() needs at least one message")

        merged = (config or GenerationConfig()).merged_over(self.adapter.defaults)
        payload = self.adapter.build_payload(messages, merged)

        retries = 0
        while True:
            attempt = retries + 1
            result = self._attempt(payload, attempt)
            if result.success:
                return result

            if not result.retryable:
                self._report(result)
                return result

            if retries >= self.max_retries:
                logger.warning(f"{self.adapter.name}: giving up after {attempt} attempts ({result.error_kind.value})")
                self._report(result)
                return result

            retries += 1
            delay = self.retry_delay(result.error_kind, retries)
            if result.error_kind == ErrorKind.RATE_LIMITED:
                logger.info(f"Rate limited. Retrying in {delay:.1f}s...")
            else:
                logger.info(f"Retrying {self.adapter.name} request in {delay:.1f}s ({retries}/{self.max_retries})")
            self._sleep(delay)

    def _attempt(self, payload: Dict[str, Any], attempt: int) -> ResponseEnvelope:
        """One HTTP round trip, converted into an envelope"""
        http = self._session or requests
        status_code = None

        try:
            response = http.post(
                self.adapter.endpoint(),
                json=payload,
                headers=self.adapter.auth_headers(self._api_key),
                timeout=self.request_timeout,
            )
            status_code = response.status_code

            if not 200 <= status_code < 300:
                try:
                    body = response.json()
                except ValueError:
                    body = None
                raise ProviderError(
                    self.adapter.error_message(status_code, response.reason or "", body),
                    status_code=status_code,
                )

            try:
                body = response.json()
            except ValueError:
                raise ProviderError(f"Invalid JSON body from {self.adapter.name} API")

            try:
                text, usage = self.adapter.parse_response(body)
            except (AttributeError, TypeError, KeyError, IndexError) as e:
                raise ProviderError(f"Unexpected response shape from {self.adapter.name} API: {e}")

        except ProviderError as e:
            return self._failure(e.status_code or status_code, str(e), attempt)
        except requests.exceptions.RequestException as e:
            return self._failure(None, str(e) or type(e).__name__, attempt)

        return AISuccess(payload=decode_completion(text), usage=usage, attempts=attempt)

    def _failure(self, status_code: Optional[int], message: str, attempt: int) -> AIFailure:
        kind = self.adapter.classify(status_code, message)
        logger.error(f"{self.adapter.name} API request failed (attempt {attempt}): [{kind.value}] {message}")
        return AIFailure(kind, message, attempts=attempt)

    def _report(self, failure: AIFailure) -> None:
        category = {
            ErrorKind.RATE_LIMITED: ErrorCategory.AI_RATE_LIMIT,
            ErrorKind.UNAUTHORIZED: ErrorCategory.AI_CONFIGURATION,
            ErrorKind.QUOTA_EXCEEDED: ErrorCategory.AI_CONFIGURATION,
            ErrorKind.CONTENT_BLOCKED: ErrorCategory.AI_RESPONSE,
        }.get(failure.error_kind, ErrorCategory.AI_REQUEST)

        report_error(
            self.error_handler, logger,
            ProviderError(failure.message),
            category, ErrorSeverity.MEDIUM_ALERT,
            context=f"{self.adapter.name} {failure.error_kind.value} after {failure.attempts} attempt(s)",
            operation="send",
        )

    def close(self) -> None:
        """Release the pooled HTTP session, if one was supplied"""
        if self._session is not None:
            self._session.close()
            self._session = None
