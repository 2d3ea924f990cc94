"""
Test Configuration and Fixtures

Shared fixtures for the AI request client and the realtime collaboration
session. HTTP is faked by patching requests.post; the WebSocket is faked by
injecting a scripted transport factory into RealtimeSessionManager.
"""

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

# Modules live flat in core/
sys.path.insert(0, str(Path(__file__).parent.parent / "core"))


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: requires real provider credentials or a live collaboration server")
    config.addinivalue_line("markers", "slow: long-running tests")


# =============================================================================
# HTTP FIXTURES
# =============================================================================

def make_response(status_code=200, body=None, reason="OK"):
    """Fake requests.Response. body=None makes .json() raise ValueError."""
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    if body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    return response


def deepseek_body(content, usage=None):
    body = {"choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}]}
    if usage:
        body["usage"] = usage
    return body


def gemini_body(text, usage=None):
    body = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": "STOP"}]}
    if usage:
        body["usageMetadata"] = usage
    return body


@pytest.fixture
def sleeps():
    """Records every backoff delay instead of sleeping."""
    return []


@pytest.fixture
def deepseek_client(sleeps):
    from ai_connector import AIRequestClient
    from provider_adapters import DeepseekAdapter

    return AIRequestClient(DeepseekAdapter(), api_key="test-deepseek-key", sleep=sleeps.append)


@pytest.fixture
def gemini_client(sleeps):
    from ai_connector import AIRequestClient
    from provider_adapters import GeminiAdapter

    return AIRequestClient(GeminiAdapter(), api_key="test-gemini-key", sleep=sleeps.append)


@pytest.fixture
def user_messages():
    from planner_datashapes import ChatMessage

    return [ChatMessage.system("Respond only with valid JSON."), ChatMessage.user("Hello")]


# =============================================================================
# WEBSOCKET FIXTURES
# =============================================================================

_CLOSED = object()


class FakeTransport:
    """In-memory stand-in for a websockets connection"""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._inbox = asyncio.Queue()

    async def send(self, message):
        if self.closed:
            raise ConnectionError("transport closed")
        self.sent.append(json.loads(message))

    def feed(self, message):
        """Queue an inbound frame (dicts are JSON-encoded)."""
        self._inbox.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def drop(self, error=None):
        """End the receive loop, cleanly or by raising error."""
        self._inbox.put_nowait(error if error is not None else _CLOSED)

    async def close(self):
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeTransportFactory:
    """
    Transport factory for RealtimeSessionManager.

    construct_error: raised synchronously on every call (transport cannot be built)
    fail_with: raised when the returned awaitable is awaited (open fails)
    """

    def __init__(self):
        self.urls = []
        self.transports = []
        self.construct_error = None
        self.fail_with = None

    def __call__(self, url):
        self.urls.append(url)
        if self.construct_error is not None:
            raise self.construct_error

        error = self.fail_with

        async def _open():
            if error is not None:
                raise error
            transport = FakeTransport()
            self.transports.append(transport)
            return transport

        return _open()

    @property
    def calls(self):
        return len(self.urls)

    @property
    def latest(self):
        return self.transports[-1]


async def _wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_until():
    """Await until predicate() is true, failing after timeout seconds."""
    return _wait_until


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest_asyncio.fixture
async def manager(transport_factory):
    """Manager wired to the fake transport with millisecond delays."""
    from realtime_session import RealtimeSessionManager

    session = RealtimeSessionManager(
        user_id="user-1",
        user_name="Alex",
        reconnect_delay=0.001,
        degraded_delay=0.001,
        transport_factory=transport_factory,
    )
    yield session
    await session.close()


@pytest.fixture
def recorded_events():
    """Returns (record, events) - subscribe record to collect (type, data) pairs."""
    events = []

    def record(event):
        events.append((event.type, event.data))

    return record, events
