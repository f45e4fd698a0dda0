"""
chatstream - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Isolated Prometheus registries per test
- Fake transports and recording observers for driver tests
"""

import json
import os
from typing import Any, Dict, Iterable, List, Optional, Union

import pytest
from prometheus_client import CollectorRegistry

from chatstream.config import StreamConfig, reset_stream_config
from chatstream.observability.metrics import StreamMetricsCollector
from chatstream.streaming.observers import StreamObserver


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Metrics and Config
# ============================================================

@pytest.fixture
def registry():
    """A fresh Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Metrics collector bound to an isolated registry."""
    StreamMetricsCollector.reset_instance()
    collector = StreamMetricsCollector(registry=registry)
    yield collector
    StreamMetricsCollector.reset_instance()


@pytest.fixture(autouse=True)
def _reset_config():
    reset_stream_config()
    yield
    reset_stream_config()


@pytest.fixture
def fast_config():
    """Stream config with the shortest backoff."""
    return StreamConfig(
        max_retries=3,
        receive_timeout=5.0,
        retry_base_delay=0.001,
        retry_max_delay=0.001,
    )


# ============================================================
# SSE helpers
# ============================================================

def sse(data: Union[Dict[str, Any], str], event: Optional[str] = None) -> str:
    """Render one SSE frame."""
    body = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {body}\n\n"


def openai_chunk(
    content: Optional[str] = None,
    role: Optional[str] = None,
    finish_reason: Optional[str] = None,
    index: int = 0,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """A chat-completions stream chunk with one choice."""
    delta: Dict[str, Any] = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion.chunk",
        "model": "gpt-4o",
        "choices": [{"index": index, "delta": delta, "finish_reason": finish_reason}],
    }


# ============================================================
# Fake transport
# ============================================================

class FakeTransport:
    """
    Scripted transport: one list of chunks per attempt.

    An Exception instance in a script is raised at that point; attempts
    past the end of the scripts replay the last one.
    """

    def __init__(self, *scripts: Iterable[Any]):
        self.scripts = [list(script) for script in scripts]
        self.calls = 0
        self.closed = 0

    def __call__(self):
        script = self.scripts[min(self.calls, len(self.scripts) - 1)]
        self.calls += 1
        return self._stream(script)

    async def _stream(self, script):
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed += 1


# ============================================================
# Recording observer
# ============================================================

class RecordingObserver(StreamObserver):
    """Records every callback in order."""

    name = "recorder"

    def __init__(self):
        self.events: List[Any] = []
        self.deltas = []
        self.messages = []
        self.usages = []
        self.retries = []
        self.errors = []

    def on_delta(self, delta):
        self.events.append(("delta", delta))
        self.deltas.append(delta)

    def on_message(self, message):
        self.events.append(("message", message))
        self.messages.append(message)

    def on_usage(self, usage):
        self.events.append(("usage", usage))
        self.usages.append(usage)

    def on_retry(self, attempt, error):
        self.events.append(("retry", attempt))
        self.retries.append((attempt, error))

    def on_error(self, error):
        self.events.append(("error", error))
        self.errors.append(error)

    @property
    def text(self) -> str:
        return "".join(d.content_fragment or "" for d in self.deltas)


@pytest.fixture
def recorder():
    return RecordingObserver()
