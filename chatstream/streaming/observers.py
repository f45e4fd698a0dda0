"""
chatstream - Stream Observers

Synchronous fan-out of stream output to any number of subscribers.

Every callback runs on the consumer's stack before the next chunk is
read. A callback that raises is logged and counted; the stream and the
remaining observers carry on.
"""

from typing import Callable, List, Optional

from ..core.errors import ChatStreamException
from ..core.models import AccumulatedMessage, Delta, Usage
from ..observability.logging import get_logger
from ..observability.metrics import StreamMetricsCollector

logger = get_logger(__name__)


class StreamObserver:
    """
    Base class for stream observers. Override what you need.

    Delivery is at-least-once per attempt: after on_retry the next attempt
    starts again from the beginning, so observers that accumulate should
    reset there.
    """

    def on_delta(self, delta: Delta):
        """A partial update for one index."""

    def on_message(self, message: AccumulatedMessage):
        """An index finished."""

    def on_usage(self, usage: Usage):
        """Final token usage for the stream."""

    def on_retry(self, attempt: int, error: ChatStreamException):
        """The attempt failed with a transient error and will be re-issued."""

    def on_error(self, error: ChatStreamException):
        """The stream failed for good."""


class CallbackObserver(StreamObserver):
    """Observer built from plain functions."""

    def __init__(
        self,
        on_delta: Optional[Callable[[Delta], None]] = None,
        on_message: Optional[Callable[[AccumulatedMessage], None]] = None,
        on_usage: Optional[Callable[[Usage], None]] = None,
        on_retry: Optional[Callable[[int, ChatStreamException], None]] = None,
        on_error: Optional[Callable[[ChatStreamException], None]] = None,
        name: str = "callback",
    ):
        self._on_delta = on_delta
        self._on_message = on_message
        self._on_usage = on_usage
        self._on_retry = on_retry
        self._on_error = on_error
        self.name = name

    def on_delta(self, delta: Delta):
        if self._on_delta:
            self._on_delta(delta)

    def on_message(self, message: AccumulatedMessage):
        if self._on_message:
            self._on_message(message)

    def on_usage(self, usage: Usage):
        if self._on_usage:
            self._on_usage(usage)

    def on_retry(self, attempt: int, error: ChatStreamException):
        if self._on_retry:
            self._on_retry(attempt, error)

    def on_error(self, error: ChatStreamException):
        if self._on_error:
            self._on_error(error)

    def __repr__(self) -> str:
        return f"CallbackObserver(name={self.name!r})"


class ObserverRegistry:
    """Holds the observers of one stream and isolates their failures."""

    def __init__(
        self,
        observers: Optional[List[StreamObserver]] = None,
        metrics: Optional[StreamMetricsCollector] = None,
    ):
        self._observers: List[StreamObserver] = list(observers or [])
        self.metrics = metrics
        self.error_count = 0

    def subscribe(self, observer: StreamObserver) -> StreamObserver:
        """Add an observer; safe to call from inside a callback."""
        self._observers.append(observer)
        return observer

    def unsubscribe(self, observer: StreamObserver):
        if observer in self._observers:
            self._observers.remove(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def _notify(self, callback: str, *args):
        for observer in list(self._observers):
            try:
                getattr(observer, callback)(*args)
            except Exception:
                self.error_count += 1
                name = getattr(observer, "name", None) or type(observer).__name__
                logger.exception(
                    "Stream observer raised",
                    observer=name,
                    callback=callback,
                )
                if self.metrics is not None:
                    self.metrics.record_observer_error(name, callback)

    def delta(self, delta: Delta):
        self._notify("on_delta", delta)

    def message(self, message: AccumulatedMessage):
        self._notify("on_message", message)

    def usage(self, usage: Usage):
        self._notify("on_usage", usage)

    def retry(self, attempt: int, error: ChatStreamException):
        self._notify("on_retry", attempt, error)

    def error(self, error: ChatStreamException):
        self._notify("on_error", error)
