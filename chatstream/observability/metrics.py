"""
chatstream - Prometheus Metrics

Stream decoding metrics with the Prometheus client library.

Metrics exposed:
- chatstream_streams_total: Counter of finished stream runs by provider and outcome
- chatstream_stream_duration_seconds: Histogram of stream run duration
- chatstream_time_to_first_delta_seconds: Histogram of time to the first delta
- chatstream_frames_total: Counter of decoded frames
- chatstream_frame_decode_errors_total: Counter of malformed frames
- chatstream_buffer_drops_total: Counter of carried buffers dropped by a safety valve
- chatstream_deltas_total: Counter of deltas delivered to observers
- chatstream_messages_total: Counter of accumulated messages by terminal status
- chatstream_retries_total: Counter of retried attempts by error code
- chatstream_unexpected_events_total: Counter of events outside the known taxonomy
- chatstream_observer_errors_total: Counter of observer callbacks that raised
- chatstream_tokens_total: Counter of tokens reported by providers (input/output)
- chatstream_active_streams: Gauge of streams currently running

Usage:
    from chatstream.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_frames(provider="openai", count=3)
"""

from typing import Optional, Tuple

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)


class StreamMetricsCollector:
    """
    Central metrics collector for stream decoding.

    Singleton per registry; pass a fresh CollectorRegistry in tests.
    """

    _instance: Optional["StreamMetricsCollector"] = None
    _initialized_registries: set = set()

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        registry_id = id(registry)
        if registry_id in StreamMetricsCollector._initialized_registries:
            # Prometheus refuses duplicate names on a registry; reuse the singleton's metrics
            if StreamMetricsCollector._instance is not None:
                self._copy_from(StreamMetricsCollector._instance)
                return

        StreamMetricsCollector._initialized_registries.add(registry_id)

        self.streams_total = Counter(
            "chatstream_streams_total",
            "Total stream runs by outcome",
            labelnames=["provider", "outcome"],
            registry=registry,
        )

        # Streams range from sub-second completions to multi-minute generations
        self.stream_duration = Histogram(
            "chatstream_stream_duration_seconds",
            "Stream run duration in seconds",
            labelnames=["provider", "outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0, float("inf")),
            registry=registry,
        )

        self.time_to_first_delta = Histogram(
            "chatstream_time_to_first_delta_seconds",
            "Time from attempt start to the first delta",
            labelnames=["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.frames_total = Counter(
            "chatstream_frames_total",
            "Total frames decoded",
            labelnames=["provider"],
            registry=registry,
        )

        self.frame_decode_errors = Counter(
            "chatstream_frame_decode_errors_total",
            "Total frames that could not be decoded",
            labelnames=["provider", "reason"],
            registry=registry,
        )

        self.buffer_drops = Counter(
            "chatstream_buffer_drops_total",
            "Total carried buffers dropped by a safety valve",
            labelnames=["provider", "reason"],
            registry=registry,
        )

        self.deltas_total = Counter(
            "chatstream_deltas_total",
            "Total deltas delivered",
            labelnames=["provider"],
            registry=registry,
        )

        self.messages_total = Counter(
            "chatstream_messages_total",
            "Total accumulated messages",
            labelnames=["provider", "status"],
            registry=registry,
        )

        self.retries_total = Counter(
            "chatstream_retries_total",
            "Total retried stream attempts",
            labelnames=["provider", "error_code"],
            registry=registry,
        )

        self.unexpected_events = Counter(
            "chatstream_unexpected_events_total",
            "Total events outside the known provider taxonomy",
            labelnames=["provider", "event_type"],
            registry=registry,
        )

        self.observer_errors = Counter(
            "chatstream_observer_errors_total",
            "Total observer callbacks that raised",
            labelnames=["observer", "callback"],
            registry=registry,
        )

        self.tokens_total = Counter(
            "chatstream_tokens_total",
            "Total tokens reported by providers",
            labelnames=["provider", "type"],  # type = input/output
            registry=registry,
        )

        self.active_streams = Gauge(
            "chatstream_active_streams",
            "Number of streams currently running",
            labelnames=["provider"],
            registry=registry,
        )

    @classmethod
    def get_instance(cls) -> "StreamMetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls):
        """Reset singleton (for testing)."""
        cls._instance = None
        cls._initialized_registries.clear()

    def _copy_from(self, other: "StreamMetricsCollector"):
        self.streams_total = other.streams_total
        self.stream_duration = other.stream_duration
        self.time_to_first_delta = other.time_to_first_delta
        self.frames_total = other.frames_total
        self.frame_decode_errors = other.frame_decode_errors
        self.buffer_drops = other.buffer_drops
        self.deltas_total = other.deltas_total
        self.messages_total = other.messages_total
        self.retries_total = other.retries_total
        self.unexpected_events = other.unexpected_events
        self.observer_errors = other.observer_errors
        self.tokens_total = other.tokens_total
        self.active_streams = other.active_streams

    def record_stream(self, provider: str, outcome: str, duration_seconds: float):
        """Record a finished stream run."""
        self.streams_total.labels(provider=provider, outcome=outcome).inc()
        self.stream_duration.labels(provider=provider, outcome=outcome).observe(duration_seconds)

    def record_time_to_first_delta(self, provider: str, seconds: float):
        self.time_to_first_delta.labels(provider=provider).observe(seconds)

    def record_frames(self, provider: str, count: int = 1):
        if count:
            self.frames_total.labels(provider=provider).inc(count)

    def record_decode_error(self, provider: str, reason: str):
        self.frame_decode_errors.labels(provider=provider, reason=reason).inc()

    def record_buffer_drop(self, provider: str, reason: str):
        self.buffer_drops.labels(provider=provider, reason=reason).inc()

    def record_delta(self, provider: str):
        self.deltas_total.labels(provider=provider).inc()

    def record_message(self, provider: str, status: str):
        self.messages_total.labels(provider=provider, status=status).inc()

    def record_retry(self, provider: str, error_code: str):
        self.retries_total.labels(provider=provider, error_code=error_code).inc()

    def record_unexpected_event(self, provider: str, event_type: Optional[str]):
        self.unexpected_events.labels(provider=provider, event_type=event_type or "unknown").inc()

    def record_observer_error(self, observer: str, callback: str):
        self.observer_errors.labels(observer=observer, callback=callback).inc()

    def record_tokens(self, provider: str, input_tokens: int, output_tokens: int):
        """Record token usage."""
        self.tokens_total.labels(provider=provider, type="input").inc(input_tokens)
        self.tokens_total.labels(provider=provider, type="output").inc(output_tokens)

    def track_active_stream(self, provider: str) -> "ActiveStreamTracker":
        """Context manager to track running streams."""
        return ActiveStreamTracker(self, provider)


class ActiveStreamTracker:
    """Context manager for tracking active streams."""

    def __init__(self, collector: StreamMetricsCollector, provider: str):
        self.collector = collector
        self.provider = provider

    def __enter__(self):
        self.collector.active_streams.labels(provider=self.provider).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_streams.labels(provider=self.provider).dec()


_metrics_instance: Optional[StreamMetricsCollector] = None


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> StreamMetricsCollector:
    """
    Setup metrics collection.

    Safe to call multiple times - returns existing instance for the same registry.
    """
    global _metrics_instance

    if _metrics_instance is not None and _metrics_instance.registry is registry:
        return _metrics_instance

    _metrics_instance = StreamMetricsCollector(registry)
    StreamMetricsCollector._instance = _metrics_instance
    return _metrics_instance


def get_metrics() -> StreamMetricsCollector:
    """Get the metrics collector instance, creating it on the default registry if needed."""
    global _metrics_instance
    if _metrics_instance is None:
        _metrics_instance = StreamMetricsCollector.get_instance()
    return _metrics_instance


def metrics_text(registry: CollectorRegistry = REGISTRY) -> Tuple[bytes, str]:
    """Render the registry in Prometheus exposition format with its content type."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
