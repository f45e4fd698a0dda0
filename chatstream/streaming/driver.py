"""
chatstream - Stream Driver

Runs one streamed call end to end:

    transport -> FrameDecoder -> EventNormalizer -> DeltaMerger -> observers

Each chunk is decoded, normalized and merged inline, and every Delta and
AccumulatedMessage reaches the observers before the next chunk is read.

Retry policy:
- Transient errors (dropped connection, receive timeout, provider errors
  classified transient) with retries left: discard the buffer and the
  merger, notify observers via on_retry, back off, re-issue the request.
  Deltas already delivered are not retracted, so delivery is
  at-least-once per attempt.
- Anything else ends the run immediately with a typed error.
- Transient errors past the retry budget end with RetriesExhaustedError.
- Once the cancellation token fires, a pending read is abandoned and any
  failure is reported as StreamCancelledError instead of being retried.

run() returns a StreamResult and does not raise for stream failures.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Sequence, Union

from ..config import StreamConfig, get_stream_config
from ..core.errors import (
    ChatStreamException,
    RetriesExhaustedError,
    StreamCancelledError,
    TransportTimeoutError,
    UnexpectedEventShapeError,
    classify_transport_error,
)
from ..core.http_client import calculate_backoff
from ..core.models import AccumulatedMessage, Delta, Usage
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import StreamMetricsCollector, get_metrics
from ..observability.tracing import TracingManager, get_tracing_manager, trace_stream_attempt
from .cancellation import CancellationToken
from .errors import should_retry_stream_error
from .frames import DROP_REASONS, DecodeResult, FrameDecoder
from .merger import DeltaMerger, MergeResult
from .observers import ObserverRegistry, StreamObserver
from .providers import get_provider_profile

logger = get_logger(__name__)


# Called once per attempt; returns the raw body chunks of a fresh request
TransportFactory = Callable[[], AsyncIterator[Union[bytes, str]]]

_END = object()


class StreamState(str, Enum):
    """Driver lifecycle."""
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StreamResult:
    """Outcome of a driver run: the finished messages or a typed error."""
    messages: List[AccumulatedMessage] = field(default_factory=list)
    error: Optional[ChatStreamException] = None
    attempts: int = 0
    usage: Optional[Usage] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> Optional[AccumulatedMessage]:
        """The message at index 0, for the usual single-choice stream."""
        return self.messages[0] if self.messages else None


class StreamDriver:
    """
    Drives one streamed call with retries and observer fan-out.

    Args:
        provider: Provider name (selects normalizer and usage policy)
        transport: Factory called once per attempt
        config: Limits; read from the environment when omitted
        observers: Observers or a prepared ObserverRegistry
        cancellation_token: Raced against every read and checked during backoff
        metrics: Metrics collector (defaults to the process-wide one)
        tracing: Tracing manager (defaults to the process-wide one)
        request_id: Correlation id for logs

    Usage:
        driver = StreamDriver("anthropic", transport, observers=[printer])
        result = await driver.run()
        if result.ok:
            print(result.message.content)
    """

    def __init__(
        self,
        provider: str,
        transport: TransportFactory,
        config: Optional[StreamConfig] = None,
        observers: Optional[Union[ObserverRegistry, Sequence[StreamObserver]]] = None,
        cancellation_token: Optional[CancellationToken] = None,
        metrics: Optional[StreamMetricsCollector] = None,
        tracing: Optional[TracingManager] = None,
        request_id: Optional[str] = None,
    ):
        self.profile = get_provider_profile(provider)
        self.provider = self.profile.name
        self.transport = transport
        self.config = config or get_stream_config()
        self.metrics = metrics or get_metrics()
        self.tracing = tracing or get_tracing_manager()
        self.cancellation_token = cancellation_token
        self.request_id = request_id or f"stream_{uuid.uuid4().hex[:12]}"

        if isinstance(observers, ObserverRegistry):
            self.observers = observers
            if self.observers.metrics is None:
                self.observers.metrics = self.metrics
        else:
            self.observers = ObserverRegistry(list(observers or []), self.metrics)

        self.state = StreamState.CONNECTING

    # ============================================================
    # Public API
    # ============================================================

    async def run(self) -> StreamResult:
        """Run the stream to completion or failure."""
        started = time.perf_counter()
        ctx_token = LogContext.set_current(
            LogContext(request_id=self.request_id, provider=self.provider)
        )
        try:
            with self.metrics.track_active_stream(self.provider):
                result = await self._run_attempts()
        finally:
            LogContext.reset(ctx_token)

        outcome = "completed" if result.ok else result.error.code
        self.metrics.record_stream(self.provider, outcome, time.perf_counter() - started)
        return result

    # ============================================================
    # Attempt loop
    # ============================================================

    async def _run_attempts(self) -> StreamResult:
        attempt = 0

        while True:
            attempt += 1
            try:
                self._check_cancelled()
                merger = await self._attempt(attempt)
            except ChatStreamException as error:
                # A failure after cancel() is reported as the cancellation
                token = self.cancellation_token
                if token is not None and token.cancelled and not isinstance(error, StreamCancelledError):
                    error = self._cancelled_error()

                if not should_retry_stream_error(error, attempt, self.config.max_retries):
                    if error.retryable:
                        error = RetriesExhaustedError(self.provider, attempt, error, self.request_id)
                    return self._fail(error, attempt)

                delay = calculate_backoff(
                    attempt - 1,
                    base_delay=self.config.retry_base_delay,
                    max_delay=self.config.retry_max_delay,
                )
                logger.warning(
                    "Retrying stream after transient error",
                    attempt=attempt,
                    max_retries=self.config.max_retries,
                    error_code=error.code,
                    delay_seconds=round(delay, 2),
                )
                self.metrics.record_retry(self.provider, error.code)
                self.observers.retry(attempt, error)

                if await self._backoff(delay):
                    return self._fail(self._cancelled_error(), attempt)
                continue

            return self._complete(merger, attempt)

    async def _attempt(self, attempt: int) -> DeltaMerger:
        """Run one attempt. Raises ChatStreamException when it fails."""
        self.state = StreamState.CONNECTING
        ctx = LogContext.get_current()
        if ctx is not None:
            ctx.update(attempt=attempt)

        decoder = FrameDecoder(
            max_resplit_depth=self.config.max_resplit_depth,
            max_buffer_chars=self.config.max_buffer_chars,
            provider=self.provider,
        )
        merger = self.profile.create_merger(self.config.usage_policy)
        normalizer = self.profile.normalizer
        attempt_started = time.perf_counter()
        first_delta = [True]

        with trace_stream_attempt(self.provider, attempt, self.tracing):
            trace_ctx = self.tracing.get_current_trace_context()
            if ctx is not None and trace_ctx is not None:
                ctx.update(trace_id=trace_ctx.trace_id, span_id=trace_ctx.span_id)

            try:
                iterator = self.transport().__aiter__()
                try:
                    while True:
                        self._check_cancelled()
                        chunk = await self._next_chunk(iterator)
                        if chunk is _END:
                            break
                        self.state = StreamState.STREAMING
                        self._check_cancelled()

                        result = decoder.feed(chunk)
                        self._record_decode(result)

                        for frame in result.frames:
                            for event in normalizer.normalize(frame.data, frame.event):
                                self._deliver(merger.merge(event), attempt_started, first_delta)

                        if result.done:
                            break
                finally:
                    aclose = getattr(iterator, "aclose", None)
                    if aclose is not None:
                        await aclose()

                for closing in merger.close():
                    self._deliver(closing, attempt_started, first_delta)

            except ChatStreamException as e:
                if isinstance(e, UnexpectedEventShapeError):
                    self.metrics.record_unexpected_event(self.provider, e.event_type)
                self.tracing.add_span_attributes({"chatstream.error_code": e.code})
                self.tracing.record_exception(e)
                raise

            self.tracing.add_span_attributes({"chatstream.messages": len(merger.messages)})

        return merger

    async def _next_chunk(self, iterator: AsyncIterator[Union[bytes, str]]):
        """
        Read one chunk, racing the read against the receive timeout and
        the cancellation token.
        """
        read = asyncio.ensure_future(iterator.__anext__())
        waiters = {read}
        cancelled = None
        if self.cancellation_token is not None:
            cancelled = asyncio.ensure_future(self.cancellation_token.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.config.receive_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancelled is not None:
                cancelled.cancel()
            if not read.done():
                # The generator must be idle before aclose()
                read.cancel()
                await asyncio.wait({read})

        if self.cancellation_token is not None and self.cancellation_token.cancelled:
            if not read.cancelled():
                read.exception()
            raise self._cancelled_error()

        if read not in done:
            if not read.cancelled():
                read.exception()
            raise TransportTimeoutError(
                self.provider,
                f"No data from {self.provider} for {self.config.receive_timeout}s",
                self.request_id,
            )

        try:
            return read.result()
        except StopAsyncIteration:
            return _END
        except ChatStreamException:
            raise
        except Exception as e:
            raise classify_transport_error(e, self.provider, self.request_id) from e

    # ============================================================
    # Delivery
    # ============================================================

    def _deliver(self, result: MergeResult, attempt_started: float, first_delta: List[bool]):
        if result.error is not None:
            raise result.error

        output = result.output
        if isinstance(output, Delta):
            if first_delta[0]:
                first_delta[0] = False
                self.metrics.record_time_to_first_delta(
                    self.provider, time.perf_counter() - attempt_started
                )
            self.metrics.record_delta(self.provider)
            self.observers.delta(output)
        elif isinstance(output, AccumulatedMessage):
            self.metrics.record_message(self.provider, output.status.value)
            self.observers.message(output)

    def _record_decode(self, result: DecodeResult):
        self.metrics.record_frames(self.provider, len(result.frames))
        for error in result.errors:
            if error.reason in DROP_REASONS:
                self.metrics.record_buffer_drop(self.provider, error.reason)
            else:
                self.metrics.record_decode_error(self.provider, error.reason)

    # ============================================================
    # Terminal states
    # ============================================================

    def _complete(self, merger: DeltaMerger, attempts: int) -> StreamResult:
        self.state = StreamState.COMPLETED
        messages = merger.final_messages()
        usage = merger.response_usage or next((m.usage for m in messages if m.usage), None)

        if usage is not None:
            self.metrics.record_tokens(self.provider, usage.input_tokens, usage.output_tokens)
            self.observers.usage(usage)

        logger.info(
            "Stream completed",
            attempts=attempts,
            messages=len(messages),
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
        )
        return StreamResult(messages=messages, attempts=attempts, usage=usage)

    def _fail(self, error: ChatStreamException, attempts: int) -> StreamResult:
        self.state = StreamState.FAILED
        logger.error(
            "Stream failed",
            attempts=attempts,
            error_code=error.code,
            error_message=str(error),
            retryable=error.retryable,
        )
        self.observers.error(error)
        return StreamResult(error=error, attempts=attempts)

    # ============================================================
    # Cancellation
    # ============================================================

    def _cancelled_error(self) -> StreamCancelledError:
        reason = self.cancellation_token.reason if self.cancellation_token else None
        return StreamCancelledError(reason or "operation cancelled", provider=self.provider)

    def _check_cancelled(self):
        if self.cancellation_token is not None:
            self.cancellation_token.raise_if_cancelled(self.provider)

    async def _backoff(self, delay: float) -> bool:
        """Sleep before the next attempt. Returns True if cancelled meanwhile."""
        if self.cancellation_token is None:
            await asyncio.sleep(delay)
            return False
        return await self.cancellation_token.sleep(delay)
