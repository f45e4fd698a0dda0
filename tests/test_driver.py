"""
chatstream - Stream Driver Tests

End-to-end runs of the driver over scripted transports.

Verifies:
- Complete streams for each provider family
- Transient failures are retried with observer notification
- Non-transient failures stop immediately
- Retry budget exhaustion
- Observer failures are isolated
- Cancellation and receive timeouts
"""

import asyncio
from unittest.mock import MagicMock, patch

import httpx
import pytest

from chatstream.config import StreamConfig
from chatstream.core.errors import (
    IncompleteStreamError,
    ProviderError,
    RetriesExhaustedError,
    StreamCancelledError,
    TransportClosedError,
    TransportTimeoutError,
    UnexpectedEventShapeError,
)
from chatstream.core.models import DeltaStatus, Role, UsagePolicy
from chatstream.streaming.cancellation import CancellationToken
from chatstream.streaming.driver import StreamDriver, StreamResult, StreamState
from chatstream.streaming.observers import CallbackObserver, ObserverRegistry, StreamObserver

from conftest import FakeTransport, RecordingObserver, openai_chunk, sse


def openai_script(words, finish_reason="stop"):
    chunks = [sse(openai_chunk(content="", role="assistant"))]
    chunks += [sse(openai_chunk(content=w)) for w in words]
    chunks.append(sse(openai_chunk(finish_reason=finish_reason)))
    chunks.append("data: [DONE]\n\n")
    return chunks


HELLO = ["Hel", "lo", " there", "!", ""]


def make_driver(provider, transport, config, metrics, **kwargs):
    return StreamDriver(provider, transport, config=config, metrics=metrics, **kwargs)


# ============================================================
# Complete streams
# ============================================================

class TestCompleteStreams:
    """Test successful runs for each provider family."""

    @pytest.mark.asyncio
    async def test_openai_stream(self, fast_config, metrics, registry, recorder):
        transport = FakeTransport(openai_script(HELLO))
        driver = make_driver("openai", transport, fast_config, metrics, observers=[recorder])

        result = await driver.run()

        assert result.ok
        assert result.attempts == 1
        assert result.message.content == "Hello there!"
        assert result.message.role == Role.ASSISTANT
        assert result.message.status == DeltaStatus.COMPLETE
        assert recorder.text == "Hello there!"
        assert recorder.messages == result.messages
        assert driver.state == StreamState.COMPLETED
        assert transport.closed == 1
        assert registry.get_sample_value(
            "chatstream_streams_total", {"provider": "openai", "outcome": "completed"}
        ) == 1
        assert registry.get_sample_value(
            "chatstream_messages_total", {"provider": "openai", "status": "complete"}
        ) == 1

    @pytest.mark.asyncio
    async def test_message_precedes_usage_notification(self, fast_config, metrics, recorder):
        chunks = openai_script(["Hi"])
        usage_chunk = {"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 2}}
        chunks.insert(-1, sse(usage_chunk))

        result = await make_driver("openai", FakeTransport(chunks), fast_config, metrics, observers=[recorder]).run()

        assert result.usage.input_tokens == 9
        assert result.message.usage.output_tokens == 2
        kinds = [kind for kind, _ in recorder.events]
        assert kinds.index("message") < kinds.index("usage")
        assert recorder.usages[0].total_tokens == 11

    @pytest.mark.asyncio
    async def test_anthropic_stream_in_small_chunks(self, fast_config, metrics, registry):
        raw = "".join([
            sse({"type": "message_start", "message": {"role": "assistant", "usage": {"input_tokens": 14, "output_tokens": 1}}}, "message_start"),
            sse({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}, "content_block_start"),
            sse({"type": "ping"}, "ping"),
            sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hello"}}, "content_block_delta"),
            sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " – world"}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 0}, "content_block_stop"),
            sse({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 3}}, "message_delta"),
            sse({"type": "message_stop"}, "message_stop"),
        ]).encode("utf-8")
        chunks = [raw[i:i + 7] for i in range(0, len(raw), 7)]

        result = await make_driver("anthropic", FakeTransport(chunks), fast_config, metrics).run()

        assert result.ok
        assert result.message.content == "Hello – world"
        assert result.usage.input_tokens == 14
        assert result.usage.output_tokens == 3
        assert registry.get_sample_value(
            "chatstream_tokens_total", {"provider": "anthropic", "type": "output"}
        ) == 3

    @pytest.mark.asyncio
    async def test_anthropic_thinking_stays_out_of_content(self, fast_config, metrics, recorder):
        chunks = [
            sse({"type": "message_start", "message": {"role": "assistant", "usage": {"input_tokens": 3}}}, "message_start"),
            sse({"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}}, "content_block_start"),
            sse({"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "Let me see"}}, "content_block_delta"),
            sse({"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 0}, "content_block_stop"),
            sse({"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}}, "content_block_start"),
            sse({"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "42"}}, "content_block_delta"),
            sse({"type": "content_block_stop", "index": 1}, "content_block_stop"),
            sse({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 9}}, "message_delta"),
            sse({"type": "message_stop"}, "message_stop"),
        ]

        result = await make_driver("anthropic", FakeTransport(chunks), fast_config, metrics, observers=[recorder]).run()

        assert result.ok
        assert result.message.content == "42"
        assert recorder.text == "42"

    @pytest.mark.asyncio
    async def test_responses_stream_with_tool_call(self, fast_config, metrics):
        events = [
            {"type": "response.created", "response": {"id": "resp_1"}},
            {"type": "response.output_item.added", "output_index": 0, "item": {"type": "message", "id": "msg_1"}},
            {"type": "response.output_text.delta", "output_index": 0, "item_id": "msg_1", "delta": "Hi"},
            {"type": "response.output_text.done", "output_index": 0, "item_id": "msg_1", "text": "Hi"},
            {"type": "response.output_item.added", "output_index": 1, "item": {
                "type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "lookup", "arguments": "",
            }},
            {"type": "response.function_call_arguments.delta", "output_index": 1, "item_id": "fc_1", "delta": '{"q":'},
            {"type": "response.function_call_arguments.delta", "output_index": 1, "item_id": "fc_1", "delta": ' 1}'},
            {"type": "response.function_call_arguments.done", "output_index": 1, "item_id": "fc_1", "arguments": '{"q": 1}'},
            {"type": "response.output_item.done", "output_index": 1, "item": {
                "type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "lookup", "arguments": '{"q": 1}',
            }},
            {"type": "response.completed", "response": {"usage": {"input_tokens": 5, "output_tokens": 7}}},
        ]
        transport = FakeTransport([sse(e, e["type"]) for e in events])

        result = await make_driver("openai_responses", transport, fast_config, metrics).run()

        assert result.ok
        message = result.message
        assert message.content == "Hi"
        assert len(message.tool_calls) == 1
        assert message.tool_calls[0].call_id == "call_1"
        assert message.tool_calls[0].parsed_arguments() == {"q": 1}
        assert result.usage.total_tokens == 12

    @pytest.mark.asyncio
    async def test_google_stream_defers_finish(self, fast_config, metrics, recorder):
        chunks = [
            sse({
                "candidates": [{"content": {"role": "model", "parts": [{"text": "Hel"}]}, "index": 0}],
                "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1},
            }),
            sse({
                "candidates": [{"content": {"role": "model", "parts": [{"text": "lo"}]}, "finishReason": "STOP", "index": 0}],
                "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2},
            }),
            sse({
                "candidates": [{
                    "content": {"role": "model", "parts": [{"functionCall": {"name": "lookup", "args": {"q": "x"}}}]},
                    "finishReason": "STOP",
                    "index": 0,
                }],
                "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 6},
            }),
        ]

        result = await make_driver("google", FakeTransport(chunks), fast_config, metrics, observers=[recorder]).run()

        assert result.ok
        assert len(recorder.messages) == 1
        assert result.message.content == "Hello"
        assert result.message.tool_calls[0].parsed_arguments() == {"q": "x"}
        assert result.message.usage.output_tokens == 6

    @pytest.mark.asyncio
    async def test_multiple_choices(self, fast_config, metrics):
        chunks = [
            sse(openai_chunk(content="A", role="assistant", index=0)),
            sse(openai_chunk(content="B", role="assistant", index=1)),
            sse(openai_chunk(finish_reason="stop", index=1)),
            sse(openai_chunk(finish_reason="length", index=0)),
            "data: [DONE]\n\n",
        ]

        result = await make_driver("openai", FakeTransport(chunks), fast_config, metrics).run()

        assert [(m.index, m.content, m.status) for m in result.messages] == [
            (0, "A", DeltaStatus.LENGTH),
            (1, "B", DeltaStatus.COMPLETE),
        ]

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self, fast_config, metrics, registry):
        chunks = openai_script(["ok"])
        chunks.insert(2, "data: {broken\n\n")

        result = await make_driver("openai", FakeTransport(chunks), fast_config, metrics).run()

        assert result.ok
        assert result.message.content == "ok"
        assert registry.get_sample_value(
            "chatstream_frame_decode_errors_total", {"provider": "openai", "reason": "malformed"}
        ) == 1


# ============================================================
# Retries
# ============================================================

class TestRetries:
    """Test retry behaviour on transient failures."""

    @pytest.mark.asyncio
    async def test_retry_after_partial_delivery(self, fast_config, metrics, registry, recorder):
        """Two of five deltas then a dropped connection: the next attempt starts over."""
        full = openai_script(HELLO)
        broken = full[:3] + [httpx.RemoteProtocolError("peer closed connection")]
        transport = FakeTransport(broken, full)

        result = await make_driver("openai", transport, fast_config, metrics, observers=[recorder]).run()

        assert result.ok
        assert result.attempts == 2
        assert result.message.content == "Hello there!"
        assert transport.calls == 2
        assert transport.closed == 2

        assert len(recorder.retries) == 1
        attempt, error = recorder.retries[0]
        assert attempt == 1
        assert isinstance(error, TransportClosedError)

        # At-least-once: the first attempt's deltas were delivered and not retracted
        retry_at = recorder.events.index(("retry", 1))
        before = [e for kind, e in recorder.events[:retry_at] if kind == "delta"]
        assert "".join(d.content_fragment or "" for d in before) == "Hello"
        assert recorder.text == "Hello" + "Hello there!"
        assert len(recorder.messages) == 1

        assert registry.get_sample_value(
            "chatstream_retries_total", {"provider": "openai", "error_code": "transport_closed"}
        ) == 1

    @pytest.mark.asyncio
    async def test_transient_provider_error_is_retried(self, fast_config, metrics, recorder):
        overloaded = [
            sse({"type": "message_start", "message": {"role": "assistant", "usage": {"input_tokens": 3}}}, "message_start"),
            sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}, "error"),
        ]
        good = [
            sse({"type": "message_start", "message": {"role": "assistant", "usage": {"input_tokens": 3}}}, "message_start"),
            sse({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "ok"}}, "content_block_delta"),
            sse({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 1}}, "message_delta"),
        ]

        result = await make_driver("anthropic", FakeTransport(overloaded, good), fast_config, metrics, observers=[recorder]).run()

        assert result.ok
        assert result.attempts == 2
        assert recorder.retries[0][1].code == "overloaded_error"

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, fast_config, metrics, recorder):
        transport = FakeTransport([httpx.ReadError("connection reset")])

        result = await make_driver("openai", transport, fast_config, metrics, observers=[recorder]).run()

        assert not result.ok
        assert isinstance(result.error, RetriesExhaustedError)
        assert isinstance(result.error.last_error, TransportClosedError)
        assert result.attempts == 4
        assert transport.calls == 4
        assert [attempt for attempt, _ in recorder.retries] == [1, 2, 3]
        assert recorder.errors == [result.error]

    @pytest.mark.asyncio
    async def test_zero_retries(self, metrics):
        config = StreamConfig(max_retries=0, retry_base_delay=0.001, retry_max_delay=0.001)
        transport = FakeTransport([httpx.ReadError("reset")])

        result = await make_driver("openai", transport, config, metrics).run()

        assert result.attempts == 1
        assert result.error.code == "retries_exhausted"

    @pytest.mark.asyncio
    async def test_backoff_grows_per_attempt(self, fast_config, metrics):
        transport = FakeTransport([httpx.ReadError("reset")])

        with patch("chatstream.streaming.driver.calculate_backoff", return_value=0.0) as backoff:
            await make_driver("openai", transport, fast_config, metrics).run()

        assert [c.args[0] for c in backoff.call_args_list] == [0, 1, 2]
        assert backoff.call_args.kwargs["base_delay"] == fast_config.retry_base_delay


# ============================================================
# Non-transient failures
# ============================================================

class TestFailures:
    """Test failures that end the run immediately."""

    @pytest.mark.asyncio
    async def test_non_transient_provider_error(self, fast_config, metrics, registry, recorder):
        chunks = [
            sse(openai_chunk(content="Hi", role="assistant")),
            sse({"error": {"message": "Invalid model", "type": "invalid_request_error"}}),
        ]
        transport = FakeTransport(chunks)
        driver = make_driver("openai", transport, fast_config, metrics, observers=[recorder])

        result = await driver.run()

        assert not result.ok
        assert isinstance(result.error, ProviderError)
        assert result.error.code == "invalid_request_error"
        assert result.attempts == 1
        assert transport.calls == 1
        assert recorder.retries == []
        assert recorder.errors == [result.error]
        assert driver.state == StreamState.FAILED
        assert registry.get_sample_value(
            "chatstream_streams_total", {"provider": "openai", "outcome": "invalid_request_error"}
        ) == 1

    @pytest.mark.asyncio
    async def test_incomplete_stream(self, fast_config, metrics, recorder):
        chunks = [sse(openai_chunk(content="Hal", role="assistant")), sse(openai_chunk(content="f"))]
        transport = FakeTransport(chunks)

        result = await make_driver("openai", transport, fast_config, metrics, observers=[recorder]).run()

        assert isinstance(result.error, IncompleteStreamError)
        assert result.error.open_indices == [0]
        assert transport.calls == 1
        assert recorder.text == "Half"

    @pytest.mark.asyncio
    async def test_unexpected_event(self, fast_config, metrics, registry):
        chunks = [sse({"type": "message_teleport"}, "message_teleport")]

        result = await make_driver("anthropic", FakeTransport(chunks), fast_config, metrics).run()

        assert result.error.code == "unexpected_event_shape"
        assert registry.get_sample_value(
            "chatstream_unexpected_events_total", {"provider": "anthropic", "event_type": "message_teleport"}
        ) == 1

    @pytest.mark.asyncio
    async def test_mistyped_event_fails_the_run(self, fast_config, metrics, registry, recorder):
        """A known event with fields of the wrong type ends the run with a typed error."""
        chunks = [
            sse(openai_chunk(content="Hi", role="assistant")),
            'data: {"choices": [{"index": 0, "delta": "oops"}]}\n\n',
        ]
        transport = FakeTransport(chunks)

        result = await make_driver("openai", transport, fast_config, metrics, observers=[recorder]).run()

        assert not result.ok
        assert isinstance(result.error, UnexpectedEventShapeError)
        assert transport.calls == 1
        assert transport.closed == 1
        assert recorder.errors == [result.error]
        assert registry.get_sample_value(
            "chatstream_unexpected_events_total", {"provider": "openai", "event_type": "unknown"}
        ) == 1

    @pytest.mark.asyncio
    async def test_malformed_tool_arguments(self, fast_config, metrics):
        chunks = [
            sse(openai_chunk(role="assistant", tool_calls=[{
                "index": 0, "id": "call_1", "type": "function", "function": {"name": "f", "arguments": '{"a": '},
            }])),
            sse(openai_chunk(finish_reason="tool_calls")),
            "data: [DONE]\n\n",
        ]

        result = await make_driver("openai", FakeTransport(chunks), fast_config, metrics).run()

        assert result.error.code == "malformed_tool_call_arguments"
        assert result.messages == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_from_transport(self, fast_config, metrics):
        transport = FakeTransport([sse(openai_chunk(content="x", role="assistant")), RuntimeError("bug")])

        result = await make_driver("openai", transport, fast_config, metrics).run()

        assert result.error.code == "internal_error"
        assert result.error.retryable is False
        assert transport.calls == 1


# ============================================================
# Observers
# ============================================================

class TestObserverIsolation:
    """Test that a failing observer cannot break the stream."""

    @pytest.mark.asyncio
    async def test_raising_observer_is_isolated(self, fast_config, metrics, registry, recorder):
        def explode(delta):
            raise RuntimeError("observer bug")

        bad = CallbackObserver(on_delta=explode, name="exploder")
        registry_ = ObserverRegistry([bad, recorder])
        driver = make_driver("openai", FakeTransport(openai_script(HELLO)), fast_config, metrics, observers=registry_)

        result = await driver.run()

        assert result.ok
        assert recorder.text == "Hello there!"
        assert registry_.error_count == len(recorder.deltas)
        assert registry.get_sample_value(
            "chatstream_observer_errors_total", {"observer": "exploder", "callback": "on_delta"}
        ) == len(recorder.deltas)

    @pytest.mark.asyncio
    async def test_observers_see_deltas_before_message(self, fast_config, metrics, recorder):
        await make_driver("openai", FakeTransport(openai_script(["a", "b"])), fast_config, metrics, observers=[recorder]).run()

        kinds = [kind for kind, _ in recorder.events]
        assert kinds[-1] == "message"
        assert set(kinds[:-1]) == {"delta"}

    @pytest.mark.asyncio
    async def test_every_observer_is_notified(self, fast_config, metrics):
        first = MagicMock(spec=StreamObserver)
        second = MagicMock(spec=StreamObserver)
        first.on_message.side_effect = RuntimeError("observer bug")

        result = await make_driver(
            "openai", FakeTransport(openai_script(["a"])), fast_config, metrics, observers=[first, second],
        ).run()

        assert result.ok
        first.on_message.assert_called_once_with(result.message)
        second.on_message.assert_called_once_with(result.message)
        second.on_error.assert_not_called()


# ============================================================
# Cancellation and timeouts
# ============================================================

class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, fast_config, metrics, recorder):
        token = CancellationToken()
        token.cancel("not needed")
        transport = FakeTransport(openai_script(HELLO))

        result = await make_driver(
            "openai", transport, fast_config, metrics, observers=[recorder], cancellation_token=token,
        ).run()

        assert isinstance(result.error, StreamCancelledError)
        assert str(result.error) == "not needed"
        assert transport.calls == 0
        assert recorder.errors == [result.error]

    @pytest.mark.asyncio
    async def test_cancelled_mid_stream(self, fast_config, metrics):
        token = CancellationToken()
        seen = []

        def on_delta(delta):
            seen.append(delta)
            token.cancel("user pressed stop")

        transport = FakeTransport(openai_script(HELLO))
        result = await make_driver(
            "openai", transport, fast_config, metrics,
            observers=[CallbackObserver(on_delta=on_delta)],
            cancellation_token=token,
        ).run()

        assert result.error.code == "cancelled"
        assert len(seen) == 1
        assert transport.calls == 1
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self, metrics):
        config = StreamConfig(max_retries=3, retry_base_delay=5.0, retry_max_delay=5.0)
        token = CancellationToken()
        transport = FakeTransport([httpx.ReadError("reset")])

        def on_retry(attempt, error):
            token.cancel("shutting down")

        result = await asyncio.wait_for(
            make_driver(
                "openai", transport, config, metrics,
                observers=[CallbackObserver(on_retry=on_retry)],
                cancellation_token=token,
            ).run(),
            timeout=2.0,
        )

        assert result.error.code == "cancelled"
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_cancel_interrupts_stalled_read(self, metrics, recorder):
        config = StreamConfig(max_retries=3, receive_timeout=3.0, retry_base_delay=0.001, retry_max_delay=0.001)
        token = CancellationToken()
        calls = []
        closed = []

        def transport():
            calls.append(1)

            async def stream():
                try:
                    yield sse(openai_chunk(content="a", role="assistant"))
                    await asyncio.sleep(30)
                    yield sse(openai_chunk(finish_reason="stop"))
                finally:
                    closed.append(1)

            return stream()

        asyncio.get_running_loop().call_later(0.1, token.cancel, "user pressed stop")
        started = asyncio.get_running_loop().time()

        result = await make_driver(
            "openai", transport, config, metrics, observers=[recorder], cancellation_token=token,
        ).run()

        assert result.error.code == "cancelled"
        assert str(result.error) == "user pressed stop"
        assert asyncio.get_running_loop().time() - started < 1.0
        assert len(calls) == 1
        assert len(closed) == 1
        assert recorder.retries == []
        assert recorder.text == "a"

    @pytest.mark.asyncio
    async def test_failure_after_cancel_is_not_retried(self, metrics, recorder):
        config = StreamConfig(max_retries=3, retry_base_delay=0.001, retry_max_delay=0.001)
        token = CancellationToken()
        calls = []

        def transport():
            calls.append(1)

            async def stream():
                yield sse(openai_chunk(content="a", role="assistant"))
                token.cancel("closing")
                raise httpx.ReadError("connection torn down")

            return stream()

        result = await make_driver(
            "openai", transport, config, metrics, observers=[recorder], cancellation_token=token,
        ).run()

        assert isinstance(result.error, StreamCancelledError)
        assert str(result.error) == "closing"
        assert len(calls) == 1
        assert recorder.retries == []
        assert recorder.errors == [result.error]


class TestReceiveTimeout:
    """Test the per-chunk receive timeout."""

    @pytest.mark.asyncio
    async def test_stalled_stream_times_out(self, metrics, recorder):
        config = StreamConfig(max_retries=1, receive_timeout=0.05, retry_base_delay=0.001, retry_max_delay=0.001)
        calls = []

        def transport():
            calls.append(1)

            async def stream():
                yield sse(openai_chunk(content="a", role="assistant"))
                await asyncio.sleep(10)
                yield sse(openai_chunk(finish_reason="stop"))

            return stream()

        result = await make_driver("openai", transport, config, metrics, observers=[recorder]).run()

        assert isinstance(result.error, RetriesExhaustedError)
        assert isinstance(result.error.last_error, TransportTimeoutError)
        assert len(calls) == 2
        assert isinstance(recorder.retries[0][1], TransportTimeoutError)


# ============================================================
# Construction
# ============================================================

class TestDriverConstruction:
    """Test driver setup."""

    def test_unknown_provider(self, fast_config, metrics):
        with pytest.raises(ValueError):
            StreamDriver("carrier-pigeon", FakeTransport([]), config=fast_config, metrics=metrics)

    def test_usage_policy_override(self, metrics):
        config = StreamConfig(usage_policy=UsagePolicy.ACCUMULATE)
        driver = StreamDriver("anthropic", FakeTransport([]), config=config, metrics=metrics)

        assert driver.profile.create_merger(driver.config.usage_policy).usage_policy == UsagePolicy.ACCUMULATE

    def test_result_helpers(self):
        empty = StreamResult()

        assert empty.ok
        assert empty.message is None

    def test_registry_gets_metrics(self, fast_config, metrics):
        observers = ObserverRegistry()
        driver = StreamDriver("openai", FakeTransport([]), config=fast_config, observers=observers, metrics=metrics)

        assert driver.observers is observers
        assert observers.metrics is metrics

    def test_observer_list_wrapped(self, fast_config, metrics):
        driver = StreamDriver(
            "openai", FakeTransport([]), config=fast_config, observers=[RecordingObserver()], metrics=metrics,
        )

        assert len(driver.observers) == 1
