"""
chatstream - Event Normalizer

Maps one decoded frame from any provider to canonical delta events.

Each provider family has a closed event taxonomy: events that carry
payload are converted, events known to carry nothing are returned as
``ignorable``, and anything else raises UnexpectedEventShapeError. A known
event whose fields have the wrong JSON type raises the same error.

Reasoning output is recognised but ignorable: Anthropic thinking blocks
and deltas, Google parts flagged ``thought`` and Responses reasoning
summaries never reach the merged message content.

Provider families:
- Chat-completions (OpenAI, Azure, Groq, DeepSeek, Grok, Perplexity,
  Mistral, local servers): ``choices[].delta`` chunks
- Event-tagged (OpenAI Responses API): ``response.*`` events
- Block-tagged (Anthropic): ``message_*`` / ``content_block_*`` events
- Per-candidate usage (Google AI): ``candidates[]`` with ``usageMetadata``

Normalizers hold no per-stream state; the same instance serves every stream.
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from ..core.errors import UnexpectedEventShapeError
from ..core.models import (
    CanonicalDeltaEvent,
    DeltaStatus,
    EventKind,
    Provider,
    Role,
    Usage,
)
from ..observability.logging import get_logger
from .errors import provider_error_from_payload

logger = get_logger(__name__)


# ============================================================
# Finish reason tables
# ============================================================

CHAT_COMPLETIONS_FINISH: Dict[str, DeltaStatus] = {
    "stop": DeltaStatus.COMPLETE,
    "tool_calls": DeltaStatus.COMPLETE,
    "content_filter": DeltaStatus.COMPLETE,
    "function_call": DeltaStatus.COMPLETE,
    "length": DeltaStatus.LENGTH,
    "max_tokens": DeltaStatus.LENGTH,
}

ANTHROPIC_STOP_REASONS: Dict[str, DeltaStatus] = {
    "end_turn": DeltaStatus.COMPLETE,
    "tool_use": DeltaStatus.COMPLETE,
    "stop_sequence": DeltaStatus.COMPLETE,
    "pause_turn": DeltaStatus.COMPLETE,
    "refusal": DeltaStatus.COMPLETE,
    "max_tokens": DeltaStatus.LENGTH,
}

# Google reports many reasons; everything except MAX_TOKENS completes the message
GOOGLE_LENGTH_REASONS = {"MAX_TOKENS"}


# ============================================================
# Ignorable allow-lists
# ============================================================

RESPONSES_IGNORABLE = frozenset({
    "response.created",
    "response.in_progress",
    "response.queued",
    "response.content_part.added",
    "response.content_part.done",
    "response.refusal.delta",
    "response.refusal.done",
    "response.output_text.annotation.added",
    "response.file_search_call.in_progress",
    "response.file_search_call.searching",
    "response.file_search_call.completed",
    "response.web_search_call.in_progress",
    "response.web_search_call.searching",
    "response.web_search_call.completed",
    "response.reasoning.delta",
    "response.reasoning_summary.delta",
    "response.reasoning_summary.done",
    "response.reasoning_summary_part.added",
    "response.reasoning_summary_part.done",
    "response.reasoning_summary_text.delta",
    "response.reasoning_summary_text.done",
    "response.image_generation_call.in_progress",
    "response.image_generation_call.generating",
    "response.image_generation_call.partial_image",
    "response.image_generation_call.completed",
    "response.mcp_call.arguments.delta",
    "response.mcp_call.arguments.done",
    "response.mcp_call.in_progress",
    "response.mcp_call.completed",
    "response.mcp_call.failed",
})

ANTHROPIC_IGNORABLE = frozenset({
    "ping",
    "content_block_stop",
    "message_stop",
})

ANTHROPIC_IGNORABLE_BLOCKS = frozenset({
    "thinking",
    "redacted_thinking",
    "server_tool_use",
    "web_search_tool_result",
})

ANTHROPIC_IGNORABLE_DELTAS = frozenset({
    "thinking_delta",
    "signature_delta",
    "citations_delta",
})


def _ignorable(event_type: Optional[str], index: Optional[int] = 0) -> CanonicalDeltaEvent:
    return CanonicalDeltaEvent(kind=EventKind.IGNORABLE, index=index, event_type=event_type)


def _error(provider: str, payload: Dict[str, Any], event_type: Optional[str] = None) -> CanonicalDeltaEvent:
    return CanonicalDeltaEvent(
        kind=EventKind.ERROR,
        index=None,
        error=provider_error_from_payload(provider, payload),
        event_type=event_type,
    )


def _int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _event_type(data: Dict[str, Any], event: Optional[str]) -> Optional[str]:
    event_type = data.get("type")
    return event_type if isinstance(event_type, str) else event


_TEXT_FIELDS = ("item_id", "call_id", "name", "text_fragment", "arguments", "finish_reason")


def _mistyped_field(event: CanonicalDeltaEvent) -> Optional[str]:
    """Name of the first field the merger cannot use as-is, if any."""
    for name in _TEXT_FIELDS:
        value = getattr(event, name)
        if value is not None and not isinstance(value, str):
            return name
    for name in ("index", "content_index"):
        value = getattr(event, name)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool)):
            return name
    return None


class EventNormalizer:
    """Base class for per-provider normalizers."""

    provider: str = ""

    def __init__(self, provider: Optional[str] = None):
        if provider:
            self.provider = provider

    def normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        """
        Normalize one decoded frame.

        Args:
            data: The frame's decoded JSON object
            event: The SSE event name, when the provider sends one

        Returns:
            Canonical events in the order they should be merged

        Raises:
            UnexpectedEventShapeError: The frame is outside the known taxonomy,
                or a known event has fields of the wrong type
        """
        try:
            events = self._normalize(data, event)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise self.unexpected(_event_type(data, event), data, detail=str(e)) from e

        for item in events:
            bad_field = _mistyped_field(item)
            if bad_field is not None:
                raise self.unexpected(_event_type(data, event), data, detail=f"{bad_field} has the wrong type")
        return events

    def _normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        raise NotImplementedError

    def unexpected(
        self,
        event_type: Optional[str],
        data: Dict[str, Any],
        detail: str = ""
    ) -> UnexpectedEventShapeError:
        logger.error(
            "Unexpected stream event",
            provider=self.provider,
            event_type=event_type,
            detail=detail,
        )
        return UnexpectedEventShapeError(self.provider, event_type, data)


# ============================================================
# Chat-completions family
# ============================================================

class ChatCompletionsNormalizer(EventNormalizer):
    """
    OpenAI chat-completions chunks and the providers that copy the format.

    A chunk may carry several choices and several tool calls; one event is
    produced per item. Usage (when stream_options.include_usage is set) comes
    in a final chunk with an empty choices list and applies to all indices.
    """

    provider = Provider.OPENAI.value

    def _normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        if "error" in data:
            return [_error(self.provider, data)]

        events: List[CanonicalDeltaEvent] = []
        finishes: List[CanonicalDeltaEvent] = []

        for choice in data.get("choices") or []:
            index = _int(choice.get("index"))
            delta = choice.get("delta") or {}
            role = Role.from_provider(delta.get("role"))
            content = delta.get("content")

            if content or role is not None:
                events.append(CanonicalDeltaEvent(
                    kind=EventKind.CONTENT_DELTA,
                    index=index,
                    text_fragment=content or "",
                    role=role,
                ))

            for position, tool_call in enumerate(delta.get("tool_calls") or []):
                events.append(self._tool_call_event(index, position, tool_call))

            finish = self._finish_event(index, choice.get("finish_reason"))
            if finish is not None:
                finishes.append(finish)

        usage = data.get("usage") or (data.get("x_groq") or {}).get("usage")
        if usage:
            events.append(CanonicalDeltaEvent(
                kind=EventKind.USAGE,
                index=None,
                usage_snapshot=self._usage(usage),
            ))

        # Usage in the same chunk as a finish belongs to the message being finished
        return events + finishes

    def _tool_call_event(self, index: int, position: int, tool_call: Dict[str, Any]) -> CanonicalDeltaEvent:
        function = tool_call.get("function") or {}
        call_id = tool_call.get("id")
        name = function.get("name")
        arguments = function.get("arguments") or None
        content_index = tool_call.get("index", position)

        if call_id or name:
            return CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_STARTED,
                index=index,
                content_index=content_index,
                call_id=call_id,
                name=name,
                arguments=arguments,
            )

        return CanonicalDeltaEvent(
            kind=EventKind.TOOL_CALL_ARGUMENTS_DELTA,
            index=index,
            content_index=content_index,
            arguments=arguments or "",
        )

    def _finish_event(self, index: int, reason: Optional[str]) -> Optional[CanonicalDeltaEvent]:
        if reason is None:
            return None

        status = CHAT_COMPLETIONS_FINISH.get(reason)
        if status is None:
            logger.warning(
                "Unsupported finish_reason skipped",
                provider=self.provider,
                finish_reason=reason,
            )
            return None

        return CanonicalDeltaEvent(
            kind=EventKind.FINISH,
            index=index,
            finish_reason=reason,
            status=status,
        )

    @staticmethod
    def _usage(usage: Dict[str, Any]) -> Usage:
        return Usage(
            input_tokens=_int(usage.get("prompt_tokens", usage.get("input_tokens"))),
            output_tokens=_int(usage.get("completion_tokens", usage.get("output_tokens"))),
            raw=usage,
        )


# ============================================================
# OpenAI Responses API
# ============================================================

class ResponsesNormalizer(EventNormalizer):
    """
    OpenAI Responses API events.

    The Responses API produces a single message; every event maps to
    index 0 and ``output_index`` becomes the content index.
    """

    provider = Provider.OPENAI_RESPONSES.value

    def _normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        event_type = data.get("type") or event

        if event_type is None:
            if "error" in data:
                return [_error(self.provider, data)]
            raise self.unexpected(None, data)

        output_index = data.get("output_index")

        if event_type == "response.output_text.delta":
            return [CanonicalDeltaEvent(
                kind=EventKind.CONTENT_DELTA,
                content_index=output_index,
                item_id=data.get("item_id"),
                text_fragment=data.get("delta") or "",
            )]

        if event_type == "response.output_text.done":
            return [CanonicalDeltaEvent(
                kind=EventKind.CONTENT_DONE,
                content_index=output_index,
                item_id=data.get("item_id"),
                text_fragment=data.get("text"),
            )]

        if event_type in ("response.output_item.added", "response.output_item.done"):
            item = data.get("item") or {}
            if item.get("type") != "function_call":
                return [_ignorable(event_type)]
            kind = (
                EventKind.TOOL_CALL_STARTED
                if event_type == "response.output_item.added"
                else EventKind.TOOL_CALL_DONE
            )
            return [CanonicalDeltaEvent(
                kind=kind,
                content_index=output_index,
                item_id=item.get("id"),
                call_id=item.get("call_id"),
                name=item.get("name"),
                arguments=item.get("arguments") or None,
            )]

        if event_type == "response.function_call_arguments.delta":
            return [CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_ARGUMENTS_DELTA,
                content_index=output_index,
                item_id=data.get("item_id"),
                arguments=data.get("delta") or "",
            )]

        if event_type == "response.function_call_arguments.done":
            return [CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_DONE,
                content_index=output_index,
                item_id=data.get("item_id"),
                arguments=data.get("arguments"),
            )]

        if event_type == "response.completed":
            response = data.get("response") or {}
            return [CanonicalDeltaEvent(
                kind=EventKind.FINISH,
                finish_reason="completed",
                status=DeltaStatus.COMPLETE,
                usage_snapshot=self._usage(response.get("usage")),
                event_type=event_type,
            )]

        if event_type == "response.incomplete":
            response = data.get("response") or {}
            details = response.get("incomplete_details") or {}
            return [CanonicalDeltaEvent(
                kind=EventKind.FINISH,
                finish_reason=details.get("reason") or "incomplete",
                status=DeltaStatus.LENGTH,
                usage_snapshot=self._usage(response.get("usage")),
                event_type=event_type,
            )]

        if event_type in ("response.failed", "error"):
            return [_error(self.provider, data, event_type)]

        if event_type in RESPONSES_IGNORABLE:
            return [_ignorable(event_type)]

        raise self.unexpected(event_type, data)

    @staticmethod
    def _usage(usage: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not usage:
            return None
        return Usage(
            input_tokens=_int(usage.get("input_tokens")),
            output_tokens=_int(usage.get("output_tokens")),
            raw=usage,
        )


# ============================================================
# Anthropic
# ============================================================

class AnthropicNormalizer(EventNormalizer):
    """
    Anthropic Messages API events.

    One message per stream (index 0); the content block index becomes
    the content index, which also identifies tool_use blocks.
    """

    provider = Provider.ANTHROPIC.value

    def _normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        event_type = data.get("type") or event

        if event_type == "message_start":
            message = data.get("message") or {}
            return [CanonicalDeltaEvent(
                kind=EventKind.USAGE,
                role=Role.from_provider(message.get("role")),
                usage_snapshot=self._usage(message.get("usage")),
                event_type=event_type,
            )]

        if event_type == "content_block_start":
            return [self._block_start(data)]

        if event_type == "content_block_delta":
            return [self._block_delta(data)]

        if event_type == "message_delta":
            return self._message_delta(data)

        if event_type == "error":
            return [_error(self.provider, data, event_type)]

        if event_type in ANTHROPIC_IGNORABLE:
            return [_ignorable(event_type)]

        if event_type is None and "error" in data:
            return [_error(self.provider, data)]

        raise self.unexpected(event_type, data)

    def _block_start(self, data: Dict[str, Any]) -> CanonicalDeltaEvent:
        block = data.get("content_block") or {}
        block_type = block.get("type")
        block_index = data.get("index")

        if block_type == "text":
            if not block.get("text"):
                return _ignorable("content_block_start")
            return CanonicalDeltaEvent(
                kind=EventKind.CONTENT_DELTA,
                content_index=block_index,
                text_fragment=block["text"],
            )

        if block_type == "tool_use":
            return CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_STARTED,
                content_index=block_index,
                call_id=block.get("id"),
                name=block.get("name"),
            )

        if block_type in ANTHROPIC_IGNORABLE_BLOCKS:
            return _ignorable(f"content_block_start.{block_type}")

        raise self.unexpected(f"content_block_start.{block_type}", data)

    def _block_delta(self, data: Dict[str, Any]) -> CanonicalDeltaEvent:
        delta = data.get("delta") or {}
        delta_type = delta.get("type")
        block_index = data.get("index")

        if delta_type == "text_delta":
            return CanonicalDeltaEvent(
                kind=EventKind.CONTENT_DELTA,
                content_index=block_index,
                text_fragment=delta.get("text") or "",
            )

        if delta_type == "input_json_delta":
            return CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_ARGUMENTS_DELTA,
                content_index=block_index,
                arguments=delta.get("partial_json") or "",
            )

        if delta_type in ANTHROPIC_IGNORABLE_DELTAS:
            return _ignorable(f"content_block_delta.{delta_type}")

        raise self.unexpected(f"content_block_delta.{delta_type}", data)

    def _message_delta(self, data: Dict[str, Any]) -> List[CanonicalDeltaEvent]:
        stop_reason = (data.get("delta") or {}).get("stop_reason")
        usage = self._usage(data.get("usage"))

        if stop_reason is not None:
            status = ANTHROPIC_STOP_REASONS.get(stop_reason)
            if status is not None:
                return [CanonicalDeltaEvent(
                    kind=EventKind.FINISH,
                    finish_reason=stop_reason,
                    status=status,
                    usage_snapshot=usage,
                    event_type="message_delta",
                )]
            logger.warning(
                "Unsupported stop_reason skipped",
                provider=self.provider,
                stop_reason=stop_reason,
            )

        if usage is not None:
            return [CanonicalDeltaEvent(kind=EventKind.USAGE, usage_snapshot=usage, event_type="message_delta")]
        return [_ignorable("message_delta")]

    @staticmethod
    def _usage(usage: Optional[Dict[str, Any]]) -> Optional[Usage]:
        if not usage:
            return None
        return Usage(
            input_tokens=_int(usage.get("input_tokens")),
            output_tokens=_int(usage.get("output_tokens")),
            raw=usage,
        )


# ============================================================
# Google AI
# ============================================================

class GoogleNormalizer(EventNormalizer):
    """
    Google AI (Gemini) streamGenerateContent chunks.

    Function calls arrive whole, so each produces a started and a done
    event. Google repeats finishReason on every chunk; the provider
    profile defers finish until the stream ends.
    """

    provider = Provider.GOOGLE.value

    def _normalize(self, data: Dict[str, Any], event: Optional[str] = None) -> List[CanonicalDeltaEvent]:
        if "error" in data:
            return [_error(self.provider, data)]

        events: List[CanonicalDeltaEvent] = []
        finishes: List[CanonicalDeltaEvent] = []

        for position, candidate in enumerate(data.get("candidates") or []):
            index = _int(candidate.get("index", position))
            content = candidate.get("content") or {}
            role = Role.from_provider(content.get("role"))

            for part in content.get("parts") or []:
                if part.get("thought"):
                    continue
                if "text" in part:
                    events.append(CanonicalDeltaEvent(
                        kind=EventKind.CONTENT_DELTA,
                        index=index,
                        text_fragment=part["text"],
                        role=role,
                    ))
                elif "functionCall" in part:
                    events.extend(self._function_call(index, part["functionCall"], role))

            reason = candidate.get("finishReason")
            if reason:
                finishes.append(CanonicalDeltaEvent(
                    kind=EventKind.FINISH,
                    index=index,
                    finish_reason=reason,
                    status=DeltaStatus.LENGTH if reason in GOOGLE_LENGTH_REASONS else DeltaStatus.COMPLETE,
                ))

        usage = data.get("usageMetadata")
        if usage:
            events.append(CanonicalDeltaEvent(
                kind=EventKind.USAGE,
                index=None,
                usage_snapshot=Usage(
                    input_tokens=_int(usage.get("promptTokenCount")),
                    output_tokens=_int(usage.get("candidatesTokenCount")),
                    raw=usage,
                ),
            ))

        return events + finishes

    @staticmethod
    def _function_call(index: int, call: Dict[str, Any], role: Optional[Role]) -> List[CanonicalDeltaEvent]:
        call_id = call.get("id") or f"call_{uuid.uuid4().hex[:8]}"
        arguments = json.dumps(call.get("args") or {})
        return [
            CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_STARTED,
                index=index,
                call_id=call_id,
                name=call.get("name"),
                role=role,
            ),
            CanonicalDeltaEvent(
                kind=EventKind.TOOL_CALL_DONE,
                index=index,
                call_id=call_id,
                arguments=arguments,
            ),
        ]


# ============================================================
# Registry
# ============================================================

CHAT_COMPLETIONS_PROVIDERS = (
    Provider.OPENAI,
    Provider.AZURE,
    Provider.GROQ,
    Provider.DEEPSEEK,
    Provider.GROK,
    Provider.PERPLEXITY,
    Provider.MISTRAL,
    Provider.LOCAL,
)

_NORMALIZERS: Dict[str, EventNormalizer] = {
    **{p.value: ChatCompletionsNormalizer(p.value) for p in CHAT_COMPLETIONS_PROVIDERS},
    Provider.OPENAI_RESPONSES.value: ResponsesNormalizer(),
    Provider.ANTHROPIC.value: AnthropicNormalizer(),
    Provider.GOOGLE.value: GoogleNormalizer(),
}


def get_normalizer(provider: str) -> EventNormalizer:
    """Get the normalizer for a provider name."""
    provider = getattr(provider, "value", provider)
    try:
        return _NORMALIZERS[provider]
    except KeyError:
        raise ValueError(f"No stream normalizer for provider '{provider}'")


def normalize(
    provider: str,
    data: Dict[str, Any],
    event: Optional[str] = None
) -> List[CanonicalDeltaEvent]:
    """Normalize one decoded frame for the named provider."""
    return get_normalizer(provider).normalize(data, event)
