"""
chatstream - Delta Merger

Folds canonical delta events into partial Deltas and, once an index
finishes, an immutable AccumulatedMessage.

State is ``index -> InProgress``; one merger serves exactly one attempt.
An index moves Incomplete -> {Complete, Length} once and is then retired;
later events for it are logged and skipped.

Usage:
    merger = DeltaMerger(provider="openai")
    for event in events:
        result = merger.merge(event)
        if result.error:
            ...
        elif result.output is not None:
            ...
    for result in merger.close():
        ...
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Union

from ..core.errors import (
    ChatStreamException,
    IncompleteStreamError,
    MalformedToolCallArgumentsError,
)
from ..core.models import (
    AccumulatedMessage,
    CanonicalDeltaEvent,
    Delta,
    DeltaStatus,
    EventKind,
    Role,
    Usage,
    UsagePolicy,
)
from ..observability.logging import get_logger
from .tool_calls import ToolCallStreamTracker

logger = get_logger(__name__)


@dataclass
class InProgress:
    """Mutable accumulation state for one open index."""
    index: int
    role: Optional[Role] = None
    content_parts: List[str] = field(default_factory=list)
    tool_calls: ToolCallStreamTracker = field(default_factory=ToolCallStreamTracker)
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None

    # Set instead of finishing when the provider defers finish to stream end
    pending_status: Optional[DeltaStatus] = None

    @property
    def content(self) -> str:
        return "".join(self.content_parts)


@dataclass(frozen=True)
class MergeResult:
    """What merging one event produced: a Delta, a message, an error or nothing."""
    output: Optional[Union[Delta, AccumulatedMessage]] = None
    error: Optional[ChatStreamException] = None


_NOTHING = MergeResult()


def combine_usage(current: Optional[Usage], newer: Usage, policy: UsagePolicy) -> Usage:
    if current is None:
        return newer
    return current.combine(newer, policy)


class DeltaMerger:
    """
    Stateful merger for one stream attempt.

    Args:
        provider: Provider name for logs and errors
        usage_policy: How successive usage snapshots are combined
        defer_finish: Hold finish events until close() (Google repeats
            finishReason on every chunk)
    """

    def __init__(
        self,
        provider: str = "",
        usage_policy: UsagePolicy = UsagePolicy.REPLACE,
        defer_finish: bool = False,
    ):
        self.provider = provider
        self.usage_policy = usage_policy
        self.defer_finish = defer_finish

        self._open: Dict[int, InProgress] = {}
        self._retired: Dict[int, AccumulatedMessage] = {}
        self.messages: List[AccumulatedMessage] = []
        self.response_usage: Optional[Usage] = None
        self.closed = False

    # ============================================================
    # Public API
    # ============================================================

    @property
    def open_indices(self) -> List[int]:
        return sorted(self._open)

    def merge(self, event: CanonicalDeltaEvent) -> MergeResult:
        """Apply one event in arrival order."""
        kind = event.kind

        if kind is EventKind.IGNORABLE:
            return _NOTHING

        if kind is EventKind.ERROR:
            return MergeResult(error=event.error)

        if kind is EventKind.USAGE and event.index is None:
            self._apply_response_usage(event.usage_snapshot)
            return _NOTHING

        index = event.index or 0
        if index in self._retired:
            logger.warning(
                "Event for finished index skipped",
                provider=self.provider,
                index=index,
                kind=kind.value,
            )
            return _NOTHING

        slot = self._slot(index)
        role = self._set_role(slot, event.role)

        if kind is EventKind.CONTENT_DELTA:
            fragment = event.text_fragment or ""
            slot.content_parts.append(fragment)
            return MergeResult(output=Delta(role=role, content_fragment=fragment, index=index))

        if kind is EventKind.CONTENT_DONE:
            # Full text is only used when no fragments were streamed
            if event.text_fragment and not slot.content_parts:
                slot.content_parts.append(event.text_fragment)
                return MergeResult(output=Delta(role=role, content_fragment=event.text_fragment, index=index))
            return self._role_only(role, index)

        if kind is EventKind.TOOL_CALL_STARTED:
            call = slot.tool_calls.start(
                call_id=event.call_id,
                item_id=event.item_id,
                content_index=event.content_index,
                name=event.name,
                arguments=event.arguments,
            )
            return MergeResult(output=Delta(
                role=role,
                tool_call_fragments=[call.fragment(event.name, event.arguments)],
                index=index,
            ))

        if kind is EventKind.TOOL_CALL_ARGUMENTS_DELTA:
            call = slot.tool_calls.append_arguments(
                event.arguments or "",
                call_id=event.call_id,
                item_id=event.item_id,
                content_index=event.content_index,
            )
            return MergeResult(output=Delta(
                role=role,
                tool_call_fragments=[call.fragment(arguments_fragment=event.arguments)],
                index=index,
            ))

        if kind is EventKind.TOOL_CALL_DONE:
            call, adopted = slot.tool_calls.complete(
                arguments=event.arguments,
                call_id=event.call_id,
                item_id=event.item_id,
                content_index=event.content_index,
                name=event.name,
            )
            if adopted:
                return MergeResult(output=Delta(
                    role=role,
                    tool_call_fragments=[call.fragment(arguments_fragment=event.arguments)],
                    index=index,
                ))
            return self._role_only(role, index)

        if kind is EventKind.USAGE:
            if event.usage_snapshot is not None:
                slot.usage = combine_usage(slot.usage, event.usage_snapshot, self.usage_policy)
            return self._role_only(role, index)

        if kind is EventKind.FINISH:
            if event.usage_snapshot is not None:
                slot.usage = combine_usage(slot.usage, event.usage_snapshot, self.usage_policy)
            slot.finish_reason = event.finish_reason
            status = event.status or DeltaStatus.COMPLETE
            if self.defer_finish:
                slot.pending_status = status
                return self._role_only(role, index)
            return self._finalize(slot, status)

        raise ValueError(f"Unhandled event kind: {kind}")

    def close(self) -> List[MergeResult]:
        """
        End of stream: finish deferred indices and report any left open.

        Returns the resulting messages, then at most one IncompleteStreamError.
        """
        self.closed = True
        results: List[MergeResult] = []

        for index in sorted(self._open):
            slot = self._open[index]
            if slot.pending_status is not None:
                results.append(self._finalize(slot, slot.pending_status))

        if self._open or not self.messages:
            results.append(MergeResult(error=IncompleteStreamError(self.provider, self.open_indices)))

        return results

    def final_messages(self) -> List[AccumulatedMessage]:
        """Finished messages in index order, with response-level usage attached where missing."""
        messages = sorted(self.messages, key=lambda m: m.index)
        if self.response_usage is None:
            return messages
        return [
            m if m.usage is not None else replace(m, usage=self.response_usage)
            for m in messages
        ]

    # ============================================================
    # Internals
    # ============================================================

    def _slot(self, index: int) -> InProgress:
        slot = self._open.get(index)
        if slot is None:
            slot = InProgress(index=index)
            self._open[index] = slot
        return slot

    @staticmethod
    def _set_role(slot: InProgress, role: Optional[Role]) -> Optional[Role]:
        """Returns the role when this call established it."""
        if role is None or slot.role is not None:
            return None
        slot.role = role
        return role

    @staticmethod
    def _role_only(role: Optional[Role], index: int) -> MergeResult:
        if role is None:
            return _NOTHING
        return MergeResult(output=Delta(role=role, index=index))

    def _apply_response_usage(self, usage: Optional[Usage]):
        if usage is None:
            return
        if not self._open:
            # Arrived after every index finished (OpenAI include_usage)
            self.response_usage = combine_usage(self.response_usage, usage, self.usage_policy)
            return
        for slot in self._open.values():
            slot.usage = combine_usage(slot.usage, usage, self.usage_policy)

    def _finalize(self, slot: InProgress, status: DeltaStatus) -> MergeResult:
        del self._open[slot.index]

        try:
            tool_calls = slot.tool_calls.finalize_all()
        except MalformedToolCallArgumentsError as e:
            logger.error(
                "Tool call arguments are not valid JSON",
                provider=self.provider,
                index=slot.index,
                call_id=e.call_id,
            )
            self._retired[slot.index] = AccumulatedMessage(
                role=slot.role or Role.ASSISTANT,
                content=slot.content,
                status=status,
                usage=slot.usage,
                index=slot.index,
            )
            return MergeResult(error=e)

        message = AccumulatedMessage(
            role=slot.role or Role.ASSISTANT,
            content=slot.content,
            tool_calls=tool_calls,
            status=status,
            usage=slot.usage,
            index=slot.index,
        )
        self._retired[slot.index] = message
        self.messages.append(message)
        return MergeResult(output=message)
