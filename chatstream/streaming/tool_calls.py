"""
chatstream - Tool Call Streaming

Accumulates tool calls whose arguments arrive as JSON string fragments.

Tool calls come in pieces:
1. A start with call id and function name (sometimes a first fragment)
2. Argument fragments, only valid JSON once all have arrived
3. Optionally a done event that may carry the full arguments

Providers identify a call differently from one event to the next:
- OpenAI chat-completions: ``id`` on the first fragment, ``index`` after
- OpenAI Responses API: ``item_id`` and ``output_index``
- Anthropic: the content block index
- Google: whole calls in one part

so each call is registered under every identifier it has been seen with.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import MalformedToolCallArgumentsError
from ..core.models import ToolCall, ToolCallFragment
from ..observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ToolCallAccumulator:
    """Accumulates streaming data for one tool call."""
    position: int
    call_id: Optional[str] = None
    item_id: Optional[str] = None
    function_name: Optional[str] = None
    arguments_buffer: str = ""
    is_complete: bool = False

    def update(
        self,
        call_id: Optional[str] = None,
        item_id: Optional[str] = None,
        function_name: Optional[str] = None,
        arguments_delta: Optional[str] = None
    ):
        """Update with new delta data. The first non-null id and name win."""
        if call_id and not self.call_id:
            self.call_id = call_id
        if item_id and not self.item_id:
            self.item_id = item_id
        if function_name and not self.function_name:
            self.function_name = function_name
        if arguments_delta:
            self.arguments_buffer += arguments_delta

    def mark_complete(self, arguments: Optional[str] = None) -> bool:
        """
        Mark this tool call as complete.

        Full arguments are adopted only when nothing was streamed.
        Returns True when they were adopted.
        """
        self.is_complete = True
        if arguments and not self.arguments_buffer:
            self.arguments_buffer = arguments
            return True
        return False

    def fragment(
        self,
        name_fragment: Optional[str] = None,
        arguments_fragment: Optional[str] = None
    ) -> ToolCallFragment:
        return ToolCallFragment(
            call_id=self.call_id or self.item_id,
            name_fragment=name_fragment,
            arguments_fragment=arguments_fragment,
            index=self.position,
        )

    def finalize(self) -> ToolCall:
        """
        Freeze into a ToolCall.

        Empty arguments become "{}".

        Raises:
            MalformedToolCallArgumentsError: arguments are not valid JSON
        """
        arguments = self.arguments_buffer if self.arguments_buffer.strip() else "{}"

        try:
            json.loads(arguments)
        except json.JSONDecodeError as e:
            raise MalformedToolCallArgumentsError(
                self.call_id or self.item_id,
                self.function_name,
                arguments,
                reason=str(e),
            ) from e

        if not self.function_name:
            logger.warning("Tool call finished without a function name", call_id=self.call_id)

        return ToolCall(
            call_id=self.call_id or self.item_id or f"call_{uuid.uuid4().hex[:24]}",
            name=self.function_name or "",
            arguments=arguments,
        )


class ToolCallStreamTracker:
    """
    Tracks the tool calls of one message.

    A single message can contain several parallel tool calls; each is
    accumulated separately and kept in registration order.
    """

    def __init__(self):
        self._calls: List[ToolCallAccumulator] = []
        self._aliases: Dict[Tuple[str, Any], ToolCallAccumulator] = {}

    def find(
        self,
        call_id: Optional[str] = None,
        item_id: Optional[str] = None,
        content_index: Optional[int] = None
    ) -> Optional[ToolCallAccumulator]:
        """Look a call up by any identifier it has been registered with."""
        for key in (("call", call_id), ("item", item_id), ("position", content_index)):
            if key[1] is not None and key in self._aliases:
                return self._aliases[key]
        return None

    def _register(
        self,
        call: ToolCallAccumulator,
        call_id: Optional[str],
        item_id: Optional[str],
        content_index: Optional[int]
    ):
        for key in (("call", call_id), ("item", item_id), ("position", content_index)):
            if key[1] is not None:
                self._aliases[key] = call

    def _resolve(
        self,
        call_id: Optional[str],
        item_id: Optional[str],
        content_index: Optional[int]
    ) -> ToolCallAccumulator:
        call = self.find(call_id, item_id, content_index)
        if call is not None and (
            (call_id and call.call_id and call.call_id != call_id)
            or (item_id and call.item_id and call.item_id != item_id)
        ):
            # A new id at a reused position starts a new call
            call = None
        if call is None:
            if call_id is None and item_id is None and content_index is None and self._calls:
                # Unaddressed fragment: continue the most recent call
                call = self._calls[-1]
            else:
                call = ToolCallAccumulator(position=len(self._calls))
                self._calls.append(call)
        self._register(call, call_id, item_id, content_index)
        return call

    def start(
        self,
        call_id: Optional[str] = None,
        item_id: Optional[str] = None,
        content_index: Optional[int] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None
    ) -> ToolCallAccumulator:
        """Register a tool call slot (or merge into an existing one)."""
        call = self._resolve(call_id, item_id, content_index)
        call.update(call_id=call_id, item_id=item_id, function_name=name, arguments_delta=arguments)
        return call

    def append_arguments(
        self,
        arguments: str,
        call_id: Optional[str] = None,
        item_id: Optional[str] = None,
        content_index: Optional[int] = None
    ) -> ToolCallAccumulator:
        """Append an arguments fragment in arrival order."""
        call = self.find(call_id, item_id, content_index)
        if call is None:
            logger.debug(
                "Arguments fragment before tool call start",
                call_id=call_id,
                item_id=item_id,
                content_index=content_index,
            )
        call = self._resolve(call_id, item_id, content_index)
        call.update(arguments_delta=arguments)
        return call

    def complete(
        self,
        arguments: Optional[str] = None,
        call_id: Optional[str] = None,
        item_id: Optional[str] = None,
        content_index: Optional[int] = None,
        name: Optional[str] = None
    ) -> Tuple[ToolCallAccumulator, bool]:
        """
        Mark a tool call complete.

        Returns the call and whether the full arguments were adopted.
        """
        call = self._resolve(call_id, item_id, content_index)
        call.update(call_id=call_id, item_id=item_id, function_name=name)
        return call, call.mark_complete(arguments)

    def finalize_all(self) -> List[ToolCall]:
        """
        Freeze every tracked call in registration order.

        Raises:
            MalformedToolCallArgumentsError: for the first call with invalid JSON
        """
        return [call.finalize() for call in self._calls]

    def has_calls(self) -> bool:
        return len(self._calls) > 0

    def call_count(self) -> int:
        return len(self._calls)
