"""
chatstream - Core Data Models

Provider-agnostic data model for streamed chat responses.

Everything a provider stream is decoded into ends up in one of these
shapes: protocol frames, canonical delta events, externally visible
deltas and the terminal accumulated message.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported streaming providers."""
    OPENAI = "openai"
    OPENAI_RESPONSES = "openai_responses"
    AZURE = "azure"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    GROQ = "groq"
    DEEPSEEK = "deepseek"
    GROK = "grok"
    PERPLEXITY = "perplexity"
    MISTRAL = "mistral"
    LOCAL = "local"


class Role(str, Enum):
    """Message roles."""
    UNKNOWN = "unknown"
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    @classmethod
    def from_provider(cls, value: Optional[str]) -> Optional["Role"]:
        """Map a provider role string to a Role. Google calls the assistant "model"."""
        if value is None:
            return None
        if value == "model":
            return cls.ASSISTANT
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DeltaStatus(str, Enum):
    """Completion state of a delta or message."""
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    LENGTH = "length"


class EventKind(str, Enum):
    """Kinds of canonical delta events."""
    CONTENT_DELTA = "content_delta"
    CONTENT_DONE = "content_done"
    TOOL_CALL_STARTED = "tool_call_started"
    TOOL_CALL_ARGUMENTS_DELTA = "tool_call_arguments_delta"
    TOOL_CALL_DONE = "tool_call_done"
    FINISH = "finish"
    USAGE = "usage"
    ERROR = "error"
    IGNORABLE = "ignorable"


class UsagePolicy(str, Enum):
    """How successive usage snapshots for one index are combined."""
    REPLACE = "replace"            # cumulative snapshots, last one wins
    ACCUMULATE = "accumulate"      # incremental snapshots, summed
    MERGE_FIELDS = "merge_fields"  # later snapshots replace only what they report


# ============================================================
# Usage
# ============================================================

@dataclass(frozen=True)
class Usage:
    """Token usage snapshot."""
    input_tokens: int = 0
    output_tokens: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def combine(self, newer: "Usage", policy: UsagePolicy) -> "Usage":
        """Combine this snapshot with a newer one under the given policy."""
        if policy is UsagePolicy.REPLACE:
            return newer

        if policy is UsagePolicy.ACCUMULATE:
            return Usage(
                input_tokens=self.input_tokens + newer.input_tokens,
                output_tokens=self.output_tokens + newer.output_tokens,
                raw={**self.raw, **newer.raw},
            )

        # MERGE_FIELDS: zero means "not reported" in a partial snapshot
        return Usage(
            input_tokens=newer.input_tokens or self.input_tokens,
            output_tokens=newer.output_tokens or self.output_tokens,
            raw={**self.raw, **newer.raw},
        )


# ============================================================
# Frames and Events
# ============================================================

@dataclass(frozen=True)
class Frame:
    """One self-contained protocol unit extracted from an SSE byte stream."""
    event: Optional[str]
    payload: str
    data: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class CanonicalDeltaEvent:
    """
    Provider-agnostic form of one decoded frame.

    Which fields are populated depends on ``kind``:
    - content_delta: text_fragment, role
    - tool_call_started: call_id, item_id, content_index, name, arguments
    - tool_call_arguments_delta: call_id/item_id/content_index, arguments
    - tool_call_done: call_id/item_id/content_index, arguments (full text, optional)
    - finish: finish_reason, status, usage_snapshot (optional)
    - usage: usage_snapshot, role (optional)
    - error: error
    - ignorable: event_type
    """
    kind: EventKind
    index: Optional[int] = 0
    content_index: Optional[int] = None
    item_id: Optional[str] = None
    call_id: Optional[str] = None
    name: Optional[str] = None
    text_fragment: Optional[str] = None
    arguments: Optional[str] = None
    role: Optional[Role] = None
    finish_reason: Optional[str] = None
    status: Optional[DeltaStatus] = None
    usage_snapshot: Optional[Usage] = None
    error: Optional[Any] = None
    event_type: Optional[str] = None


# ============================================================
# Deltas and Messages
# ============================================================

@dataclass(frozen=True)
class ToolCallFragment:
    """A partial piece of a tool invocation's name or arguments."""
    call_id: Optional[str]
    name_fragment: Optional[str] = None
    arguments_fragment: Optional[str] = None
    index: int = 0


@dataclass(frozen=True)
class Delta:
    """Partial-message update emitted while a response is streaming."""
    role: Optional[Role] = None
    content_fragment: Optional[str] = None
    tool_call_fragments: List[ToolCallFragment] = field(default_factory=list)
    status: DeltaStatus = DeltaStatus.INCOMPLETE
    index: int = 0


@dataclass(frozen=True)
class ToolCall:
    """A complete tool call made by the model."""
    call_id: str
    name: str
    arguments: str
    type: str = "function"

    def parsed_arguments(self) -> Dict[str, Any]:
        """Decode the arguments JSON."""
        return json.loads(self.arguments)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to OpenAI tool call format."""
        return {
            "id": self.call_id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class AccumulatedMessage:
    """The fully merged, terminal message for one response index."""
    role: Role
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    status: DeltaStatus = DeltaStatus.COMPLETE
    usage: Optional[Usage] = None
    index: int = 0

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary."""
        result: Dict[str, Any] = {
            "index": self.index,
            "role": self.role.value,
            "content": self.content,
            "status": self.status.value,
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.usage is not None:
            result["usage"] = {
                "input_tokens": self.usage.input_tokens,
                "output_tokens": self.usage.output_tokens,
                "total_tokens": self.usage.total_tokens,
            }
        return result
