"""
chatstream - Streaming Chat Completion Decoder

Turns the raw byte streams of chat-completion providers (OpenAI,
Anthropic, Google and OpenAI-compatible APIs) into incremental deltas
and complete messages with tool calls and token usage.
"""

__version__ = "1.0.0"
__author__ = "chatstream"

from .core.models import (
    Provider,
    Role,
    DeltaStatus,
    Usage,
    Delta,
    ToolCall,
    AccumulatedMessage,
)
from .core.errors import ChatStreamException
from .core.http_client import HttpxStreamTransport
from .config import StreamConfig
from .streaming import (
    CancellationToken,
    CallbackObserver,
    StreamObserver,
    StreamDriver,
    StreamResult,
)

__all__ = [
    "Provider",
    "Role",
    "DeltaStatus",
    "Usage",
    "Delta",
    "ToolCall",
    "AccumulatedMessage",
    "ChatStreamException",
    "HttpxStreamTransport",
    "StreamConfig",
    "CancellationToken",
    "CallbackObserver",
    "StreamObserver",
    "StreamDriver",
    "StreamResult",
]
