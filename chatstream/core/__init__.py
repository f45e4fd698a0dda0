"""
chatstream Core Module

Contains the provider-agnostic data model and the error taxonomy.
"""

from .models import (
    # Enums
    Provider,
    Role,
    DeltaStatus,
    EventKind,
    UsagePolicy,

    # Usage
    Usage,

    # Frames and events
    Frame,
    CanonicalDeltaEvent,

    # Deltas and messages
    ToolCallFragment,
    Delta,
    ToolCall,
    AccumulatedMessage,
)

from .errors import (
    # Error types
    ErrorType,
    ErrorDetails,
    ChatStreamException,

    # Infra errors
    InfraError,
    TransportTimeoutError,
    TransportClosedError,
    RetriesExhaustedError,

    # Provider errors
    ProviderError,

    # Protocol errors
    ProtocolError,
    FrameDecodeError,
    UnexpectedEventShapeError,
    MalformedToolCallArgumentsError,
    IncompleteStreamError,

    # Cancellation
    StreamCancelledError,

    # Factory
    create_error_from_status,
    classify_transport_error,
)

__all__ = [
    # Enums
    "Provider",
    "Role",
    "DeltaStatus",
    "EventKind",
    "UsagePolicy",

    # Usage
    "Usage",

    # Frames and events
    "Frame",
    "CanonicalDeltaEvent",

    # Deltas and messages
    "ToolCallFragment",
    "Delta",
    "ToolCall",
    "AccumulatedMessage",

    # Errors
    "ErrorType",
    "ErrorDetails",
    "ChatStreamException",
    "InfraError",
    "TransportTimeoutError",
    "TransportClosedError",
    "RetriesExhaustedError",
    "ProviderError",
    "ProtocolError",
    "FrameDecodeError",
    "UnexpectedEventShapeError",
    "MalformedToolCallArgumentsError",
    "IncompleteStreamError",
    "StreamCancelledError",

    # Factory
    "create_error_from_status",
    "classify_transport_error",
]
