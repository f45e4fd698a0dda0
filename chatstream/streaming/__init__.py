"""
chatstream - Streaming Module

Incremental decoding of provider event streams with:
- SSE frame recombination across arbitrary chunk boundaries
- Per-provider normalization into canonical delta events
- Delta merging into complete messages and tool calls
- Retries, cancellation and observer fan-out in the driver
"""

from .frames import (
    Buffer,
    DecodeResult,
    FrameDecoder,
    decode,
    DONE_SENTINEL,
)
from .normalizer import (
    EventNormalizer,
    ChatCompletionsNormalizer,
    ResponsesNormalizer,
    AnthropicNormalizer,
    GoogleNormalizer,
    get_normalizer,
    normalize,
)
from .tool_calls import (
    ToolCallAccumulator,
    ToolCallStreamTracker,
)
from .merger import (
    InProgress,
    MergeResult,
    DeltaMerger,
)
from .providers import (
    Dialect,
    ProviderProfile,
    PROVIDER_PROFILES,
    get_provider_profile,
)
from .errors import (
    provider_error_from_payload,
    is_transient_provider_error,
    should_retry_stream_error,
)
from .cancellation import CancellationToken
from .observers import (
    StreamObserver,
    CallbackObserver,
    ObserverRegistry,
)
from .driver import (
    StreamState,
    StreamResult,
    StreamDriver,
)

__all__ = [
    # Frames
    "Buffer",
    "DecodeResult",
    "FrameDecoder",
    "decode",
    "DONE_SENTINEL",
    # Normalizers
    "EventNormalizer",
    "ChatCompletionsNormalizer",
    "ResponsesNormalizer",
    "AnthropicNormalizer",
    "GoogleNormalizer",
    "get_normalizer",
    "normalize",
    # Tool Calls
    "ToolCallAccumulator",
    "ToolCallStreamTracker",
    # Merger
    "InProgress",
    "MergeResult",
    "DeltaMerger",
    # Providers
    "Dialect",
    "ProviderProfile",
    "PROVIDER_PROFILES",
    "get_provider_profile",
    # Errors
    "provider_error_from_payload",
    "is_transient_provider_error",
    "should_retry_stream_error",
    # Driver
    "CancellationToken",
    "StreamObserver",
    "CallbackObserver",
    "ObserverRegistry",
    "StreamState",
    "StreamResult",
    "StreamDriver",
]
