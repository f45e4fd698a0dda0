"""
chatstream - Stream Configuration

Environment-driven limits for decoding and retrying provider streams.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .core.models import UsagePolicy


DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_RESPLIT_DEPTH = 10
DEFAULT_MAX_BUFFER_CHARS = 1024 * 1024
DEFAULT_RECEIVE_TIMEOUT = 60.0
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 16.0


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"Invalid {name}: must be >= {minimum}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: expected a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"Invalid {name}: must be > 0")
    return value


def get_usage_policy_override() -> Optional[UsagePolicy]:
    """
    Get the usage policy override.

    CHATSTREAM_USAGE_POLICY must be one of: replace, accumulate, merge_fields.
    Unset means each provider profile keeps its own default.
    """
    raw = os.getenv("CHATSTREAM_USAGE_POLICY", "").lower().strip()
    if not raw:
        return None
    try:
        return UsagePolicy(raw)
    except ValueError:
        raise ValueError(
            "Invalid CHATSTREAM_USAGE_POLICY. Use one of: replace, accumulate, merge_fields"
        )


@dataclass
class StreamConfig:
    """Limits applied to a single streamed call."""
    max_retries: int = DEFAULT_MAX_RETRIES
    max_resplit_depth: int = DEFAULT_MAX_RESPLIT_DEPTH
    max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS
    receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY
    usage_policy: Optional[UsagePolicy] = None

    @classmethod
    def from_env(cls) -> "StreamConfig":
        """Read configuration from CHATSTREAM_* environment variables."""
        return cls(
            max_retries=_env_int("CHATSTREAM_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            max_resplit_depth=_env_int("CHATSTREAM_MAX_RESPLIT_DEPTH", DEFAULT_MAX_RESPLIT_DEPTH, minimum=1),
            max_buffer_chars=_env_int("CHATSTREAM_MAX_BUFFER_CHARS", DEFAULT_MAX_BUFFER_CHARS, minimum=1),
            receive_timeout=_env_float("CHATSTREAM_RECEIVE_TIMEOUT", DEFAULT_RECEIVE_TIMEOUT),
            retry_base_delay=_env_float("CHATSTREAM_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY),
            retry_max_delay=_env_float("CHATSTREAM_RETRY_MAX_DELAY", DEFAULT_RETRY_MAX_DELAY),
            usage_policy=get_usage_policy_override(),
        )


_config: Optional[StreamConfig] = None


def get_stream_config() -> StreamConfig:
    """Get the process-wide stream configuration, reading the environment once."""
    global _config
    if _config is None:
        _config = StreamConfig.from_env()
    return _config


def reset_stream_config() -> None:
    """Forget the cached configuration (for testing)."""
    global _config
    _config = None
