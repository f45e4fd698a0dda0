"""
chatstream - Streaming Error Classification

Decides which provider-reported errors are transient and whether a
failed attempt should be retried.

Key principle:
- Transport failures and transient provider errors are retried, even
  after partial content was delivered (delivery is at-least-once per
  attempt; callers reset on the retry notification).
- Everything else stops the stream immediately with a typed error.
"""

from typing import Any, Dict, FrozenSet, Optional

from ..core.errors import ChatStreamException, ProviderError
from ..core.models import Provider


_CHAT_COMPLETIONS_TRANSIENT = frozenset({
    "server_error",
    "rate_limit_exceeded",
    "rate_limit_error",
    "service_unavailable",
    "overloaded",
    "timeout",
})

# Provider error type/code/status values that are worth retrying
TRANSIENT_ERROR_TYPES: Dict[str, FrozenSet[str]] = {
    Provider.ANTHROPIC.value: frozenset({
        "overloaded_error",
        "api_error",
        "rate_limit_error",
    }),
    Provider.GOOGLE.value: frozenset({
        "UNAVAILABLE",
        "DEADLINE_EXCEEDED",
        "INTERNAL",
        "RESOURCE_EXHAUSTED",
    }),
    Provider.OPENAI_RESPONSES.value: frozenset({
        "server_error",
        "rate_limit_exceeded",
        "service_unavailable",
    }),
}


def transient_error_types(provider: str) -> FrozenSet[str]:
    """Get the transient error types for a provider."""
    return TRANSIENT_ERROR_TYPES.get(provider, _CHAT_COMPLETIONS_TRANSIENT)


def is_transient_provider_error(provider: str, error_type: Optional[str]) -> bool:
    """Check the classification table for a provider error type."""
    if not error_type:
        return False
    return error_type in transient_error_types(provider)


def provider_error_from_payload(provider: str, payload: Dict[str, Any]) -> ProviderError:
    """
    Build a ProviderError from an in-stream error envelope.

    Handles the shapes providers use:
        {"error": {"type": "overloaded_error", "message": "..."}}      Anthropic, OpenAI
        {"error": {"code": 503, "status": "UNAVAILABLE", "message": "..."}}  Google
        {"type": "error", "code": "server_error", "message": "..."}    Responses API
        {"response": {"error": {"code": "...", "message": "..."}}}     response.failed
    """
    info: Any = payload.get("error")
    if not isinstance(info, dict):
        response = payload.get("response")
        if isinstance(response, dict) and isinstance(response.get("error"), dict):
            info = response["error"]
        else:
            info = payload

    status_code = info.get("code") if isinstance(info.get("code"), int) else None

    error_type: Optional[str] = None
    for key in ("status", "type", "code"):
        value = info.get(key)
        # The Responses API tags the envelope itself with type "error"
        if isinstance(value, str) and value and value != "error":
            error_type = value
            break

    message = info.get("message") or f"{provider} reported a stream error"

    return ProviderError(
        provider=provider,
        message=message,
        error_type=error_type or "provider_error",
        transient=is_transient_provider_error(provider, error_type),
        status_code=status_code,
        raw=payload,
    )


def should_retry_stream_error(
    error: ChatStreamException,
    attempt_count: int,
    max_retries: int = 3
) -> bool:
    """
    Determine if a failed attempt should be retried.

    Args:
        error: Canonical error that ended the attempt
        attempt_count: Attempts made so far, including the failed one
        max_retries: Retries allowed after the first attempt

    Returns:
        True when the error is transient and retries remain
    """
    if attempt_count > max_retries:
        return False
    return error.retryable
