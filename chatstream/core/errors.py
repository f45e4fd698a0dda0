"""
chatstream - Error Definitions

Error taxonomy for stream decoding with infra vs semantic vs protocol
classification.

- Infra errors: transport trouble (timeouts, dropped connections,
  transient provider failures). Retryable by the stream driver.
- Semantic errors: the provider rejected the request, or the caller
  cancelled. Never retried.
- Protocol errors: the provider sent something the decoder cannot make
  sense of (malformed frames, unknown event types, broken tool-call JSON,
  streams ending without a terminal event). Never retried.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"
    PROTOCOL = "protocol_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None
    request_id: str = ""

    # Recovery fields
    retryable: bool = False
    status_code: Optional[int] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.request_id:
            result["request_id"] = self.request_id
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.details:
            result["details"] = self.details

        return {"error": result}


class ChatStreamException(Exception):
    """Base exception for all chatstream errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def retryable(self) -> bool:
        return self.error.retryable


def _sample(text: Optional[str], limit: int = 200) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else f"{text[:limit]}...({len(text)} chars)"


# ============================================================
# Infra Errors (Retryable)
# ============================================================

class InfraError(ChatStreamException):
    """Base class for infrastructure errors."""
    pass


class TransportTimeoutError(InfraError):
    """No chunk arrived within the receive timeout."""

    def __init__(self, provider: str = "", message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="transport_timeout",
                message=message or f"{provider or 'provider'} stream timed out",
                type=ErrorType.INFRA,
                provider=provider or None,
                request_id=request_id,
                retryable=True,
            )
        )


class TransportClosedError(InfraError):
    """The connection was closed before the stream finished."""

    def __init__(self, provider: str = "", message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="transport_closed",
                message=message or f"{provider or 'provider'} closed the connection mid-stream",
                type=ErrorType.INFRA,
                provider=provider or None,
                request_id=request_id,
                retryable=True,
            )
        )


class RetriesExhaustedError(InfraError):
    """Transient failures persisted past the retry budget."""

    def __init__(
        self,
        provider: str,
        attempts: int,
        last_error: Optional[ChatStreamException] = None,
        request_id: str = ""
    ):
        details: Dict[str, Any] = {"attempts": attempts}
        if last_error is not None:
            details["last_error"] = last_error.error.to_dict()["error"]
        super().__init__(
            ErrorDetails(
                code="retries_exhausted",
                message=f"{provider} stream failed after {attempts} attempts",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details=details,
            )
        )
        self.last_error = last_error


# ============================================================
# Provider Errors
# ============================================================

class ProviderError(ChatStreamException):
    """
    The provider reported an error, either as an HTTP status or as an
    error envelope inside the stream.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        error_type: str = "",
        transient: bool = False,
        status_code: Optional[int] = None,
        raw: Optional[Dict[str, Any]] = None,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code=error_type or "provider_error",
                message=message,
                type=ErrorType.INFRA if transient else ErrorType.SEMANTIC,
                provider=provider,
                request_id=request_id,
                retryable=transient,
                status_code=status_code,
                details={"raw": raw} if raw else {},
            )
        )
        self.provider_error_type = error_type


# ============================================================
# Protocol Errors (Not Retryable)
# ============================================================

class ProtocolError(ChatStreamException):
    """Base class for errors in the shape of the provider's stream."""
    pass


class FrameDecodeError(ProtocolError):
    """A frame candidate could not be decoded. Recorded, never raised by the decoder."""

    def __init__(self, reason: str, sample: str = "", provider: str = ""):
        super().__init__(
            ErrorDetails(
                code="frame_decode_error",
                message=f"Could not decode stream frame: {reason}",
                type=ErrorType.PROTOCOL,
                provider=provider or None,
                retryable=False,
                details={"reason": reason, "sample": _sample(sample)},
            )
        )
        self.reason = reason


class UnexpectedEventShapeError(ProtocolError):
    """An event matched neither the handled nor the ignorable list."""

    def __init__(self, provider: str, event_type: Optional[str], payload: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorDetails(
                code="unexpected_event_shape",
                message=f"Unexpected {provider} stream event: {event_type or 'untyped payload'}",
                type=ErrorType.PROTOCOL,
                provider=provider,
                retryable=False,
                details={
                    "event_type": event_type,
                    "sample": _sample(json.dumps(payload, default=str)) if payload else "",
                },
            )
        )
        self.event_type = event_type


class MalformedToolCallArgumentsError(ProtocolError):
    """Accumulated tool-call arguments are not valid JSON at finalize time."""

    def __init__(self, call_id: Optional[str], name: Optional[str], arguments: str, reason: str = ""):
        super().__init__(
            ErrorDetails(
                code="malformed_tool_call_arguments",
                message=f"Tool call '{name or call_id}' has invalid arguments JSON: {reason}",
                type=ErrorType.PROTOCOL,
                retryable=False,
                details={
                    "call_id": call_id,
                    "name": name,
                    "arguments": _sample(arguments),
                },
            )
        )
        self.call_id = call_id


class IncompleteStreamError(ProtocolError):
    """The stream ended while one or more indices had no terminal event."""

    def __init__(self, provider: str, open_indices: List[int]):
        super().__init__(
            ErrorDetails(
                code="incomplete_stream",
                message=(
                    f"{provider} stream ended without a terminal event for index "
                    f"{', '.join(str(i) for i in open_indices)}"
                    if open_indices else f"{provider} stream ended without any message"
                ),
                type=ErrorType.PROTOCOL,
                provider=provider,
                retryable=False,
                details={"open_indices": open_indices},
            )
        )
        self.open_indices = open_indices


# ============================================================
# Cancellation
# ============================================================

class StreamCancelledError(ChatStreamException):
    """The caller cancelled the stream."""

    def __init__(self, reason: str = "operation cancelled", provider: str = ""):
        super().__init__(
            ErrorDetails(
                code="cancelled",
                message=reason,
                type=ErrorType.SEMANTIC,
                provider=provider or None,
                retryable=False,
            )
        )


# ============================================================
# Error Factory
# ============================================================

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504, 529}


def create_error_from_status(
    provider: str,
    status_code: int,
    body: str = "",
    request_id: str = ""
) -> ProviderError:
    """
    Create a ProviderError from an HTTP error response.

    Most providers wrap the message as {"error": {"message", "type"|"code"|"status"}}.
    """
    message = body or f"{provider} returned HTTP {status_code}"
    error_type = f"http_{status_code}"
    raw: Optional[Dict[str, Any]] = None

    try:
        parsed = json.loads(body) if body else None
    except ValueError:
        parsed = None

    if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict):
        # Google sometimes returns the error envelope wrapped in a list
        parsed = parsed[0]

    if isinstance(parsed, dict):
        raw = parsed
        info = parsed.get("error")
        if isinstance(info, dict):
            message = info.get("message") or message
            error_type = str(info.get("type") or info.get("code") or info.get("status") or error_type)

    return ProviderError(
        provider=provider,
        message=message,
        error_type=error_type,
        transient=status_code in RETRYABLE_STATUS_CODES,
        status_code=status_code,
        raw=raw,
        request_id=request_id,
    )


def classify_transport_error(
    error: BaseException,
    provider: str = "",
    request_id: str = ""
) -> ChatStreamException:
    """
    Convert an exception raised while reading the stream to a canonical error.

    Timeouts and dropped connections become retryable transport errors.
    Anything unrecognised is a non-retryable internal error.
    """
    if isinstance(error, ChatStreamException):
        return error

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return TransportTimeoutError(provider, str(error) or "", request_id)

    if isinstance(error, (httpx.RemoteProtocolError, httpx.NetworkError, ConnectionError)):
        return TransportClosedError(provider, str(error) or "", request_id)

    if isinstance(error, httpx.HTTPStatusError):
        return create_error_from_status(
            provider,
            error.response.status_code,
            request_id=request_id,
        )

    return ChatStreamException(
        ErrorDetails(
            code="internal_error",
            message=str(error) or error.__class__.__name__,
            type=ErrorType.INFRA,
            provider=provider or None,
            request_id=request_id,
            retryable=False,
            details={"exception": error.__class__.__name__},
        )
    )
