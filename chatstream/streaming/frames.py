"""
chatstream - SSE Frame Recombiner

Turns raw network chunks into self-contained frames.

Chunks carry no alignment guarantee: a JSON object, an ``event:``/``data:``
pair or a multi-byte UTF-8 sequence may be split anywhere. Whatever cannot
be decoded yet is carried forward in an immutable Buffer.

Both wire styles are handled by one splitter:
    data: {"choices": [...]}\\n\\n
    event: content_block_delta\\ndata: {"type": "content_block_delta", ...}\\n\\n

Decoding never raises. Malformed frames are recorded as FrameDecodeError
in the result and skipped. Two safety valves drop pending text: too many
re-splits in one call, and a carried buffer above max_buffer_chars.
"""

import codecs
import json
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from ..config import DEFAULT_MAX_BUFFER_CHARS, DEFAULT_MAX_RESPLIT_DEPTH
from ..core.errors import FrameDecodeError
from ..core.models import Frame
from ..observability.logging import get_logger

logger = get_logger(__name__)


DONE_SENTINEL = "[DONE]"

# Drop reasons, also used as metric labels
REASON_MALFORMED = "malformed"
REASON_NOT_OBJECT = "not_object"
REASON_RESPLIT_DEPTH = "resplit_depth_exceeded"
REASON_BUFFER_OVERFLOW = "buffer_overflow"

DROP_REASONS = {REASON_RESPLIT_DEPTH, REASON_BUFFER_OVERFLOW}

_MARKER = re.compile(r"^(event|data):", re.MULTILINE)
_JSON = json.JSONDecoder()


@dataclass(frozen=True)
class Buffer:
    """Undecoded text plus any incomplete trailing UTF-8 byte sequence."""
    text: str = ""
    pending_bytes: bytes = b""

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.pending_bytes


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of one decode call."""
    frames: List[Frame]
    buffer: Buffer
    errors: List[FrameDecodeError] = field(default_factory=list)
    done: bool = False


@dataclass
class _Segment:
    kind: str   # "event" or "data"
    start: int  # offset of the marker in the combined text
    value: str  # field value up to the next marker


def _field_value(raw: str) -> str:
    # A single space after the colon belongs to the field syntax
    return raw[1:] if raw.startswith(" ") else raw


def _decode_bytes(pending: bytes, chunk: Union[bytes, str]) -> Tuple[str, bytes]:
    if isinstance(chunk, str):
        chunk = chunk.encode("utf-8")
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    decoder.setstate((pending, 0))
    text = decoder.decode(chunk, final=False)
    return text, decoder.getstate()[0]


def _split(text: str) -> Tuple[List[_Segment], str]:
    """
    Split text at line-start markers.

    Returns the segments and, when there is no marker at all, the partial
    last line to carry (it may be the start of a marker).
    """
    matches = list(_MARKER.finditer(text))
    if not matches:
        return [], text.rpartition("\n")[2]

    segments = []
    for pos, match in enumerate(matches):
        end = matches[pos + 1].start() if pos + 1 < len(matches) else len(text)
        segments.append(_Segment(
            kind=match.group(1),
            start=match.start(),
            value=_field_value(text[match.end():end]),
        ))
    return segments, ""


def _tail_after_blank_line(value: str) -> str:
    return value.partition("\n\n")[2].lstrip()


class _FrameSplitter:
    """Single-use worker for one decode call."""

    def __init__(self, text: str, max_resplit_depth: int, provider: str):
        self.text = text
        self.max_resplit_depth = max_resplit_depth
        self.provider = provider
        self.frames: List[Frame] = []
        self.errors: List[FrameDecodeError] = []
        self.done = False
        self.depth = 0

    def run(self) -> str:
        """Process all candidates and return the text to carry."""
        segments, carry = _split(self.text)
        count = len(segments)
        i = 0

        while i < count:
            seg = segments[i]
            event_name: Optional[str] = None
            start = seg.start

            if seg.kind == "event":
                event_name = seg.value.split("\n", 1)[0].strip()
                if i + 1 >= count:
                    if "\n\n" in seg.value:
                        logger.debug("Event without data skipped", event_name=event_name)
                        return _tail_after_blank_line(seg.value)
                    return self.text[start:]
                if segments[i + 1].kind != "data" or "\n\n" in seg.value:
                    logger.debug("Event without data skipped", event_name=event_name)
                    i += 1
                    continue
                i += 1
                seg = segments[i]

            next_index, carry = self._consume(segments, i, event_name, start)
            if next_index < 0:
                return carry
            i = next_index

        return carry

    def _consume(
        self,
        segments: List[_Segment],
        first: int,
        event_name: Optional[str],
        start: int,
    ) -> Tuple[int, str]:
        """
        Decode the data candidate starting at segments[first].

        Returns (next segment index, carry). A negative index means stop.
        """
        count = len(segments)
        last = first
        payload = segments[first].value

        while True:
            trailing = last == count - 1
            body = payload.lstrip()

            if body.rstrip() == DONE_SENTINEL:
                self.done = True
                return (-1, "") if trailing else (last + 1, "")

            try:
                obj, end = _JSON.raw_decode(body)
            except json.JSONDecodeError as e:
                failure = e.msg
            else:
                if isinstance(obj, dict):
                    self.frames.append(Frame(event=event_name, payload=body[:end], data=obj))
                else:
                    self._malformed(REASON_NOT_OBJECT, body)
                return (-1, body[end:].lstrip()) if trailing else (last + 1, "")

            if "\n\n" in segments[last].value:
                self._malformed(REASON_MALFORMED, body, failure)
                return (-1, _tail_after_blank_line(segments[last].value)) if trailing else (last + 1, "")

            if trailing:
                # Incomplete: wait for more bytes, marker included
                return -1, self.text[start:]

            if segments[last + 1].kind != "data":
                self._malformed(REASON_MALFORMED, body, failure)
                return last + 1, ""

            # Unterminated and followed by another data line: join and retry
            self.depth += 1
            if self.depth > self.max_resplit_depth:
                self.errors.append(_drop(
                    REASON_RESPLIT_DEPTH,
                    self.text[start:],
                    self.provider,
                    depth=self.depth,
                ))
                return -1, ""
            last += 1
            payload = payload + segments[last].value

    def _malformed(self, reason: str, sample: str, detail: str = ""):
        error = FrameDecodeError(reason, sample=sample, provider=self.provider)
        logger.warning(
            "Skipping malformed frame",
            reason=reason,
            detail=detail,
            sample=error.error.details["sample"],
        )
        self.errors.append(error)


def _drop(reason: str, pending: str, provider: str, **fields) -> FrameDecodeError:
    error = FrameDecodeError(reason, sample=pending, provider=provider)
    logger.error(
        "Dropping pending stream text",
        reason=reason,
        dropped_chars=len(pending),
        **fields,
    )
    return error


def decode(
    buffer: Buffer,
    chunk: Union[bytes, str],
    max_resplit_depth: int = DEFAULT_MAX_RESPLIT_DEPTH,
    max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS,
    provider: str = "",
) -> DecodeResult:
    """
    Decode one raw chunk against the carried buffer.

    Args:
        buffer: Buffer returned by the previous call (Buffer() to start)
        chunk: Raw bytes or text with no alignment guarantee
        max_resplit_depth: Joins of unterminated candidates allowed per call
        max_buffer_chars: Largest carried buffer before it is dropped
        provider: Provider name for error context

    Returns:
        DecodeResult with the frames in wire order, the new buffer, any
        recorded FrameDecodeErrors and whether [DONE] was seen
    """
    text, pending = _decode_bytes(buffer.pending_bytes, chunk)
    combined = (buffer.text + text).replace("\r\n", "\n")

    splitter = _FrameSplitter(combined, max_resplit_depth, provider)
    carry = splitter.run()

    if len(carry) > max_buffer_chars:
        splitter.errors.append(_drop(
            REASON_BUFFER_OVERFLOW,
            carry,
            provider,
            max_buffer_chars=max_buffer_chars,
        ))
        carry = ""

    return DecodeResult(
        frames=splitter.frames,
        buffer=Buffer(text=carry, pending_bytes=pending),
        errors=splitter.errors,
        done=splitter.done,
    )


class FrameDecoder:
    """
    Stateful wrapper around decode() for one HTTP response attempt.

    Usage:
        decoder = FrameDecoder(provider="anthropic")
        for chunk in chunks:
            result = decoder.feed(chunk)
            for frame in result.frames:
                ...
    """

    def __init__(
        self,
        max_resplit_depth: int = DEFAULT_MAX_RESPLIT_DEPTH,
        max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS,
        provider: str = "",
    ):
        self.max_resplit_depth = max_resplit_depth
        self.max_buffer_chars = max_buffer_chars
        self.provider = provider
        self.buffer = Buffer()
        self.done = False

    def feed(self, chunk: Union[bytes, str]) -> DecodeResult:
        result = decode(
            self.buffer,
            chunk,
            max_resplit_depth=self.max_resplit_depth,
            max_buffer_chars=self.max_buffer_chars,
            provider=self.provider,
        )
        self.buffer = result.buffer
        self.done = self.done or result.done
        return result
