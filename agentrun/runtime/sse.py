"""
sse.py - Server-Sent Event framing for step execution streams.

The execution service writes one JSON frame per SSE record:

    data: {"type": "step-start", "stepId": "outline"}

    data: {"type": "step-complete", "stepId": "outline", "result": {...}}

    data: {"type": "execution-complete", "finalOutput": "..."}

    data: [DONE]

Reading side:
    - SSELineScanner turns network chunks into complete lines. Bytes are
      decoded with an incremental UTF-8 decoder so a multi-byte character
      split across chunks is never mangled, and a line is only released once
      its terminating newline has arrived.
    - FrameDecoder turns lines into frames. Lines without the ``data: ``
      prefix (comments, keep-alives, event names, blank separators) and the
      ``[DONE]`` sentinel are skipped. A payload that is not a JSON object is
      handed to the ``drop_malformed_frame`` policy and skipped; one bad frame
      never ends a run.

Writing side:
    - format_sse_frame / format_sse_done produce the records above.

Usage:
    scanner = SSELineScanner()
    decoder = FrameDecoder()
    async for chunk in response.aiter_bytes():
        for line in scanner.feed(chunk):
            frame = decoder.decode_line(line)
            if frame is not None:
                handle(frame)
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .errors import FrameParseError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

Frame = Dict[str, Any]


class FrameType:
    """Frame ``type`` discriminators emitted by the execution service."""

    STEP_START = "step-start"
    STEP_COMPLETE = "step-complete"
    STEP_ERROR = "step-error"
    EXECUTION_COMPLETE = "execution-complete"


# =============================================================================
# Line Scanning
# =============================================================================


class SSELineScanner:
    """Incremental newline scanner over a byte stream.

    Keeps a text buffer plus the index from which the next newline search
    starts, so text already known to hold no terminator is not rescanned
    when the next chunk arrives.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._scan_from = 0

    @property
    def pending(self) -> str:
        """Text received after the last newline, not yet released."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[str]:
        """Consume one chunk and return the lines it completed.

        Args:
            chunk: Raw bytes from the network.

        Returns:
            Complete lines, without their ``\\n`` (and without a trailing
            ``\\r``), in arrival order.
        """
        text = self._decoder.decode(chunk)
        if not text:
            return []
        self._buffer += text

        lines: List[str] = []
        start = 0
        index = self._buffer.find("\n", self._scan_from)
        while index != -1:
            line = self._buffer[start:index]
            if line.endswith("\r"):
                line = line[:-1]
            lines.append(line)
            start = index + 1
            index = self._buffer.find("\n", start)

        if start:
            self._buffer = self._buffer[start:]
        self._scan_from = len(self._buffer)
        return lines

    def finish(self) -> str:
        """Flush the decoder at end of stream.

        Returns:
            The unterminated remainder, which callers discard. It is
            returned only so it can be logged.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        remainder = self._buffer
        self._buffer = ""
        self._scan_from = 0
        return remainder


# =============================================================================
# Frame Decoding
# =============================================================================


def parse_frame(payload: str) -> Frame:
    """Parse one SSE data payload into a frame.

    Args:
        payload: Text after the ``data: `` prefix, already trimmed.

    Returns:
        The decoded JSON object.

    Raises:
        FrameParseError: If the payload is not valid JSON or not an object.
    """
    try:
        frame = json.loads(payload)
    except json.JSONDecodeError as e:
        raise FrameParseError(payload, f"invalid JSON: {e.msg}") from e
    if not isinstance(frame, dict):
        raise FrameParseError(payload, f"expected object, got {type(frame).__name__}")
    return frame


def drop_malformed_frame(error: FrameParseError) -> None:
    """Policy for frames that cannot be decoded: log and skip."""
    logger.debug("Dropping malformed frame: %s", error)


class FrameDecoder:
    """Turns complete SSE lines into frames.

    Attributes:
        dropped: Number of data lines rejected by the malformed-frame policy.
        done_seen: Whether the ``[DONE]`` sentinel has been read.
    """

    def __init__(
        self,
        on_malformed: Callable[[FrameParseError], None] = drop_malformed_frame,
    ):
        self._on_malformed = on_malformed
        self.dropped = 0
        self.done_seen = False

    def decode_line(self, line: str) -> Optional[Frame]:
        """Decode one line.

        Returns:
            The frame, or None when the line carries no frame.
        """
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done_seen = True
            return None
        try:
            return parse_frame(payload)
        except FrameParseError as e:
            self.dropped += 1
            self._on_malformed(e)
            return None


# =============================================================================
# Frame Formatting
# =============================================================================


def format_sse_frame(frame: Frame) -> str:
    """Format a frame as one SSE record.

    Args:
        frame: JSON-serialisable frame with a ``type`` key.

    Returns:
        ``data: <json>`` followed by the blank line that ends the record.
    """
    return f"{DATA_PREFIX}{json.dumps(frame)}\n\n"


def format_sse_done() -> str:
    """Format the end-of-stream sentinel record."""
    return f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"
