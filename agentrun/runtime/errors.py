"""Error taxonomy for agent runs.

Run-level errors (RequestError, TransportError) end a run with a single
user-visible message. CancelledError marks a stop requested by the caller
and is not a failure. StepError describes one failed step and never ends
the run. FrameParseError is raised inside the frame decoder only and is
always dropped there.
"""

from __future__ import annotations

from typing import Optional

GENERIC_FAILURE_MESSAGE = "Execution failed"


class RunError(Exception):
    """Base class for errors surfaced by an agent run."""

    def __init__(self, message: str = GENERIC_FAILURE_MESSAGE):
        self.message = message
        super().__init__(message)


class RequestError(RunError):
    """The execution service rejected the request before streaming began."""

    def __init__(self, message: str = GENERIC_FAILURE_MESSAGE, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransportError(RunError):
    """The connection or the response body failed after the request was sent."""


class CancelledError(RunError):
    """The run was stopped by the caller (or its timeout) before it finished.

    Distinct from ``asyncio.CancelledError``: this is a value-level signal
    for callers, never used to unwind tasks.
    """

    def __init__(self, message: str = "Run cancelled"):
        super().__init__(message)


class IncompleteRunError(RunError):
    """The stream ended without an execution-complete frame.

    The consumer accepts such runs; this error is raised only when a caller
    asks for completion explicitly.
    """

    def __init__(self, message: str = "Stream ended before execution completed"):
        super().__init__(message)


class FrameParseError(Exception):
    """A single SSE data line could not be decoded into a frame."""

    def __init__(self, payload: str, reason: str):
        self.payload = payload
        self.reason = reason
        super().__init__(f"Malformed frame ({reason}): {payload[:80]!r}")


class StepError(Exception):
    """A single step failed; recorded against the step, not fatal to the run."""

    def __init__(self, step_id: str, message: str):
        self.step_id = step_id
        self.message = message
        super().__init__(f"Step '{step_id}' failed: {message}")
