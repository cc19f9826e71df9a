"""
consumer.py - Client-side execution of an agent run.

StepStreamConsumer owns the lifecycle of one run of an ordered step
pipeline against the execution service:

    run(steps, input, mode)
        -> POST the run request
        -> read the SSE byte stream (or the single inline response)
        -> SSELineScanner -> FrameDecoder -> reducer.apply_frame
        -> publish each new RunState snapshot to the subscriber
        -> return the terminal snapshot

Two execution paths share the one entry point:

    streaming (RunMode.streaming=True)
        POST /api/agents/{agent_id}/execute/stream  {"input": ...}
        Steps move incrementally; a failure mid-stream keeps every step in
        the state it had reached.

    inline (RunMode.streaming=False)
        POST /api/agents/execute-inline  {"persona", "steps", "input"}
        All-or-nothing: the whole response is validated before any step
        changes, so a failed request leaves every step pending.

Cancellation is cooperative: cancel() cancels the task driving the run and
takes effect at its next suspension point (the outstanding request or the
next stream read). A cancelled run ends with ``cancelled=True`` and no
``run_error``. The same path is taken when the optional timeout elapses.

Only one run is active per consumer: starting a run while another is active
cancels the earlier one and waits for it to wind down first.

Usage:
    from agentrun.runtime.consumer import StepStreamConsumer
    from agentrun.runtime.types import RunMode

    consumer = StepStreamConsumer(on_update=render)
    state = await consumer.run(steps, "Draft a memo", RunMode.resolve(agent_id))
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Sequence

import httpx

from ..config.runtime_config import get_base_url, get_run_timeout
from . import reducer
from .errors import GENERIC_FAILURE_MESSAGE
from .sse import FrameDecoder, SSELineScanner
from .types import (
    RunMode,
    RunState,
    Step,
    execution_result_from_dict,
    step_to_dict,
)

logger = logging.getLogger(__name__)

StateCallback = Callable[[RunState], None]

_UNSET: Any = object()


def decode_error_message(body: bytes) -> str:
    """Extract the user-facing message from a failed response body.

    Args:
        body: Raw response body; expected to be ``{"error": "..."}``.

    Returns:
        The carried error string, or the generic failure message when the
        body is not JSON or has no usable ``error`` field.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return GENERIC_FAILURE_MESSAGE
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, str) and error.strip():
            return error
    return GENERIC_FAILURE_MESSAGE


class _ActiveRun:
    """Mutable holder for the run currently in flight.

    Only the consumer touches this; observers see the RunState snapshots.
    """

    def __init__(self, steps: Sequence[Step], on_update: Optional[StateCallback]):
        self.state = reducer.initial_state(steps)
        self.decoder = FrameDecoder()
        self.task: Optional["asyncio.Future[None]"] = None
        self.cancel_requested = False
        self._on_update = on_update

    def publish(self, state: RunState) -> None:
        if state is self.state:
            return
        self.state = state
        if self._on_update is not None:
            self._on_update(state)

    def announce(self) -> None:
        if self._on_update is not None:
            self._on_update(self.state)


class StepStreamConsumer:
    """Runs agent step pipelines against the execution service.

    Attributes:
        base_url: Execution service base URL.
        timeout: Optional run timeout in seconds; None waits indefinitely.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = _UNSET,
        on_update: Optional[StateCallback] = None,
    ):
        """Initialize the consumer.

        Args:
            base_url: Execution service base URL. Defaults to the configured
                AGENTRUN_BASE_URL.
            client: Shared httpx client. When omitted a client is created per
                run and closed when the run ends.
            timeout: Run timeout in seconds. Defaults to the configured
                AGENTRUN_TIMEOUT_SECONDS; None, zero or a negative value disables it.
            on_update: Called with every new RunState snapshot, in order.
        """
        self.base_url = (base_url or get_base_url()).rstrip("/")
        if timeout is _UNSET:
            timeout = get_run_timeout()
        self.timeout = timeout if timeout is not None and timeout > 0 else None
        self._client = client
        self._on_update = on_update
        self._active: Optional[_ActiveRun] = None

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def state(self) -> Optional[RunState]:
        """Latest snapshot of the active run, or None when idle."""
        return self._active.state if self._active is not None else None

    async def run(
        self,
        steps: Sequence[Step],
        input: str,
        mode: RunMode,
        on_update: Optional[StateCallback] = None,
    ) -> Optional[RunState]:
        """Execute one run and return its terminal snapshot.

        Args:
            steps: Ordered steps of the agent; ids must be unique.
            input: Run input; surrounding whitespace is trimmed.
            mode: Streaming or inline execution.
            on_update: Subscriber for this run, overriding the consumer's.

        Returns:
            The final RunState, or None when the run was not started because
            the input is blank or there are no steps.
        """
        text = input.strip() if input else ""
        if not text or not steps:
            logger.debug("Run not started: %s", "no steps" if text else "blank input")
            return None

        previous = self._active
        if previous is not None:
            logger.info("Cancelling active run before starting a new one")
            await self._cancel_and_wait(previous)

        active = _ActiveRun(steps, on_update or self._on_update)
        self._active = active
        active.announce()
        task = asyncio.ensure_future(self._execute(active, steps, text, mode))
        active.task = task

        try:
            if self.timeout is None:
                await task
            else:
                await asyncio.wait_for(task, self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Run timed out after %.1fs; cancelling", self.timeout)
            active.publish(reducer.cancel(active.state))
        except asyncio.CancelledError:
            if not active.cancel_requested:
                raise
            logger.info("Run cancelled")
            active.publish(reducer.cancel(active.state))
        finally:
            if self._active is active:
                self._active = None

        return active.state

    def cancel(self) -> bool:
        """Stop the active run at its next suspension point.

        Returns:
            True if a run was in flight and has been asked to stop.
        """
        active = self._active
        if active is None or active.task is None or active.task.done():
            return False
        active.cancel_requested = True
        active.task.cancel()
        return True

    async def _cancel_and_wait(self, active: _ActiveRun) -> None:
        if active.task is None or active.task.done():
            return
        active.cancel_requested = True
        active.task.cancel()
        await asyncio.wait({active.task})

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _execute(
        self,
        active: _ActiveRun,
        steps: Sequence[Step],
        text: str,
        mode: RunMode,
    ) -> None:
        client = self._client
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(timeout=httpx.Timeout(None))
        try:
            if mode.streaming:
                await self._run_streaming(active, client, text, mode)
            else:
                await self._run_inline(active, client, steps, text, mode)
        finally:
            if owns_client:
                await client.aclose()

    async def _run_streaming(
        self,
        active: _ActiveRun,
        client: httpx.AsyncClient,
        text: str,
        mode: RunMode,
    ) -> None:
        url = f"{self.base_url}/api/agents/{mode.agent_id}/execute/stream"
        logger.info("Starting streamed run for agent %s (%d steps)", mode.agent_id, len(active.state.statuses))

        try:
            async with client.stream(
                "POST",
                url,
                json={"input": text},
                headers={"Accept": "text/event-stream"},
            ) as response:
                if not response.is_success:
                    await self._reject(active, response)
                    return

                scanner = SSELineScanner()
                async for chunk in response.aiter_bytes():
                    for line in scanner.feed(chunk):
                        frame = active.decoder.decode_line(line)
                        if frame is None:
                            continue
                        active.publish(reducer.apply_frame(active.state, frame))
                        if active.state.is_complete:
                            break
                    if active.state.is_complete:
                        break
                else:
                    remainder = scanner.finish()
                    if remainder:
                        logger.debug("Discarding unterminated trailing line (%d chars)", len(remainder))
        except (httpx.HTTPError, httpx.StreamError) as e:
            message = str(e) or GENERIC_FAILURE_MESSAGE
            logger.error("Stream failed for agent %s: %s", mode.agent_id, message)
            active.publish(reducer.fail(active.state, message, "transport"))
            return

        if active.decoder.dropped:
            logger.debug("Dropped %d malformed frames", active.decoder.dropped)

        if active.state.is_complete:
            logger.info("Run for agent %s completed", mode.agent_id)
        else:
            # Accepted: the run ends with whatever state the frames produced.
            logger.warning(
                "Stream for agent %s ended without execution-complete; keeping partial state",
                mode.agent_id,
            )

    async def _run_inline(
        self,
        active: _ActiveRun,
        client: httpx.AsyncClient,
        steps: Sequence[Step],
        text: str,
        mode: RunMode,
    ) -> None:
        url = f"{self.base_url}/api/agents/execute-inline"
        payload: Dict[str, Any] = {
            "persona": mode.persona,
            "steps": [step_to_dict(step) for step in steps],
            "input": text,
        }
        logger.info("Starting inline run (%d steps)", len(steps))

        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            message = str(e) or GENERIC_FAILURE_MESSAGE
            logger.error("Inline run request failed: %s", message)
            active.publish(reducer.fail(active.state, message, "transport"))
            return

        if not response.is_success:
            await self._reject(active, response)
            return

        # Validate the whole body before touching any step.
        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("response is not a JSON object")
            result = execution_result_from_dict(data)
        except (TypeError, ValueError) as e:
            logger.error("Invalid inline run response: %s", e)
            active.publish(reducer.fail(active.state, "Invalid response from execution service", "transport"))
            return

        active.publish(reducer.apply_execution_result(active.state, result))
        logger.info("Inline run completed (%d step results)", len(result.steps))

    async def _reject(self, active: _ActiveRun, response: httpx.Response) -> None:
        try:
            body = await response.aread()
        except (httpx.HTTPError, httpx.StreamError):
            body = b""
        message = decode_error_message(body)
        logger.error("Run request rejected (%d): %s", response.status_code, message)
        active.publish(reducer.fail(active.state, message, "request", response.status_code))
