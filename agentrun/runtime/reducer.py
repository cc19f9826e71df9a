"""
reducer.py - Pure state transitions for a client-side run.

Every change to a RunState goes through one of these functions, each of
which returns a new snapshot and leaves its input untouched:

    initial_state(steps)                 every step pending
    apply_frame(state, frame)            one streamed frame
    apply_execution_result(state, res)   the inline endpoint's whole result
    fail(state, message, kind)           run-level failure
    cancel(state)                        caller stop

Frame handling:
    step-start          -> running
    step-complete       -> complete, result stored, step expanded
    step-error          -> error, result stored with the frame's error
    execution-complete  -> final_output set
    anything else       -> ignored

Frames naming a step outside the run are ignored, as is every frame after
the run reached a terminal state (completed, failed or cancelled).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Sequence

from .sse import Frame, FrameType
from .types import (
    ErrorKind,
    ExecutionResult,
    RunState,
    Step,
    StepResult,
    StepStatus,
    step_result_from_dict,
)

logger = logging.getLogger(__name__)

DEFAULT_STEP_ERROR = "Step failed"


def initial_state(steps: Sequence[Step]) -> RunState:
    """Create the snapshot a run starts from: every step pending."""
    return RunState(statuses={step.id: StepStatus.PENDING for step in steps})


def is_terminal(state: RunState) -> bool:
    """True once nothing more may change the state."""
    return state.final_output is not None or state.run_error is not None or state.cancelled


def _result_payload(frame: Frame) -> Optional[Dict[str, Any]]:
    payload = frame.get("result")
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        return None
    return payload


def _store_result(
    state: RunState,
    step_id: str,
    status: StepStatus,
    result: StepResult,
    expand: bool,
) -> RunState:
    statuses = dict(state.statuses)
    statuses[step_id] = status
    results = dict(state.results)
    results[step_id] = result
    expanded = state.expanded | {step_id} if expand else state.expanded
    return replace(state, statuses=statuses, results=results, expanded=expanded)


def _step_start(state: RunState, step_id: str) -> RunState:
    statuses = dict(state.statuses)
    statuses[step_id] = StepStatus.RUNNING
    # A restarted step loses any earlier result so results stay terminal-only.
    if step_id in state.results:
        results = {k: v for k, v in state.results.items() if k != step_id}
        return replace(state, statuses=statuses, results=results, expanded=state.expanded - {step_id})
    return replace(state, statuses=statuses)


def _parse_result(frame: Frame, step_id: str, extra: Dict[str, Any]) -> Optional[StepResult]:
    payload = _result_payload(frame)
    if payload is None:
        logger.debug("Ignoring %s frame for %s: result is not an object", frame.get("type"), step_id)
        return None
    try:
        return step_result_from_dict({**payload, **extra, "stepId": step_id})
    except (TypeError, ValueError) as e:
        logger.debug("Ignoring %s frame for %s: %s", frame.get("type"), step_id, e)
        return None


def apply_frame(state: RunState, frame: Frame) -> RunState:
    """Apply one decoded frame.

    Args:
        state: Current snapshot.
        frame: Decoded frame with a ``type`` discriminator.

    Returns:
        The next snapshot, or ``state`` itself when the frame changes nothing.
    """
    if is_terminal(state):
        return state

    frame_type = frame.get("type")

    if frame_type == FrameType.EXECUTION_COMPLETE:
        final_output = frame.get("finalOutput")
        if final_output is None:
            final_output = ""
        elif not isinstance(final_output, str):
            final_output = str(final_output)
        return replace(state, final_output=final_output)

    if frame_type not in (FrameType.STEP_START, FrameType.STEP_COMPLETE, FrameType.STEP_ERROR):
        logger.debug("Ignoring frame with unknown type %r", frame_type)
        return state

    step_id = frame.get("stepId")
    if not isinstance(step_id, str) or step_id not in state.statuses:
        logger.debug("Ignoring %s frame for unknown step %r", frame_type, step_id)
        return state

    if frame_type == FrameType.STEP_START:
        return _step_start(state, step_id)

    if frame_type == FrameType.STEP_COMPLETE:
        result = _parse_result(frame, step_id, {})
        if result is None:
            return state
        return _store_result(state, step_id, StepStatus.COMPLETE, result, expand=True)

    error = frame.get("error")
    if not isinstance(error, str) or not error:
        error = (_result_payload(frame) or {}).get("error") or DEFAULT_STEP_ERROR
    result = _parse_result(frame, step_id, {"error": error})
    if result is None:
        return state
    return _store_result(state, step_id, StepStatus.ERROR, result, expand=False)


def apply_execution_result(state: RunState, result: ExecutionResult) -> RunState:
    """Apply the inline endpoint's complete result in one transition.

    Each step result becomes complete when its validation passed and error
    otherwise; results for steps outside the run are ignored.
    """
    if is_terminal(state):
        return state

    statuses = dict(state.statuses)
    results = dict(state.results)
    expanded = set(state.expanded)
    for step_result in result.steps:
        step_id = step_result.step_id
        if step_id not in statuses:
            logger.debug("Ignoring inline result for unknown step %r", step_id)
            continue
        if step_result.validation_passed:
            statuses[step_id] = StepStatus.COMPLETE
        else:
            statuses[step_id] = StepStatus.ERROR
            if not step_result.error:
                step_result = replace(step_result, error=DEFAULT_STEP_ERROR)
        results[step_id] = step_result
        expanded.add(step_id)

    return replace(
        state,
        statuses=statuses,
        results=results,
        expanded=frozenset(expanded),
        final_output=result.final_output,
    )


def fail(state: RunState, message: str, kind: ErrorKind, status_code: Optional[int] = None) -> RunState:
    """Record a run-level failure. Step statuses are left as they were."""
    if is_terminal(state):
        return state
    return replace(state, run_error=message, error_kind=kind, status_code=status_code)


def cancel(state: RunState) -> RunState:
    """Record a caller stop. Step statuses are left as they were."""
    if is_terminal(state):
        return state
    return replace(state, cancelled=True)
