"""Run types for step execution and client-side run state.

This module contains the per-step status and result types shared by the
execution service and the streaming consumer, the immutable RunState
snapshot the consumer publishes, and the RunMode that selects between the
streaming and inline execution paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from ..errors import (
    CancelledError,
    IncompleteRunError,
    RequestError,
    StepError,
    TransportError,
)
from ._ids import AgentId, StepId

ErrorKind = Literal["request", "transport"]


class StepStatus(str, Enum):
    """Status of a single step within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETE, StepStatus.ERROR)


@dataclass(frozen=True)
class StepResult:
    """Outcome of executing one step.

    Attributes:
        step_id: The step this result belongs to.
        step_name: Display name of the step.
        output: Text produced by the step (or its fallback).
        duration_ms: Wall time spent on the step, never negative.
        validation_passed: Whether the output passed the step's validation.
        error: Failure description; present when the step ended in error.
    """

    step_id: StepId
    step_name: str = ""
    output: str = ""
    duration_ms: int = 0
    validation_passed: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    """Batch result of running every step of an agent."""

    steps: List[StepResult] = field(default_factory=list)
    final_output: str = ""
    total_duration_ms: int = 0


@dataclass(frozen=True)
class RunMode:
    """Selects how a run is executed.

    Attributes:
        streaming: True to use the persisted agent's SSE endpoint, False to
            send the full step definitions to the inline endpoint.
        agent_id: Persisted agent identifier; required when streaming.
        persona: Persona text sent with inline runs.
    """

    streaming: bool
    agent_id: Optional[AgentId] = None
    persona: str = ""

    def __post_init__(self) -> None:
        if self.streaming and not self.agent_id:
            raise ValueError("Streaming runs require a persisted agent_id")

    @classmethod
    def resolve(cls, agent_id: Optional[AgentId], persona: str = "") -> "RunMode":
        """Stream when the agent has been persisted, otherwise run inline."""
        return cls(streaming=bool(agent_id), agent_id=agent_id or None, persona=persona)


@dataclass(frozen=True)
class RunState:
    """Immutable snapshot of one run as seen by the client.

    A new RunState is produced for every transition; snapshots handed to
    observers are never mutated afterwards.

    Invariants:
        - every step id of the run has an entry in ``statuses``
        - a step has an entry in ``results`` iff its status is terminal
        - ``final_output`` is set at most once, by the completion frame
        - ``run_error`` and ``cancelled`` are never both set

    Attributes:
        statuses: Step id to status, initialised to pending.
        results: Step id to result, for terminal steps.
        expanded: Step ids whose result should be shown expanded.
        final_output: Output of the whole run, once completed.
        run_error: Run-level failure message.
        error_kind: "request" for a rejected request, "transport" for a
            failure after the request was accepted.
        cancelled: True when the run was stopped by the caller or a timeout.
        status_code: HTTP status of a rejected request, when known.
    """

    statuses: Dict[StepId, StepStatus] = field(default_factory=dict)
    results: Dict[StepId, StepResult] = field(default_factory=dict)
    expanded: FrozenSet[StepId] = frozenset()
    final_output: Optional[str] = None
    run_error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    cancelled: bool = False
    status_code: Optional[int] = None

    @property
    def step_ids(self) -> List[StepId]:
        return list(self.statuses)

    @property
    def is_complete(self) -> bool:
        """True once the execution-complete frame (or inline result) arrived."""
        return self.final_output is not None

    @property
    def is_failed(self) -> bool:
        return self.run_error is not None

    def status_of(self, step_id: StepId) -> Optional[StepStatus]:
        return self.statuses.get(step_id)

    def step_errors(self) -> List[StepError]:
        """Per-step failures recorded in this run, in step order."""
        errors: List[StepError] = []
        for step_id, status in self.statuses.items():
            if status is StepStatus.ERROR:
                result = self.results.get(step_id)
                message = result.error if result and result.error else "Step failed"
                errors.append(StepError(step_id, message))
        return errors

    def raise_for_error(self, require_completion: bool = False) -> None:
        """Raise the taxonomy error matching this terminal state.

        Args:
            require_completion: Also raise IncompleteRunError when the run
                ended without a final output and without any other error.

        Raises:
            CancelledError: The run was cancelled.
            RequestError: The request was rejected before streaming.
            TransportError: The run failed after the request was accepted.
            IncompleteRunError: Only when ``require_completion`` is set.
        """
        if self.cancelled:
            raise CancelledError()
        if self.run_error is not None:
            if self.error_kind == "request":
                raise RequestError(self.run_error, status_code=self.status_code)
            raise TransportError(self.run_error)
        if require_completion and self.final_output is None:
            raise IncompleteRunError()


# =============================================================================
# Serialization
# =============================================================================


def _duration_ms(value: Any, name: str) -> int:
    """Parse a millisecond duration. Negative values clamp to zero.

    Raises:
        ValueError: If the value is not a finite number.
    """
    try:
        return max(0, int(value or 0))
    except (OverflowError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid {name}: {value!r}") from e


def step_result_to_dict(result: StepResult) -> Dict[str, Any]:
    """Convert a StepResult to its camelCase wire form."""
    data: Dict[str, Any] = {
        "stepId": result.step_id,
        "stepName": result.step_name,
        "output": result.output,
        "durationMs": result.duration_ms,
        "validationPassed": result.validation_passed,
    }
    if result.error is not None:
        data["error"] = result.error
    return data


def step_result_from_dict(
    data: Dict[str, Any],
    step_id: Optional[StepId] = None,
    step_name: Optional[str] = None,
) -> StepResult:
    """Parse a StepResult from its wire form.

    Args:
        data: Dictionary with StepResult fields.
        step_id: Used when the payload carries no ``stepId``.
        step_name: Used when the payload carries no ``stepName``.

    Returns:
        Parsed StepResult. Negative durations are clamped to zero.

    Raises:
        ValueError: If no step id is available or a field has the wrong type.
    """
    resolved_id = data.get("stepId") or step_id
    if not resolved_id:
        raise ValueError("Step result is missing 'stepId'")

    output = data.get("output", "")
    if output is None:
        output = ""
    if not isinstance(output, str):
        raise ValueError(f"Step result output must be a string, got {type(output).__name__}")

    error = data.get("error")
    if error is not None and not isinstance(error, str):
        error = str(error)

    return StepResult(
        step_id=str(resolved_id),
        step_name=str(data.get("stepName") or step_name or ""),
        output=output,
        duration_ms=_duration_ms(data.get("durationMs"), "durationMs"),
        validation_passed=bool(data.get("validationPassed", False)),
        error=error,
    )


def execution_result_to_dict(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "steps": [step_result_to_dict(s) for s in result.steps],
        "finalOutput": result.final_output,
        "totalDurationMs": result.total_duration_ms,
    }


def execution_result_from_dict(data: Dict[str, Any]) -> ExecutionResult:
    """Parse an ExecutionResult from the inline endpoint's response.

    Raises:
        ValueError: If ``steps`` is not a list, ``finalOutput`` is not a
            string, or any step result is malformed.
    """
    steps = data.get("steps")
    if not isinstance(steps, list):
        raise ValueError("Execution result 'steps' must be a list")
    final_output = data.get("finalOutput")
    if not isinstance(final_output, str):
        raise ValueError("Execution result 'finalOutput' must be a string")
    parsed: List[StepResult] = []
    for entry in steps:
        if not isinstance(entry, dict):
            raise ValueError("Execution result step entries must be objects")
        parsed.append(step_result_from_dict(entry))
    return ExecutionResult(
        steps=parsed,
        final_output=final_output,
        total_duration_ms=_duration_ms(data.get("totalDurationMs"), "totalDurationMs"),
    )


def run_state_to_dict(state: RunState) -> Dict[str, Any]:
    """Convert a RunState snapshot to a JSON-friendly dictionary."""
    return {
        "statuses": {k: v.value for k, v in state.statuses.items()},
        "results": {k: step_result_to_dict(v) for k, v in state.results.items()},
        "expanded": sorted(state.expanded),
        "finalOutput": state.final_output,
        "runError": state.run_error,
        "errorKind": state.error_kind,
        "cancelled": state.cancelled,
        "statusCode": state.status_code,
    }
