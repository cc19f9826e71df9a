"""
Core type definitions for agent runs.

Usage:
    from agentrun.runtime.types import (
        Step, StepInput, StepActor, StepOutput, AgentDefinition,
        StepStatus, StepResult, ExecutionResult, RunMode, RunState,
        step_to_dict, step_from_dict,
        step_result_to_dict, step_result_from_dict,
        execution_result_to_dict, execution_result_from_dict,
        agent_definition_to_dict, agent_definition_from_dict,
        run_state_to_dict, generate_agent_id,
    )
"""

from __future__ import annotations

from ._ids import AgentId, StepId, generate_agent_id
from .runs import (
    ErrorKind,
    ExecutionResult,
    RunMode,
    RunState,
    StepResult,
    StepStatus,
    execution_result_from_dict,
    execution_result_to_dict,
    run_state_to_dict,
    step_result_from_dict,
    step_result_to_dict,
)
from .steps import (
    AgentDefinition,
    DataType,
    InputSource,
    Step,
    StepActor,
    StepInput,
    StepOutput,
    agent_definition_from_dict,
    agent_definition_to_dict,
    step_from_dict,
    step_to_dict,
)

__all__ = [
    # IDs
    "AgentId",
    "StepId",
    "generate_agent_id",
    # Steps
    "DataType",
    "InputSource",
    "StepInput",
    "StepActor",
    "StepOutput",
    "Step",
    "AgentDefinition",
    "step_to_dict",
    "step_from_dict",
    "agent_definition_to_dict",
    "agent_definition_from_dict",
    # Runs
    "ErrorKind",
    "StepStatus",
    "StepResult",
    "ExecutionResult",
    "RunMode",
    "RunState",
    "step_result_to_dict",
    "step_result_from_dict",
    "execution_result_to_dict",
    "execution_result_from_dict",
    "run_state_to_dict",
]
