"""Step and agent definition types.

An agent is an ordered pipeline of steps. Each step takes an input (the
user's text or a previous step's output), hands it to an LLM actor with a
system prompt, and produces an output that may be validated.

The wire format is camelCase JSON, matching what the execution service and
the editor exchange; the dataclasses use snake_case attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from ._ids import AgentId, StepId

DataType = Literal["text", "json", "table"]
InputSource = Literal["user", "previous-step"]

VALID_DATA_TYPES = ("text", "json", "table")
VALID_INPUT_SOURCES = ("user", "previous-step")


@dataclass(frozen=True)
class StepInput:
    """Where a step's input comes from.

    Attributes:
        source: "user" for the run input (or the previous step's output when
            chained), "previous-step" to read a specific earlier step.
        source_step_id: Step whose output feeds this step when source is
            "previous-step".
        description: Human-readable description of the expected input.
        data_type: Declared input shape.
    """

    source: InputSource = "user"
    source_step_id: Optional[StepId] = None
    description: str = ""
    data_type: DataType = "text"


@dataclass(frozen=True)
class StepActor:
    """LLM settings for a step."""

    system_prompt: str = ""
    max_tokens: int = 4000
    temperature: float = 0.7


@dataclass(frozen=True)
class StepOutput:
    """Declared output of a step and how it is validated.

    Attributes:
        label: Short name for the output.
        description: Human-readable description.
        data_type: "text", "json" or "table".
        validation_schema: When set on a json output, the output must parse
            as JSON.
        validation_regex: Pattern the output must match.
        fallback: Output used when validation or the LLM call fails.
    """

    label: str = "result"
    description: str = ""
    data_type: DataType = "text"
    validation_schema: Optional[Any] = None
    validation_regex: Optional[str] = None
    fallback: Optional[str] = None


@dataclass(frozen=True)
class Step:
    """One unit of an agent pipeline.

    Identity is ``id``; ids must be unique within a run's step set.
    ``order`` is 1-based.
    """

    id: StepId
    name: str
    order: int = 1
    input: StepInput = field(default_factory=StepInput)
    actor: StepActor = field(default_factory=StepActor)
    output: StepOutput = field(default_factory=StepOutput)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Step id must be a non-empty string")
        if self.order < 1:
            raise ValueError(f"Step '{self.id}' order must be >= 1, got {self.order}")


@dataclass(frozen=True)
class AgentDefinition:
    """A persisted agent: a persona plus its ordered steps."""

    agent_id: AgentId
    name: str
    description: str = ""
    persona: str = ""
    steps: Tuple[Step, ...] = ()

    def ordered_steps(self) -> List[Step]:
        """Return steps sorted by their declared order."""
        return sorted(self.steps, key=lambda s: s.order)


# =============================================================================
# Serialization
# =============================================================================


def _data_type(value: Any) -> DataType:
    return value if value in VALID_DATA_TYPES else "text"


def step_input_to_dict(step_input: StepInput) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "source": step_input.source,
        "description": step_input.description,
        "dataType": step_input.data_type,
    }
    if step_input.source_step_id is not None:
        data["sourceStepId"] = step_input.source_step_id
    return data


def step_input_from_dict(data: Dict[str, Any]) -> StepInput:
    source = data.get("source", "user")
    return StepInput(
        source=source if source in VALID_INPUT_SOURCES else "user",
        source_step_id=data.get("sourceStepId"),
        description=data.get("description", ""),
        data_type=_data_type(data.get("dataType")),
    )


def step_actor_to_dict(actor: StepActor) -> Dict[str, Any]:
    return {
        "systemPrompt": actor.system_prompt,
        "maxTokens": actor.max_tokens,
        "temperature": actor.temperature,
    }


def step_actor_from_dict(data: Dict[str, Any]) -> StepActor:
    return StepActor(
        system_prompt=data.get("systemPrompt", ""),
        max_tokens=int(data.get("maxTokens", 4000)),
        temperature=float(data.get("temperature", 0.7)),
    )


def step_output_to_dict(output: StepOutput) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "label": output.label,
        "description": output.description,
        "dataType": output.data_type,
    }
    if output.validation_schema is not None:
        data["validationSchema"] = output.validation_schema
    if output.validation_regex is not None:
        data["validationRegex"] = output.validation_regex
    if output.fallback is not None:
        data["fallback"] = output.fallback
    return data


def step_output_from_dict(data: Dict[str, Any]) -> StepOutput:
    return StepOutput(
        label=data.get("label", "result"),
        description=data.get("description", ""),
        data_type=_data_type(data.get("dataType")),
        validation_schema=data.get("validationSchema"),
        validation_regex=data.get("validationRegex") or None,
        fallback=data.get("fallback") or None,
    )


def step_to_dict(step: Step) -> Dict[str, Any]:
    """Convert a Step to its wire (StepDefinition) form.

    Args:
        step: The Step to convert.

    Returns:
        Dictionary with id, name, order, input, actor and output.
    """
    return {
        "id": step.id,
        "name": step.name,
        "order": step.order,
        "input": step_input_to_dict(step.input),
        "actor": step_actor_to_dict(step.actor),
        "output": step_output_to_dict(step.output),
    }


def step_from_dict(data: Dict[str, Any]) -> Step:
    """Parse a Step from its wire form.

    Missing input/actor/output blocks take their defaults.

    Args:
        data: Dictionary with at least ``id`` and ``name``.

    Returns:
        Parsed Step.

    Raises:
        ValueError: If the id is missing or the order is not a positive int.
    """
    return Step(
        id=str(data.get("id") or ""),
        name=data.get("name", ""),
        order=int(data.get("order", 1)),
        input=step_input_from_dict(data.get("input") or {}),
        actor=step_actor_from_dict(data.get("actor") or {}),
        output=step_output_from_dict(data.get("output") or {}),
    )


def agent_definition_to_dict(agent: AgentDefinition) -> Dict[str, Any]:
    return {
        "agentId": agent.agent_id,
        "name": agent.name,
        "description": agent.description,
        "persona": agent.persona,
        "steps": [step_to_dict(s) for s in agent.steps],
    }


def agent_definition_from_dict(data: Dict[str, Any]) -> AgentDefinition:
    """Parse an AgentDefinition from its wire form.

    Raises:
        ValueError: If agentId is missing or a step is invalid.
    """
    agent_id = data.get("agentId")
    if not agent_id:
        raise ValueError("Agent definition is missing 'agentId'")
    return AgentDefinition(
        agent_id=str(agent_id),
        name=data.get("name", ""),
        description=data.get("description", ""),
        persona=data.get("persona", ""),
        steps=tuple(step_from_dict(s) for s in data.get("steps") or []),
    )
