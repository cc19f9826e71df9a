# agentrun/runtime package
# Runs multi-step agent pipelines and tracks their progress on the client.
#
# Core components:
#   - types: Steps, results, run state and their wire serdes
#   - sse: Line scanning, frame decoding and formatting for SSE streams
#   - reducer: Pure RunState transitions
#   - consumer: StepStreamConsumer, the client-side run driver
#   - executor: Server-side step execution against an LLM provider
#
# Usage:
#     from agentrun.runtime import StepStreamConsumer, RunMode
#     consumer = StepStreamConsumer()
#     state = await consumer.run(steps, "input text", RunMode.resolve(agent_id))

from .consumer import StepStreamConsumer
from .errors import (
    CancelledError,
    FrameParseError,
    IncompleteRunError,
    RequestError,
    RunError,
    StepError,
    TransportError,
)
from .types import (
    AgentDefinition,
    RunMode,
    RunState,
    Step,
    StepResult,
    StepStatus,
)

__all__ = [
    # Consumer
    "StepStreamConsumer",
    # Types
    "AgentDefinition",
    "RunMode",
    "RunState",
    "Step",
    "StepResult",
    "StepStatus",
    # Errors
    "RunError",
    "RequestError",
    "TransportError",
    "CancelledError",
    "IncompleteRunError",
    "FrameParseError",
    "StepError",
]
