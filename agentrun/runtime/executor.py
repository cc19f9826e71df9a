"""
executor.py - Server-side execution of agent step pipelines.

Steps run sequentially in ``order``. Each step's output feeds the next
step, unless the step reads a specific earlier step (input source
"previous-step" with a sourceStepId). Outputs are validated against the
step's declared output; a failing step with a fallback continues the run
with the fallback value, a failing step without one ends it.

The same run can be consumed two ways:

    iter_events(...)   frames for the SSE endpoint
                       step-start, step-complete | step-error, ...,
                       execution-complete
    execute(...)       one ExecutionResult for the inline endpoint
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .providers import LLMProvider
from .sse import Frame, FrameType
from .types import (
    ExecutionResult,
    Step,
    StepResult,
    step_result_to_dict,
)

logger = logging.getLogger(__name__)

OUTPUT_FORMAT_INSTRUCTIONS: Dict[str, str] = {
    "json": (
        "\nIMPORTANT: Your output MUST be valid JSON. Output ONLY the JSON, "
        "no markdown fences or explanatory text."
    ),
    "table": "\nIMPORTANT: Format your output as a structured table using markdown table syntax.",
}

DEFAULT_LLM_ERROR = "LLM call failed"


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    error: Optional[str] = None


def validate_output(output: str, step: Step) -> ValidationOutcome:
    """Check a step's output against its declared validation.

    JSON outputs with a validation schema must parse as JSON. A validation
    regex must match somewhere in the output; an invalid pattern is skipped.
    """
    spec = step.output
    if spec.validation_schema is not None and spec.data_type == "json":
        try:
            json.loads(output)
        except ValueError:
            return ValidationOutcome(False, "Output is not valid JSON")

    if spec.validation_regex:
        try:
            pattern = re.compile(spec.validation_regex)
        except re.error as e:
            logger.debug("Skipping invalid validation regex for step %s: %s", step.id, e)
        else:
            if not pattern.search(output):
                return ValidationOutcome(
                    False,
                    f"Output does not match validation pattern: {spec.validation_regex}",
                )

    return ValidationOutcome(True)


def build_system_prompt(step: Step, persona: str) -> str:
    """Persona, then the step prompt, then any output-format instruction."""
    parts: List[str] = []
    if persona:
        parts.append(persona)
    if step.actor.system_prompt:
        parts.append(step.actor.system_prompt)
    instruction = OUTPUT_FORMAT_INSTRUCTIONS.get(step.output.data_type)
    if instruction:
        parts.append(instruction)
    return "\n\n".join(parts)


_Event = Tuple[str, Union[Step, StepResult]]


class AgentExecutor:
    """Executes agent steps against an LLM provider."""

    def __init__(self, provider: LLMProvider, clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self._clock = clock

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    async def execute_step(self, step: Step, step_input: str, persona: str) -> StepResult:
        """Run one step and validate its output.

        Provider failures do not raise: they become a failed StepResult
        carrying the fallback value (or an empty output).
        """
        started = self._clock()
        system = build_system_prompt(step, persona)

        try:
            reply = await self.provider.generate(
                system,
                [{"role": "user", "content": step_input}],
                max_tokens=step.actor.max_tokens,
                temperature=step.actor.temperature,
            )
        except Exception as e:
            logger.warning("Step %s: LLM call failed: %s", step.id, e)
            return StepResult(
                step_id=step.id,
                step_name=step.name,
                output=step.output.fallback or "",
                duration_ms=self._elapsed_ms(started),
                validation_passed=False,
                error=str(e) or DEFAULT_LLM_ERROR,
            )

        output = reply.strip()
        duration_ms = self._elapsed_ms(started)
        validation = validate_output(output, step)

        if not validation.valid and step.output.fallback:
            logger.info("Step %s failed validation; using fallback", step.id)
            return StepResult(
                step_id=step.id,
                step_name=step.name,
                output=step.output.fallback,
                duration_ms=duration_ms,
                validation_passed=False,
                error=f"{validation.error}. Using fallback value.",
            )

        return StepResult(
            step_id=step.id,
            step_name=step.name,
            output=output,
            duration_ms=duration_ms,
            validation_passed=validation.valid,
            error=validation.error,
        )

    async def _run(
        self,
        steps: Sequence[Step],
        initial_input: str,
        persona: str,
    ) -> AsyncIterator[_Event]:
        results: List[StepResult] = []
        current_input = initial_input

        for step in sorted(steps, key=lambda s: s.order):
            step_input = current_input
            if step.input.source == "previous-step" and step.input.source_step_id:
                source = next((r for r in results if r.step_id == step.input.source_step_id), None)
                if source is not None:
                    step_input = source.output

            yield "start", step
            result = await self.execute_step(step, step_input, persona)
            results.append(result)
            yield "result", result

            if not result.validation_passed and not step.output.fallback:
                logger.info("Stopping run after step %s failed without fallback", step.id)
                break

            current_input = result.output

    async def iter_events(
        self,
        steps: Sequence[Step],
        initial_input: str,
        persona: str = "",
    ) -> AsyncIterator[Frame]:
        """Run the steps, yielding one frame per transition.

        Yields:
            step-start before each step; step-complete when its validation
            passed, step-error (with ``error``) otherwise; a final
            execution-complete carrying the last step's output.
        """
        started = self._clock()
        final_output = ""
        async for kind, item in self._run(steps, initial_input, persona):
            if kind == "start":
                yield {"type": FrameType.STEP_START, "stepId": item.id, "stepName": item.name}
                continue
            final_output = item.output
            if item.validation_passed:
                yield {
                    "type": FrameType.STEP_COMPLETE,
                    "stepId": item.step_id,
                    "result": step_result_to_dict(item),
                }
            else:
                yield {
                    "type": FrameType.STEP_ERROR,
                    "stepId": item.step_id,
                    "result": step_result_to_dict(item),
                    "error": item.error or DEFAULT_LLM_ERROR,
                }

        yield {
            "type": FrameType.EXECUTION_COMPLETE,
            "finalOutput": final_output,
            "totalDurationMs": self._elapsed_ms(started),
        }

    async def execute(
        self,
        steps: Sequence[Step],
        initial_input: str,
        persona: str = "",
    ) -> ExecutionResult:
        """Run the steps and return every result at once."""
        started = self._clock()
        results: List[StepResult] = []
        async for kind, item in self._run(steps, initial_input, persona):
            if kind == "result":
                results.append(item)
        return ExecutionResult(
            steps=results,
            final_output=results[-1].output if results else "",
            total_duration_ms=self._elapsed_ms(started),
        )
