"""
Agent endpoints for the execution service.

Provides:
- Agent definition CRUD backed by the AgentRegistry
- Streamed execution of a persisted agent (SSE)
- Inline execution of unsaved step definitions (single JSON response)

Every error response body is ``{"error": "<message>"}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from agentrun.config.agent_registry import AgentRegistry
from agentrun.runtime.executor import AgentExecutor
from agentrun.runtime.sse import format_sse_done, format_sse_frame
from agentrun.runtime.types import (
    Step,
    agent_definition_from_dict,
    agent_definition_to_dict,
    execution_result_to_dict,
    generate_agent_id,
    step_from_dict,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["agents"])


# =============================================================================
# Request / Response Models
# =============================================================================


class ExecuteStreamRequest(BaseModel):
    """Request to execute a persisted agent."""

    input: str = Field("", description="Run input; must not be blank")


class ExecuteInlineRequest(BaseModel):
    """Request to execute unsaved step definitions."""

    persona: str = Field("", description="Persona prepended to every step's system prompt")
    steps: List[Dict[str, Any]] = Field(default_factory=list, description="Step definitions")
    input: str = Field("", description="Run input; must not be blank")


class AgentListResponse(BaseModel):
    """Response for list agents endpoint."""

    agents: List[Dict[str, Any]]


# =============================================================================
# Helpers
# =============================================================================


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def get_registry(request: Request) -> AgentRegistry:
    return request.app.state.registry


def get_executor(request: Request) -> AgentExecutor:
    return request.app.state.executor


def _duplicate_step_id(steps: Sequence[Step]) -> str:
    seen = set()
    for step in steps:
        if step.id in seen:
            return step.id
        seen.add(step.id)
    return ""


# =============================================================================
# Agent Definitions
# =============================================================================


@router.get("", response_model=AgentListResponse)
async def list_agents(request: Request):
    """List all registered agents."""
    agents = get_registry(request).list()
    return AgentListResponse(agents=[agent_definition_to_dict(a) for a in agents])


@router.get("/{agent_id}")
async def get_agent(agent_id: str, request: Request):
    """Get one agent definition."""
    agent = get_registry(request).get(agent_id)
    if agent is None:
        return error_response(404, f"Agent '{agent_id}' not found")
    return agent_definition_to_dict(agent)


@router.post("")
async def save_agent(payload: Dict[str, Any], request: Request):
    """Create or replace an agent definition.

    An ``agentId`` is generated when the payload does not carry one.
    """
    data = dict(payload)
    if not data.get("agentId"):
        data["agentId"] = generate_agent_id()
    try:
        agent = agent_definition_from_dict(data)
    except (TypeError, ValueError) as e:
        return error_response(400, f"Invalid agent definition: {e}")

    duplicate = _duplicate_step_id(agent.steps)
    if duplicate:
        return error_response(400, f"Duplicate step id '{duplicate}'")

    get_registry(request).save(agent)
    return agent_definition_to_dict(agent)


@router.delete("/{agent_id}")
async def delete_agent(agent_id: str, request: Request):
    """Delete an agent definition."""
    if not get_registry(request).delete(agent_id):
        return error_response(404, f"Agent '{agent_id}' not found")
    return {"agentId": agent_id, "deleted": True}


# =============================================================================
# Execution
# =============================================================================


@router.post("/execute-inline")
async def execute_inline(body: ExecuteInlineRequest, request: Request):
    """Execute unsaved step definitions and return every result at once.

    Returns:
        ``{"steps": [StepResult...], "finalOutput": str, "totalDurationMs": int}``
    """
    text = body.input.strip()
    if not text:
        return error_response(400, "Input is required")
    try:
        steps = [step_from_dict(s) for s in body.steps]
    except (TypeError, ValueError) as e:
        return error_response(400, f"Invalid step definition: {e}")
    if not steps:
        return error_response(400, "At least one step is required")
    duplicate = _duplicate_step_id(steps)
    if duplicate:
        return error_response(400, f"Duplicate step id '{duplicate}'")

    result = await get_executor(request).execute(steps, text, body.persona)
    return execution_result_to_dict(result)


@router.post("/{agent_id}/execute/stream")
async def execute_stream(agent_id: str, body: ExecuteStreamRequest, request: Request):
    """Execute a persisted agent, streaming one SSE frame per transition.

    Example events:
        data: {"type": "step-start", "stepId": "outline", "stepName": "Outline"}

        data: {"type": "step-complete", "stepId": "outline", "result": {...}}

        data: {"type": "execution-complete", "finalOutput": "...", "totalDurationMs": 812}

        data: [DONE]
    """
    agent = get_registry(request).get(agent_id)
    if agent is None:
        return error_response(404, f"Agent '{agent_id}' not found")
    text = body.input.strip()
    if not text:
        return error_response(400, "Input is required")
    if not agent.steps:
        return error_response(400, f"Agent '{agent_id}' has no steps")

    executor = get_executor(request)
    steps = agent.ordered_steps()

    async def event_stream():
        async for frame in executor.iter_events(steps, text, agent.persona):
            # Check if client disconnected
            if await request.is_disconnected():
                logger.debug("SSE client disconnected for agent %s", agent_id)
                return
            yield format_sse_frame(frame)
        yield format_sse_done()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
