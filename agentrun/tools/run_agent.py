#!/usr/bin/env python3
"""
run_agent.py - Run an agent from the command line and watch its steps.

Persisted agents stream their progress from the execution service; agents
loaded from a local YAML file run inline (all results at once).

Usage:
    # Stream a persisted agent
    python -m agentrun.tools.run_agent --agent-id agent-memo-writer --input "Q3 planning"

    # Run a local definition inline, reading input from stdin
    echo "Q3 planning" | python -m agentrun.tools.run_agent --agent-file memo.yaml

    # Print the terminal RunState as JSON
    python -m agentrun.tools.run_agent --agent-id agent-memo-writer --input "..." --json

Exit codes:
    0   run completed
    1   run failed (request or transport error)
    2   usage error or agent not found
    3   stream ended without a final output
    130 cancelled (Ctrl-C or timeout)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO

import httpx

from agentrun.config.agent_registry import AgentRegistryError, load_agent_file
from agentrun.config.runtime_config import get_base_url, get_run_timeout
from agentrun.runtime.consumer import StepStreamConsumer, decode_error_message
from agentrun.runtime.types import (
    AgentDefinition,
    RunMode,
    RunState,
    Step,
    StepStatus,
    agent_definition_from_dict,
    run_state_to_dict,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INCOMPLETE = 3
EXIT_CANCELLED = 130


class StateRenderer:
    """Prints one line per step transition between successive snapshots."""

    def __init__(self, steps: Sequence[Step], out: TextIO = sys.stdout):
        self._names: Dict[str, str] = {step.id: step.name or step.id for step in steps}
        self._out = out
        self._last: Optional[RunState] = None

    def __call__(self, state: RunState) -> None:
        previous = self._last
        self._last = state
        for step_id, status in state.statuses.items():
            if previous is not None and previous.statuses.get(step_id) is status:
                continue
            if previous is None and status is StepStatus.PENDING:
                continue
            self._out.write(self._describe(step_id, status, state) + "\n")
        self._out.flush()

    def _describe(self, step_id: str, status: StepStatus, state: RunState) -> str:
        name = self._names.get(step_id, step_id)
        result = state.results.get(step_id)
        if status is StepStatus.COMPLETE and result is not None:
            return f"[complete] {name} ({result.duration_ms} ms)"
        if status is StepStatus.ERROR and result is not None:
            return f"[error] {name}: {result.error}"
        return f"[{status.value}] {name}"


async def fetch_agent(client: httpx.AsyncClient, base_url: str, agent_id: str) -> AgentDefinition:
    """Load a persisted agent's definition from the execution service.

    Raises:
        LookupError: If the service does not know the agent or rejects the call.
    """
    response = await client.get(f"{base_url}/api/agents/{agent_id}")
    if not response.is_success:
        raise LookupError(decode_error_message(response.content))
    return agent_definition_from_dict(response.json())


def _read_input(args: argparse.Namespace) -> str:
    if args.input is not None:
        return args.input
    if args.input_file is not None:
        return Path(args.input_file).read_text(encoding="utf-8")
    if not sys.stdin.isatty():
        return sys.stdin.read()
    return ""


def exit_code_for(state: Optional[RunState]) -> int:
    if state is None:
        return EXIT_USAGE
    if state.cancelled:
        return EXIT_CANCELLED
    if state.run_error is not None:
        return EXIT_FAILED
    if state.final_output is None:
        return EXIT_INCOMPLETE
    return EXIT_OK


async def run_agent(args: argparse.Namespace, out: TextIO = sys.stdout) -> int:
    """Resolve the agent, run it, and print progress. Returns an exit code."""
    text = _read_input(args)
    if not text.strip():
        print("error: input is empty", file=sys.stderr)
        return EXIT_USAGE

    base_url = (args.base_url or get_base_url()).rstrip("/")
    timeout = args.timeout if args.timeout is not None else get_run_timeout()

    async with httpx.AsyncClient(timeout=httpx.Timeout(None)) as client:
        if args.agent_file is not None:
            try:
                agent = load_agent_file(Path(args.agent_file))
            except AgentRegistryError as e:
                print(f"error: {e}", file=sys.stderr)
                return EXIT_USAGE
            # A local file runs inline unless the caller names a persisted agent.
            mode = RunMode.resolve(args.agent_id, agent.persona)
        else:
            try:
                agent = await fetch_agent(client, base_url, args.agent_id)
            except (LookupError, ValueError, httpx.HTTPError) as e:
                print(f"error: cannot load agent '{args.agent_id}': {e}", file=sys.stderr)
                return EXIT_USAGE
            mode = RunMode.resolve(agent.agent_id, agent.persona)

        steps: List[Step] = agent.ordered_steps()
        renderer = StateRenderer(steps, out=out)
        consumer = StepStreamConsumer(base_url=base_url, client=client, timeout=timeout, on_update=renderer)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, consumer.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable; Ctrl-C will not cancel cleanly")

        try:
            state = await consumer.run(steps, text, mode)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    if state is None:
        print("error: agent has no steps", file=sys.stderr)
        return EXIT_USAGE

    if args.json:
        out.write(json.dumps(run_state_to_dict(state), indent=2) + "\n")
    elif state.cancelled:
        out.write("Cancelled.\n")
    elif state.run_error is not None:
        out.write(f"Run failed: {state.run_error}\n")
    elif state.final_output is not None:
        out.write("\n" + state.final_output + "\n")
    else:
        out.write("Stream ended without a final output.\n")

    return exit_code_for(state)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run an agent and print step progress.",
    )
    source = parser.add_argument_group("agent")
    source.add_argument("--agent-id", help="Persisted agent to stream")
    source.add_argument("--agent-file", help="Local agent YAML file (runs inline)")
    parser.add_argument("--input", help="Run input (default: --input-file or stdin)")
    parser.add_argument("--input-file", help="Read run input from a file")
    parser.add_argument("--base-url", help="Execution service base URL")
    parser.add_argument("--timeout", type=float, default=None, help="Cancel the run after N seconds (0 disables)")
    parser.add_argument("--json", action="store_true", help="Print the final run state as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.agent_id and not args.agent_file:
        parser.error("one of --agent-id or --agent-file is required")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    return asyncio.run(run_agent(args))


if __name__ == "__main__":
    sys.exit(main())
