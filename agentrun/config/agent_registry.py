"""
agent_registry.py - Persisted agent definitions keyed by agentId.

The streaming endpoint resolves an agent's steps and persona from here.
Definitions live in memory and can be seeded from a directory of YAML
files, one agent per file, using the same camelCase shape as the API:

    agentId: agent-memo-writer
    name: Memo writer
    persona: You are a concise executive assistant.
    steps:
      - id: outline
        name: Outline
        order: 1
        actor:
          systemPrompt: Outline the memo.
      - id: draft
        name: Draft
        order: 2

Usage:
    from agentrun.config.agent_registry import AgentRegistry

    registry = AgentRegistry()
    registry.load_dir(Path("agents"))
    agent = registry.get("agent-memo-writer")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from agentrun.runtime.types import (
    AgentDefinition,
    AgentId,
    agent_definition_from_dict,
)

logger = logging.getLogger(__name__)

_AGENT_FILE_SUFFIXES = (".yaml", ".yml")


class AgentRegistryError(Exception):
    """An agent definition file could not be loaded."""


def load_agent_file(path: Path) -> AgentDefinition:
    """Load one agent definition from a YAML file.

    Args:
        path: YAML file holding a single agent definition.

    Returns:
        Parsed AgentDefinition.

    Raises:
        AgentRegistryError: If the file is unreadable or not a valid agent.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise AgentRegistryError(f"Cannot read agent file {path}: {e}") from e

    if not isinstance(data, dict):
        raise AgentRegistryError(f"Agent file {path} must contain a mapping")
    try:
        return agent_definition_from_dict(data)
    except (TypeError, ValueError) as e:
        raise AgentRegistryError(f"Invalid agent definition in {path}: {e}") from e


class AgentRegistry:
    """In-memory store of agent definitions."""

    def __init__(self) -> None:
        self._agents: Dict[AgentId, AgentDefinition] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def list(self) -> List[AgentDefinition]:
        """All agents, sorted by name then id."""
        return sorted(self._agents.values(), key=lambda a: (a.name, a.agent_id))

    def get(self, agent_id: AgentId) -> Optional[AgentDefinition]:
        return self._agents.get(agent_id)

    def save(self, agent: AgentDefinition) -> AgentDefinition:
        """Create or replace an agent."""
        if agent.agent_id in self._agents:
            logger.info("Replacing agent %s", agent.agent_id)
        else:
            logger.info("Registering agent %s (%d steps)", agent.agent_id, len(agent.steps))
        self._agents[agent.agent_id] = agent
        return agent

    def delete(self, agent_id: AgentId) -> bool:
        """Remove an agent. Returns False if it was not registered."""
        if self._agents.pop(agent_id, None) is None:
            return False
        logger.info("Deleted agent %s", agent_id)
        return True

    def load_dir(self, directory: Path) -> int:
        """Register every agent file in a directory.

        Files that fail to load are logged and skipped.

        Args:
            directory: Directory of ``*.yaml`` / ``*.yml`` agent files.

        Returns:
            Number of agents loaded.
        """
        if not directory.is_dir():
            logger.warning("Agents directory %s does not exist", directory)
            return 0

        loaded = 0
        for path in sorted(directory.iterdir()):
            if path.suffix not in _AGENT_FILE_SUFFIXES:
                continue
            try:
                self.save(load_agent_file(path))
            except AgentRegistryError as e:
                logger.warning("Skipping agent file: %s", e)
                continue
            loaded += 1

        logger.info("Loaded %d agents from %s", loaded, directory)
        return loaded
