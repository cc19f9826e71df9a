"""ID types and generators for the types package.

Provides agent ID generation, plus type aliases.
"""

from __future__ import annotations

import secrets
import string
import time

# Type aliases
StepId = str
AgentId = str


def generate_agent_id() -> AgentId:
    """Generate a unique agent ID.

    Creates IDs in the format: agent-<epoch-ms>-xxxxxx
    where xxxxxx is a random 6-character lowercase alphanumeric suffix.

    Returns:
        A unique agent identifier string.

    Example:
        >>> agent_id = generate_agent_id()
        >>> agent_id  # e.g., "agent-1760745600000-k3x9qa"
    """
    millis = int(time.time() * 1000)
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"agent-{millis}-{suffix}"
