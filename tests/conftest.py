"""
Test fixtures for agentrun.

Provides configuration isolation, step fixtures, an httpx client factory
over a mock transport, and a FastAPI app wired to the stub provider.
Frame and byte-stream builders live in frames.py beside this file.
"""

import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

# Make the repo root and this directory importable regardless of rootdir
_tests_dir = Path(__file__).parent
_repo_root = _tests_dir.parent
if str(_tests_dir) not in sys.path:
    sys.path.insert(0, str(_tests_dir))
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from agentrun.config import runtime_config  # noqa: E402
from agentrun.config.agent_registry import AgentRegistry  # noqa: E402
from agentrun.runtime.providers import StubProvider  # noqa: E402
from agentrun.runtime.types import AgentDefinition  # noqa: E402

from frames import make_steps  # noqa: E402

_CONFIG_ENV_VARS = (
    "AGENTRUN_BASE_URL",
    "AGENTRUN_TIMEOUT_SECONDS",
    "AGENTRUN_PROVIDER",
    "AGENTRUN_MODEL",
    "AGENTRUN_AGENTS_DIR",
    "ANTHROPIC_BASE_URL",
    "ANTHROPIC_API_KEY",
)


# ============================================================================
# Configuration Isolation
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Clear agentrun environment overrides and the cached runtime.yaml."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    runtime_config.reset_config()
    yield
    runtime_config.reset_config()


# ============================================================================
# Steps
# ============================================================================


@pytest.fixture
def three_steps():
    """Steps A, B and C in order."""
    return make_steps("A", "B", "C")


@pytest.fixture
def memo_agent():
    """A persisted three-step agent."""
    return AgentDefinition(
        agent_id="agent-memo",
        name="Memo writer",
        persona="You are a concise assistant.",
        steps=tuple(make_steps("outline", "draft", "polish")),
    )


# ============================================================================
# HTTP
# ============================================================================


@pytest.fixture
def mock_client():
    """Factory for an httpx.AsyncClient whose requests go to ``handler``.

    Usage:
        client = mock_client(handler)
    """

    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def stub_provider():
    """Echoing stub provider."""
    return StubProvider()


@pytest.fixture
def app(memo_agent, stub_provider):
    """Execution service with the memo agent registered."""
    from agentrun.api.server import create_app

    registry = AgentRegistry()
    registry.save(memo_agent)
    return create_app(registry=registry, provider=stub_provider)


@pytest.fixture
def client(app):
    """FastAPI test client for the execution service."""
    return TestClient(app)
