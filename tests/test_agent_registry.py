"""Tests for agent_registry.py - in-memory agent store and YAML seeding."""

import pytest

from agentrun.config.agent_registry import (
    AgentRegistry,
    AgentRegistryError,
    load_agent_file,
)
from agentrun.runtime.types import AgentDefinition, Step

MEMO_YAML = """\
agentId: agent-memo-writer
name: Memo writer
persona: You are a concise executive assistant.
steps:
  - id: draft
    name: Draft
    order: 2
  - id: outline
    name: Outline
    order: 1
    actor:
      systemPrompt: Outline the memo.
      temperature: 0.2
"""


@pytest.fixture
def agents_dir(tmp_path):
    directory = tmp_path / "agents"
    directory.mkdir()
    (directory / "memo.yaml").write_text(MEMO_YAML)
    (directory / "review.yml").write_text("agentId: agent-review\nname: Reviewer\nsteps: []\n")
    (directory / "notes.txt").write_text("not an agent")
    return directory


class TestLoadAgentFile:
    def test_loads_definition(self, agents_dir):
        agent = load_agent_file(agents_dir / "memo.yaml")

        assert agent.agent_id == "agent-memo-writer"
        assert agent.persona == "You are a concise executive assistant."
        assert [s.id for s in agent.ordered_steps()] == ["outline", "draft"]
        assert agent.ordered_steps()[0].actor.temperature == 0.2

    @pytest.mark.parametrize(
        "content",
        ["- just\n- a list\n", "name: No id\n", "agentId: a\nsteps:\n  - name: missing id\n", "agentId: [\n"],
    )
    def test_invalid_files_raise(self, tmp_path, content):
        path = tmp_path / "bad.yaml"
        path.write_text(content)

        with pytest.raises(AgentRegistryError):
            load_agent_file(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(AgentRegistryError, match="Cannot read"):
            load_agent_file(tmp_path / "absent.yaml")


class TestAgentRegistry:
    """Tests for AgentRegistry."""

    def test_save_get_delete(self):
        registry = AgentRegistry()
        agent = AgentDefinition(agent_id="agent-1", name="One", steps=(Step(id="a", name="A"),))

        registry.save(agent)

        assert "agent-1" in registry
        assert registry.get("agent-1") is agent
        assert len(registry) == 1
        assert registry.delete("agent-1") is True
        assert registry.delete("agent-1") is False
        assert registry.get("agent-1") is None

    def test_list_sorted_by_name(self):
        registry = AgentRegistry()
        registry.save(AgentDefinition(agent_id="agent-2", name="Zed"))
        registry.save(AgentDefinition(agent_id="agent-1", name="Alpha"))

        assert [a.agent_id for a in registry.list()] == ["agent-1", "agent-2"]

    def test_load_dir(self, agents_dir):
        registry = AgentRegistry()

        assert registry.load_dir(agents_dir) == 2
        assert "agent-memo-writer" in registry
        assert "agent-review" in registry

    def test_load_dir_skips_bad_files(self, agents_dir, caplog):
        (agents_dir / "broken.yaml").write_text("name: No id\n")
        registry = AgentRegistry()

        with caplog.at_level("WARNING", logger="agentrun.config.agent_registry"):
            loaded = registry.load_dir(agents_dir)

        assert loaded == 2
        assert "Skipping agent file" in caplog.text

    def test_load_missing_dir(self, tmp_path):
        assert AgentRegistry().load_dir(tmp_path / "nowhere") == 0

    def test_app_seeded_from_configured_dir(self, agents_dir, monkeypatch):
        from fastapi.testclient import TestClient

        from agentrun.api.server import create_app
        from agentrun.runtime.providers import StubProvider

        monkeypatch.setenv("AGENTRUN_AGENTS_DIR", str(agents_dir))

        client = TestClient(create_app(provider=StubProvider()))

        ids = [a["agentId"] for a in client.get("/api/agents").json()["agents"]]
        assert ids == ["agent-memo-writer", "agent-review"]
