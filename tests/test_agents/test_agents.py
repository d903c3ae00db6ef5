"""
Tests for the agent registry and skill directory resolution.
"""

from pathlib import Path

import pytest

from skillman.errors import UnknownAgentError
from skillman.skills.agents import (
    detect_installed_agents,
    find_agent,
    get_agent,
    get_agent_skills_dir,
    get_canonical_skills_dir,
    get_non_universal_agents,
    get_supported_agents,
    get_universal_agents,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("XDG_CONFIG_HOME", "CODEX_HOME", "CLAUDE_CONFIG_DIR"):
        monkeypatch.delenv(var, raising=False)


class TestRegistry:
    def test_ids_unique(self):
        ids = [a.id for a in get_supported_agents()]
        assert len(ids) == len(set(ids))

    def test_universal_split(self):
        universal = set(get_universal_agents())
        others = set(get_non_universal_agents())
        assert "codex" in universal
        assert "claude-code" in others
        assert not universal & others
        assert universal | others == {a.id for a in get_supported_agents()}

    def test_universal_agents_use_canonical_project_path(self):
        for agent_id in get_universal_agents():
            assert get_agent(agent_id).project_path == ".agents/skills"

    def test_unknown_agent(self):
        with pytest.raises(UnknownAgentError) as exc_info:
            get_agent("nope")
        assert exc_info.value.agent_id == "nope"
        assert find_agent("nope") is None


class TestDirectories:
    def test_canonical_dirs(self, tmp_path: Path):
        home = tmp_path / "home"
        assert get_canonical_skills_dir("project", tmp_path, home) == tmp_path / ".agents" / "skills"
        assert get_canonical_skills_dir("global", tmp_path, home) == home / ".agents" / "skills"

    def test_project_dir(self, tmp_path: Path):
        assert get_agent_skills_dir("claude-code", "project", tmp_path) == tmp_path / ".claude" / "skills"

    def test_universal_resolves_to_canonical(self, tmp_path: Path):
        home = tmp_path / "home"
        for scope in ("project", "global"):
            assert get_agent_skills_dir("codex", scope, tmp_path, home) == get_canonical_skills_dir(scope, tmp_path, home)

    def test_global_dir(self, tmp_path: Path):
        home = tmp_path / "home"
        assert get_agent_skills_dir("claude-code", "global", tmp_path, home) == home / ".claude" / "skills"

    def test_global_dir_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(tmp_path / "claude-conf"))
        assert get_agent_skills_dir("claude-code", "global", tmp_path, tmp_path / "home") == tmp_path / "claude-conf" / "skills"

    def test_global_dir_prefers_existing_candidate(self, tmp_path: Path):
        home = tmp_path / "home"
        (home / ".clawdbot").mkdir(parents=True)
        assert get_agent_skills_dir("openclaw", "global", tmp_path, home) == home / ".clawdbot" / "skills"

    def test_global_dir_defaults_to_first_candidate(self, tmp_path: Path):
        home = tmp_path / "home"
        assert get_agent_skills_dir("openclaw", "global", tmp_path, home) == home / ".openclaw" / "skills"


class TestDetection:
    def test_nothing_installed(self, tmp_path: Path):
        detected = detect_installed_agents(tmp_path / "home", tmp_path / "project")
        assert "claude-code" not in detected
        assert "continue" not in detected

    def test_detects_marker_dirs(self, tmp_path: Path):
        home = tmp_path / "home"
        (home / ".claude").mkdir(parents=True)
        (home / ".cursor").mkdir()
        detected = detect_installed_agents(home, tmp_path / "project")
        assert "claude-code" in detected
        assert "cursor" in detected
        assert "windsurf" not in detected

    def test_detects_project_markers(self, tmp_path: Path):
        project = tmp_path / "project"
        (project / ".continue").mkdir(parents=True)
        assert "continue" in detect_installed_agents(tmp_path / "home", project)
