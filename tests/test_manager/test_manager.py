"""
Tests for SkillManager: install, list, check, update and remove.

Remote sources never reach git: ephemeral_clone is patched with a fake that
yields a prepared directory standing in for the checkout.
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import structlog

from skillman.errors import (
    GitCloneError,
    InstallCancelledError,
    ManifestNotFoundError,
    SkillmanError,
    UnknownAgentError,
)
from skillman.skills import (
    InstallSourceMetadata,
    LocalSkillSource,
    RemoteSkillSource,
    SkillManager,
    compute_directory_hash,
    read_source_metadata,
)
from skillman.skills.agents import get_agent
from skillman.skills.locks import SkillLocks


def write_skill(directory: Path, name: str, body: str = "Instructions.") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "SKILL.md").write_text(f"---\nname: {name}\ndescription: The {name} skill\n---\n\n{body}\n")
    return directory


class FakeClone:
    """Replaces ephemeral_clone; yields `repo` and records each request."""

    def __init__(self, repo: Path, error: Exception | None = None):
        self.repo = repo
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    @contextmanager
    def __call__(self, url, ref=None, **kwargs):
        self.calls.append((url, ref))
        if self.error is not None:
            raise self.error
        yield self.repo


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("XDG_CONFIG_HOME", "CODEX_HOME", "CLAUDE_CONFIG_DIR"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def manager(workspace: Path, home: Path) -> SkillManager:
    return SkillManager(workspace, home=home)


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "remote"
    write_skill(repo / "skills" / "pdf", "pdf")
    (repo / "skills" / "pdf" / "reference.md").write_text("v1")
    return repo


def canonical(workspace: Path, name: str) -> Path:
    return workspace / ".agents" / "skills" / name


# ── Tests: install from local paths ──────────────────────────────────


class TestLocalInstall:
    def test_install_root_skill(self, manager: SkillManager, workspace: Path, tmp_path: Path):
        source = write_skill(tmp_path / "src", "My Skill")
        result = manager.install_skill(str(source), ["claude-code"])

        target = canonical(workspace, "my-skill")
        assert result.skill_name == "My Skill"
        assert result.canonical_dir == target
        assert (target / "SKILL.md").exists()
        assert not (target / ".skill-source.json").exists()
        assert result.linked_agents == ["claude-code"]
        assert result.skill_id.startswith("local/")

        link = workspace / ".claude" / "skills" / "my-skill"
        assert link.is_symlink()
        assert os.path.realpath(link) == os.path.realpath(target)

    def test_universal_agents_need_no_link(self, manager: SkillManager, workspace: Path, tmp_path: Path):
        source = write_skill(tmp_path / "src", "solo")
        result = manager.install_skill(str(source), ["codex", "cursor"])
        assert result.linked_agents == []
        assert result.warnings == []
        assert canonical(workspace, "solo").is_dir()

    def test_single_candidate_installed_without_prompt(self, workspace: Path, home: Path, tmp_path: Path):
        chooser = MagicMock()
        manager = SkillManager(workspace, home=home, chooser=chooser)
        write_skill(tmp_path / "repo" / "skills" / "only", "only")

        result = manager.install_skill(str(tmp_path / "repo"), [])
        assert result.skill_name == "only"
        chooser.choose.assert_not_called()

    def test_chooser_picks_among_several(self, workspace: Path, home: Path, tmp_path: Path):
        chooser = MagicMock()
        chooser.choose.return_value = 1
        manager = SkillManager(workspace, home=home, chooser=chooser)
        write_skill(tmp_path / "repo" / "skills" / "beta", "beta")
        write_skill(tmp_path / "repo" / "skills" / "alpha", "alpha")

        result = manager.install_skill(str(tmp_path / "repo"), [])
        assert result.skill_name == "beta"
        options = chooser.choose.call_args[0][1]
        assert options[0].startswith("alpha")

    def test_cancelled_choice_writes_nothing(self, workspace: Path, home: Path, tmp_path: Path):
        chooser = MagicMock()
        chooser.choose.return_value = None
        manager = SkillManager(workspace, home=home, chooser=chooser)
        write_skill(tmp_path / "repo" / "skills" / "a", "a")
        write_skill(tmp_path / "repo" / "skills" / "b", "b")

        with pytest.raises(InstallCancelledError):
            manager.install_skill(str(tmp_path / "repo"), ["claude-code"])
        assert not (workspace / ".agents").exists()
        assert not (workspace / ".claude").exists()

    def test_several_without_chooser(self, manager: SkillManager, tmp_path: Path):
        write_skill(tmp_path / "repo" / "skills" / "a", "a")
        write_skill(tmp_path / "repo" / "skills" / "b", "b")
        with pytest.raises(SkillmanError, match="multiple skills"):
            manager.install_skill(str(tmp_path / "repo"), [])

    def test_sub_skill_hint(self, manager: SkillManager, tmp_path: Path):
        write_skill(tmp_path / "repo" / "skills" / "a", "a")
        write_skill(tmp_path / "repo" / "skills" / "b", "b")
        result = manager.install_skill(str(tmp_path / "repo"), [], source_metadata=InstallSourceMetadata(sub_skill="b"))
        assert result.skill_name == "b"

    def test_unknown_sub_skill(self, manager: SkillManager, tmp_path: Path):
        write_skill(tmp_path / "repo" / "skills" / "a", "a")
        with pytest.raises(SkillmanError, match="not found"):
            manager.install_skill(str(tmp_path / "repo"), [], source_metadata=InstallSourceMetadata(sub_skill="zzz"))

    def test_no_manifest_anywhere(self, manager: SkillManager, tmp_path: Path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(ManifestNotFoundError):
            manager.install_skill(str(tmp_path / "empty"), [])

    def test_missing_path(self, manager: SkillManager, tmp_path: Path):
        with pytest.raises(SkillmanError, match="not found"):
            manager.install_skill(str(tmp_path / "nowhere"), [])

    def test_invalid_manifest(self, manager: SkillManager, tmp_path: Path):
        (tmp_path / "bad").mkdir()
        (tmp_path / "bad" / "SKILL.md").write_text("---\nname: x\n---\n")
        with pytest.raises(SkillmanError, match="Invalid skill"):
            manager.install_skill(str(tmp_path / "bad"), [])

    def test_unknown_agent_is_a_warning(self, manager: SkillManager, tmp_path: Path):
        source = write_skill(tmp_path / "src", "warn")
        result = manager.install_skill(str(source), ["claude-code", "no-such-agent"])
        assert result.linked_agents == ["claude-code"]
        assert any("no-such-agent" in w for w in result.warnings)

    def test_reinstall_drops_stale_files(self, manager: SkillManager, workspace: Path, tmp_path: Path):
        source = write_skill(tmp_path / "src", "stale")
        (source / "old.txt").write_text("old")
        manager.install_skill(str(source), ["claude-code"])
        (source / "old.txt").unlink()
        manager.install_skill(str(source), ["claude-code"])

        target = canonical(workspace, "stale")
        assert not (target / "old.txt").exists()
        assert not any(p.name.startswith(".stale.staging") for p in target.parent.iterdir())

    def test_global_scope(self, manager: SkillManager, home: Path, workspace: Path, tmp_path: Path):
        source = write_skill(tmp_path / "src", "g")
        result = manager.install_skill(str(source), ["claude-code"], scope="global")
        assert result.canonical_dir == home / ".agents" / "skills" / "g"
        assert (home / ".claude" / "skills" / "g").is_symlink()
        assert not (workspace / ".agents").exists()

    def test_progress_reported(self, workspace: Path, home: Path, tmp_path: Path):
        progress = MagicMock()
        manager = SkillManager(workspace, home=home, progress=progress)
        manager.install_skill(str(write_skill(tmp_path / "src", "p")), [])
        messages = [c.args[0] for c in progress.report.call_args_list]
        assert any("Installing" in m for m in messages)


# ── Tests: install from remote sources ───────────────────────────────


class TestRemoteInstall:
    def test_tracking_written(self, manager: SkillManager, workspace: Path, remote_repo: Path):
        fake = FakeClone(remote_repo)
        with patch("skillman.skills.manager.ephemeral_clone", fake):
            result = manager.install_skill("owner/repo", ["claude-code"])

        assert fake.calls == [("https://github.com/owner/repo.git", None)]
        target = canonical(workspace, "pdf")
        tracking = read_source_metadata(target)
        assert tracking is not None
        assert tracking.source_type == "github"
        assert tracking.source_url == "owner/repo"
        assert tracking.owner_repo == "owner/repo"
        assert tracking.skill_path == "skills/pdf/SKILL.md"
        assert tracking.skill_id == "github/owner/repo@pdf"
        assert tracking.installed_hash == compute_directory_hash(target)
        assert tracking.last_remote_hash == tracking.installed_hash
        assert result.skill_id == "github/owner/repo@pdf"

        raw = json.loads((target / ".skill-source.json").read_text())
        assert raw["sourceType"] == "github"

    def test_subpath_and_ref(self, manager: SkillManager, workspace: Path, remote_repo: Path):
        fake = FakeClone(remote_repo)
        with patch("skillman.skills.manager.ephemeral_clone", fake):
            manager.install_skill("https://github.com/owner/repo/tree/dev/skills/pdf", [])

        assert fake.calls == [("https://github.com/owner/repo.git", "dev")]
        tracking = read_source_metadata(canonical(workspace, "pdf"))
        assert tracking.source_ref == "dev"
        assert tracking.skill_id == "github/owner/repo/skills/pdf"

    def test_subpath_cannot_escape(self, manager: SkillManager, remote_repo: Path):
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            with pytest.raises(SkillmanError, match="escapes"):
                manager.install_skill("https://github.com/owner/repo/tree/main/../../etc", [])

    def test_packaging_files_not_copied(self, manager: SkillManager, workspace: Path, remote_repo: Path):
        skill = remote_repo / "skills" / "pdf"
        (skill / "metadata.json").write_text("{}")
        (skill / "_internal").mkdir()
        (skill / "_internal" / "notes").write_text("x")
        (skill / ".git").mkdir()

        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            manager.install_skill("owner/repo", [])

        target = canonical(workspace, "pdf")
        assert (target / "reference.md").exists()
        assert not (target / "metadata.json").exists()
        assert not (target / "_internal").exists()
        assert not (target / ".git").exists()

    def test_symlinks_in_skill_are_not_copied(self, manager: SkillManager, workspace: Path, remote_repo: Path, tmp_path: Path):
        skill = remote_repo / "skills" / "pdf"
        (skill / "broken-link").symlink_to(tmp_path / "missing")
        (skill / "alias.md").symlink_to(skill / "reference.md")

        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            manager.install_skill("owner/repo", ["claude-code"])

        target = canonical(workspace, "pdf")
        assert (target / "reference.md").read_text() == "v1"
        assert not os.path.lexists(target / "broken-link")
        assert not os.path.lexists(target / "alias.md")
        tracking = read_source_metadata(target)
        assert tracking.installed_hash == compute_directory_hash(skill)

    def test_install_without_logging_setup(self, workspace: Path, home: Path, remote_repo: Path):
        structlog.reset_defaults()
        manager = SkillManager(workspace, home=home)
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            result = manager.install_skill("owner/repo", ["claude-code"])
        assert result.linked_agents == ["claude-code"]
        assert (canonical(workspace, "pdf") / "SKILL.md").exists()

    def test_gitlab_source_type(self, manager: SkillManager, workspace: Path, remote_repo: Path):
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            manager.install_skill("gitlab.com/group/sub/repo", [])
        tracking = read_source_metadata(canonical(workspace, "pdf"))
        assert tracking.source_type == "gitlab"
        assert tracking.skill_id == "gitlab/gitlab.com/group/sub/repo@pdf"

    def test_clone_failure_propagates(self, manager: SkillManager, workspace: Path, remote_repo: Path):
        error = GitCloneError("boom", "https://github.com/owner/repo.git", is_auth_error=True)
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo, error)):
            with pytest.raises(GitCloneError):
                manager.install_skill("owner/repo", [])
        assert not (workspace / ".agents").exists()


# ── Tests: listing ───────────────────────────────────────────────────


class TestListing:
    def test_lists_local_and_remote(self, manager: SkillManager, remote_repo: Path, tmp_path: Path):
        manager.install_skill(str(write_skill(tmp_path / "src", "local-one")), ["claude-code"])
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            manager.install_skill("owner/repo", [])

        skills = {s.name: s for s in manager.list_installed_skills(agent_filter=["claude-code"])}
        assert set(skills) == {"local-one", "pdf"}
        assert isinstance(skills["local-one"].source, LocalSkillSource)
        assert isinstance(skills["pdf"].source, RemoteSkillSource)
        assert skills["local-one"].agents == ["claude-code"]
        assert [v.agent for v in skills["local-one"].installed_versions] == ["universal", "claude-code"]
        assert all(v.install_method == "symlink" for v in skills["local-one"].installed_versions)
        assert not skills["pdf"].has_update

    def test_copied_agent_dir(self, manager: SkillManager, workspace: Path):
        write_skill(workspace / ".claude" / "skills" / "hand", "hand")
        skills = manager.list_installed_skills(global_scope=False, agent_filter=["claude-code"])
        assert len(skills) == 1
        assert skills[0].installed_versions[0].install_method == "copy"

    def test_scope_filter(self, manager: SkillManager, tmp_path: Path):
        manager.install_skill(str(write_skill(tmp_path / "src", "global-one")), [], scope="global")
        assert manager.list_installed_skills(global_scope=False, agent_filter=[]) == []
        skills = manager.list_installed_skills(global_scope=True, agent_filter=[])
        assert [s.scope for s in skills] == ["global"]

    def test_staging_and_hidden_dirs_skipped(self, manager: SkillManager, workspace: Path):
        write_skill(workspace / ".agents" / "skills" / ".x.staging-1234", "x")
        assert manager.list_installed_skills(agent_filter=[]) == []


# ── Tests: update checks and updates ─────────────────────────────────


class TestUpdates:
    @pytest.fixture
    def installed(self, manager: SkillManager, remote_repo: Path):
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            manager.install_skill("owner/repo", ["claude-code"])
        return manager.list_installed_skills(agent_filter=["claude-code"])[0]

    def test_no_update(self, manager: SkillManager, installed, remote_repo: Path):
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            [checked] = manager.check_updates([installed])
        assert not checked.has_update

    def test_update_detected_and_persisted(self, manager: SkillManager, installed, remote_repo: Path, workspace: Path):
        (remote_repo / "skills" / "pdf" / "reference.md").write_text("v2")
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            [checked] = manager.check_updates([installed])

        assert checked.has_update
        assert checked.latest_version == compute_directory_hash(remote_repo / "skills" / "pdf")
        tracking = read_source_metadata(canonical(workspace, "pdf"))
        assert tracking.last_remote_hash == checked.latest_version
        assert tracking.installed_hash != tracking.last_remote_hash

        relisted = manager.list_installed_skills(agent_filter=["claude-code"])[0]
        assert relisted.has_update

    def test_unreachable_remote_is_not_fatal(self, manager: SkillManager, installed, remote_repo: Path):
        error = GitCloneError("offline", "https://github.com/owner/repo.git")
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo, error)):
            [checked] = manager.check_updates([installed])
        assert not checked.has_update

    def test_local_skills_never_have_updates(self, manager: SkillManager, tmp_path: Path):
        manager.install_skill(str(write_skill(tmp_path / "src", "loc")), [])
        skills = manager.list_installed_skills(agent_filter=[])
        fake = FakeClone(tmp_path)
        with patch("skillman.skills.manager.ephemeral_clone", fake):
            [checked] = manager.check_updates(skills)
        assert not checked.has_update
        assert fake.calls == []

    def test_update_noop_touches_nothing(self, manager: SkillManager, installed, remote_repo: Path, workspace: Path):
        manifest = canonical(workspace, "pdf") / "SKILL.md"
        tracking_file = canonical(workspace, "pdf") / ".skill-source.json"
        before = (manifest.stat().st_mtime_ns, tracking_file.stat().st_mtime_ns)

        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            result = manager.update_skill(installed)

        assert not result.updated
        assert result.previous_hash == result.latest_hash
        assert (manifest.stat().st_mtime_ns, tracking_file.stat().st_mtime_ns) == before

    def test_update_reinstalls(self, manager: SkillManager, installed, remote_repo: Path, workspace: Path):
        (remote_repo / "skills" / "pdf" / "reference.md").write_text("v2")
        original_installed_at = installed.source.tracking.installed_at

        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(remote_repo)):
            result = manager.update_skill(installed, ["windsurf"])

        target = canonical(workspace, "pdf")
        assert result.updated
        assert (target / "reference.md").read_text() == "v2"
        assert sorted(result.install.linked_agents) == ["claude-code", "windsurf"]
        assert (workspace / ".claude" / "skills" / "pdf" / "reference.md").read_text() == "v2"

        tracking = read_source_metadata(target)
        assert tracking.installed_hash == tracking.last_remote_hash
        assert tracking.skill_id == "github/owner/repo@pdf"
        assert tracking.installed_at == original_installed_at

    def test_update_local_skill_rejected(self, manager: SkillManager, tmp_path: Path):
        manager.install_skill(str(write_skill(tmp_path / "src", "loc")), [])
        [skill] = manager.list_installed_skills(agent_filter=[])
        with pytest.raises(SkillmanError):
            manager.update_skill(skill)

    def test_removed_upstream(self, manager: SkillManager, installed, tmp_path: Path):
        moved = tmp_path / "moved"
        write_skill(moved / "elsewhere", "pdf")
        with patch("skillman.skills.manager.ephemeral_clone", FakeClone(moved)):
            with pytest.raises(ManifestNotFoundError):
                manager.update_skill(installed)


# ── Tests: removal ───────────────────────────────────────────────────


class TestRemove:
    @pytest.fixture
    def shared(self, manager: SkillManager, tmp_path: Path) -> str:
        manager.install_skill(str(write_skill(tmp_path / "src", "shared")), ["claude-code", "windsurf"])
        return "shared"

    def test_partial_removal_keeps_canonical(self, manager: SkillManager, shared: str, workspace: Path):
        result = manager.remove_skill(shared, ["claude-code"])

        assert result.removed_agents == ["claude-code"]
        assert not result.canonical_removed
        assert not (workspace / ".claude" / "skills" / shared).exists()
        assert (workspace / ".windsurf" / "skills" / shared).is_symlink()
        assert canonical(workspace, shared).is_dir()

    def test_remove_from_all(self, manager: SkillManager, shared: str, workspace: Path):
        result = manager.remove_skill(shared, [])

        assert result.canonical_removed
        assert sorted(result.removed_agents) == ["claude-code", "windsurf"]
        assert not canonical(workspace, shared).exists()
        assert not (workspace / ".windsurf" / "skills" / shared).exists()

    def test_unknown_agent_removes_nothing(self, manager: SkillManager, shared: str, workspace: Path):
        with pytest.raises(UnknownAgentError):
            manager.remove_skill(shared, ["claude-code", "ghost"])
        assert (workspace / ".claude" / "skills" / shared).is_symlink()

    def test_foreign_link_does_not_keep_canonical(self, manager: SkillManager, workspace: Path, home: Path, tmp_path: Path):
        with patch("skillman.skills.manager.SUPPORTED_AGENTS", [get_agent("claude-code"), get_agent("windsurf")]):
            manager.install_skill(str(write_skill(tmp_path / "src", "solo")), ["claude-code"])
            elsewhere = write_skill(tmp_path / "other", "solo")
            (workspace / ".windsurf" / "skills").mkdir(parents=True)
            (workspace / ".windsurf" / "skills" / "solo").symlink_to(elsewhere, target_is_directory=True)

            result = manager.remove_skill("solo", ["claude-code"])

        assert result.canonical_removed
        assert not canonical(workspace, "solo").exists()

    def test_missing_skill(self, manager: SkillManager):
        result = manager.remove_skill("ghost", [])
        assert result.removed_agents == []
        assert not result.canonical_removed


# ── Tests: per-skill locks ───────────────────────────────────────────


class TestSkillLocks:
    def test_symlinked_workspace_shares_lock(self, tmp_path: Path):
        real = tmp_path / "real"
        (real / ".agents" / "skills" / "pdf").mkdir(parents=True)
        alias = tmp_path / "alias"
        alias.symlink_to(real, target_is_directory=True)

        locks = SkillLocks()
        direct = locks.lock_for(real / ".agents" / "skills" / "pdf")
        assert locks.lock_for(alias / ".agents" / "skills" / "pdf") is direct
        assert locks.lock_for(str(real / ".agents" / "skills" / "." / "pdf")) is direct

    def test_different_skills_have_different_locks(self, tmp_path: Path):
        locks = SkillLocks()
        assert locks.lock_for(tmp_path / "a") is not locks.lock_for(tmp_path / "b")
