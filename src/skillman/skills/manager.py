"""
Installation Manager -- install, list, check, update and remove skills.

On-disk model:
    <scope root>/.agents/skills/<name>/          canonical copy (owns the content)
    <scope root>/.agents/skills/<name>/.skill-source.json   remote installs only
    <agent skills dir>/<name> -> canonical       one symlink per non-universal agent

The scope root is the workspace for project scope and the home directory for
global scope. Universal agents read the canonical directory directly.

Every operation that touches a canonical directory holds that directory's
lock from SkillLocks. Every clone goes through ephemeral_clone() so the
temp checkout is released on success and on error.
"""

import dataclasses
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog

from ..config.schema import DEFAULT_FALLBACK_BRANCHES
from ..errors import InstallCancelledError, ManifestNotFoundError, SkillmanError
from ..git.fetcher import CLONE_TIMEOUT, ephemeral_clone
from ..logging.human import HumanLog
from ..sources.parser import (
    get_owner_repo,
    parse_source,
    source_clone_url,
    source_ref,
    source_subpath,
)
from ..sources.skill_id import build_skill_id, parse_skill_id
from ..sources.types import (
    MANIFEST_FILENAME,
    DirectUrlSource,
    GitHubSource,
    GitLabSource,
    GitSource,
    LocalSource,
    RemoteSource,
    WellKnownSource,
)
from .agents import (
    SUPPORTED_AGENTS,
    detect_installed_agents,
    find_agent,
    get_agent,
    get_agent_skills_dir,
    get_canonical_skills_dir,
)
from .discovery import INSTALL_SEARCH_DIRS, find_install_candidates, has_manifest
from .hashing import compute_directory_hash
from .locks import SkillLocks
from .manifest import parse_manifest, sanitize_name
from .models import (
    CANONICAL_AGENT_ID,
    InstalledVersion,
    InstallResult,
    InstallSourceMetadata,
    LocalSkillSource,
    RemoteSkillSource,
    RemoveResult,
    Scope,
    Skill,
    UpdateResult,
)
from .tracking import (
    SOURCE_METADATA_FILENAME,
    SkillSourceMetadata,
    read_source_metadata,
    refresh_remote_hash,
    write_source_metadata,
)

PACKAGING_FILES = frozenset({"metadata.json", SOURCE_METADATA_FILENAME})

CHECKED_LOCATIONS = ["root", *(f"{d}/" for d in INSTALL_SEARCH_DIRS)]


class Chooser(Protocol):
    """Asks the user to pick one option."""

    def choose(self, title: str, options: list[str]) -> int | None:
        """Return the index of the chosen option, or None if cancelled."""
        ...


class ProgressReporter(Protocol):
    def report(self, message: str) -> None:
        ...


def is_packaging_entry(path: Path) -> bool:
    """Entries never copied into a canonical directory.

    Directories named .git or starting with "_", and the metadata.json /
    tracking files.
    """
    if path.is_dir() and not path.is_symlink():
        return path.name == ".git" or path.name.startswith("_")
    return path.name in PACKAGING_FILES


def _copy_ignore(directory: str, names: list[str]) -> set[str]:
    # only real directories and regular files are copied; symlinks never are
    ignored = set()
    for name in names:
        path = Path(directory) / name
        if path.is_symlink() or not (path.is_dir() or path.is_file()) or is_packaging_entry(path):
            ignored.add(name)
    return ignored


def _remove_entry(path: Path) -> bool:
    """Delete a symlink, file or directory. Returns False if nothing was there."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


@dataclass
class _RemoteInstall:
    """What an install from a checkout needs to write tracking metadata."""

    parsed: RemoteSource
    checkout: Path
    ref: str | None = None
    remote_hash: str | None = None
    installed_at: datetime | None = None

    def metadata(self, skill_dir: Path, sub_skill: str | None, installed_hash: str) -> SkillSourceMetadata:
        rel = skill_dir.relative_to(self.checkout).as_posix()
        skill_path = MANIFEST_FILENAME if rel == "." else f"{rel}/{MANIFEST_FILENAME}"
        remote_hash = self.remote_hash or installed_hash

        match self.parsed:
            case GitHubSource() | GitLabSource():
                source_type = self.parsed.type
            case GitSource() | DirectUrlSource() | WellKnownSource():
                source_type = "git"
            case _:
                raise TypeError(f"Unsupported source: {self.parsed!r}")

        fields = dict(
            source_type=source_type,
            source_url=self.parsed.input,
            repository=self.parsed.url,
            owner_repo=get_owner_repo(self.parsed),
            skill_path=skill_path,
            skill_id=build_skill_id(self.parsed, sub_skill),
            source_ref=self.ref,
            installed_hash=installed_hash,
            last_remote_hash=remote_hash,
            skill_folder_hash=remote_hash,
        )
        if self.installed_at is not None:
            fields["installed_at"] = self.installed_at
        return SkillSourceMetadata(**fields)


class SkillManager:
    """Installs skills into a canonical store and links them into agents.

    Args:
        workspace_root: Root of the project scope
        home: Root of the global scope (default: the user's home directory)
        chooser: Picks a skill when a repository offers several. Without
            one, installing from such a repository needs a sub-skill name.
        progress: Receives short progress messages
        logger: structlog logger to bind; defaults to a module logger
        clone_timeout: Seconds per clone attempt
        fallback_branches: Branches probed when the default branch is missing
    """

    def __init__(
        self,
        workspace_root: str | Path,
        *,
        home: str | Path | None = None,
        chooser: Chooser | None = None,
        progress: ProgressReporter | None = None,
        logger=None,
        clone_timeout: int = CLONE_TIMEOUT,
        fallback_branches: list[str] | None = None,
    ):
        self.cwd = Path(os.path.abspath(workspace_root))
        self.home = Path(os.path.abspath(home)) if home is not None else Path.home()
        self.chooser = chooser
        self.progress = progress
        self.clone_timeout = clone_timeout
        self.fallback_branches = list(fallback_branches or DEFAULT_FALLBACK_BRANCHES)
        self.log = (logger or structlog.get_logger()).bind(component="skill_manager")
        self.hlog = HumanLog(self.log)
        self._locks = SkillLocks.get()

    def _report(self, message: str) -> None:
        if self.progress is not None:
            self.progress.report(message)

    def _clone(self, url: str, ref: str | None):
        return ephemeral_clone(
            url,
            ref,
            timeout=self.clone_timeout,
            fallback_branches=self.fallback_branches,
        )

    # ── Install ──────────────────────────────────────────────────────────

    def install_skill(
        self,
        source: str,
        agents: list[str],
        scope: Scope = "project",
        source_metadata: InstallSourceMetadata | None = None,
    ) -> InstallResult:
        """Install a skill from a local path or a repository.

        Args:
            source: Any source string accepted by parse_source()
            agents: Agent ids to link the skill into
            scope: "project" or "global"
            source_metadata: Optional remote hash, sub-skill name and ref

        Raises:
            GitCloneError: The repository could not be cloned
            ManifestNotFoundError: No skill was found at the resolved path
            InstallCancelledError: The user cancelled the skill choice
        """
        hints = source_metadata or InstallSourceMetadata()
        parsed = parse_source(source)
        self.log.info("skill.install.start", source=source, type=parsed.type, scope=scope, agents=agents)

        match parsed:
            case LocalSource():
                skill_id = build_skill_id(parsed)
                return self._install_from_path(
                    Path(parsed.local_path), agents, scope, hints.sub_skill, remote=None, skill_id=skill_id,
                )

            case GitHubSource() | GitLabSource() | GitSource() | DirectUrlSource() | WellKnownSource():
                url = source_clone_url(parsed)
                ref = hints.ref or source_ref(parsed)
                sub_skill = hints.sub_skill
                if sub_skill is None and isinstance(parsed, GitHubSource):
                    sub_skill = parsed.skill_filter

                self._report(f"Cloning {url}...")
                with self._clone(url, ref) as checkout:
                    skill_path = self._resolve_subpath(checkout, source_subpath(parsed))
                    remote = _RemoteInstall(parsed, checkout, ref=ref, remote_hash=hints.remote_hash)
                    return self._install_from_path(skill_path, agents, scope, sub_skill, remote=remote)

            case _:
                raise TypeError(f"Unsupported source: {parsed!r}")

    def _resolve_subpath(self, checkout: Path, subpath: str | None) -> Path:
        if not subpath:
            return checkout
        target = checkout / subpath
        if not target.resolve().is_relative_to(checkout.resolve()):
            raise SkillmanError(f"Subpath escapes the repository: {subpath}")
        return target

    def _install_from_path(
        self,
        skill_path: Path,
        agents: list[str],
        scope: Scope,
        sub_skill: str | None,
        remote: _RemoteInstall | None,
        skill_id: str | None = None,
    ) -> InstallResult:
        if not skill_path.exists():
            raise SkillmanError(f"Skill path not found: {skill_path}")

        skill_dir = self._resolve_skill_dir(skill_path, sub_skill)
        manifest = parse_manifest(skill_dir / MANIFEST_FILENAME)
        if manifest is None:
            raise SkillmanError(f"Invalid skill: {skill_dir / MANIFEST_FILENAME} needs a name and a description")

        name = sanitize_name(manifest.name)
        canonical = get_canonical_skills_dir(scope, self.cwd, self.home) / name
        chosen = manifest.name if skill_dir != skill_path else sub_skill

        with self._locks.hold(canonical):
            self._report(f"Installing {manifest.name}...")
            self._replace_canonical(skill_dir, canonical)

            if remote is not None:
                installed_hash = compute_directory_hash(canonical)
                metadata = remote.metadata(skill_dir, chosen, installed_hash)
                write_source_metadata(canonical, metadata)
                skill_id = metadata.skill_id

            linked, warnings = self._link_agents(canonical, name, agents, scope)

        self.hlog.installed(manifest.name, str(canonical))
        self.log.info("skill.install.done", name=name, path=str(canonical), linked=linked, warnings=len(warnings))
        return InstallResult(
            skill_name=manifest.name,
            canonical_dir=canonical,
            linked_agents=linked,
            warnings=warnings,
            skill_id=skill_id,
        )

    def _resolve_skill_dir(self, skill_path: Path, sub_skill: str | None) -> Path:
        """Pick the directory to install from a path that may hold several skills."""
        if has_manifest(skill_path):
            return skill_path

        self._report("Discovering skills...")
        candidates = find_install_candidates(skill_path)
        self.hlog.discovered(len(candidates))
        if not candidates:
            raise ManifestNotFoundError(str(skill_path), CHECKED_LOCATIONS)

        if sub_skill:
            for candidate in candidates:
                if sub_skill in (candidate.name, candidate.path.name):
                    return candidate.path
            available = ", ".join(c.name for c in candidates)
            raise SkillmanError(f"Skill '{sub_skill}' not found in {skill_path} (available: {available})")

        if len(candidates) == 1:
            return candidates[0].path

        if self.chooser is None:
            available = ", ".join(c.name for c in candidates)
            raise SkillmanError(
                f"{skill_path} contains multiple skills ({available}); choose one with owner/repo@name"
            )

        options = [f"{c.name} ({c.path.relative_to(skill_path).as_posix()})" for c in candidates]
        index = self.chooser.choose(
            "This repository contains multiple skills. Select one to install:", options,
        )
        if index is None:
            self.log.info("skill.install.cancelled", path=str(skill_path))
            raise InstallCancelledError()
        return candidates[index].path

    def _replace_canonical(self, source_dir: Path, canonical: Path) -> None:
        """Copy source_dir to a staging sibling, then swap it in place of canonical.

        Agent symlinks point at the canonical path, so they stay valid.
        """
        canonical.parent.mkdir(parents=True, exist_ok=True)
        staging = canonical.parent / f".{canonical.name}.staging-{uuid.uuid4().hex[:8]}"
        try:
            shutil.copytree(source_dir, staging, ignore=_copy_ignore)
            _remove_entry(canonical)
            staging.rename(canonical)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)
        self.log.debug("skill.canonical.written", path=str(canonical), source=str(source_dir))

    def _link_agents(
        self, canonical: Path, name: str, agents: list[str], scope: Scope,
    ) -> tuple[list[str], list[str]]:
        linked: list[str] = []
        warnings: list[str] = []

        for agent_id in agents:
            agent = find_agent(agent_id)
            if agent is None:
                warnings.append(f"Unknown agent: {agent_id}")
                self.log.warning("skill.install.unknown_agent", agent=agent_id)
                continue
            if agent.universal:
                continue

            agent_dir = get_agent_skills_dir(agent_id, scope, self.cwd, self.home)
            link = agent_dir / name
            if os.path.abspath(link) == os.path.abspath(canonical):
                continue

            try:
                agent_dir.mkdir(parents=True, exist_ok=True)
                _remove_entry(link)
                link.symlink_to(canonical, target_is_directory=True)
            except OSError as e:
                warnings.append(f"Failed to create symlink for {agent.display_name}: {e}")
                self.hlog.link_failed(agent_id, str(e))
                self.log.warning("skill.install.link_failed", agent=agent_id, path=str(link), error=str(e))
                continue

            linked.append(agent_id)
            self.hlog.linked(agent_id)
            self.log.debug("skill.install.linked", agent=agent_id, path=str(link))

        return linked, warnings

    # ── List ─────────────────────────────────────────────────────────────

    def list_installed_skills(
        self,
        global_scope: bool | None = None,
        agent_filter: list[str] | None = None,
    ) -> list[Skill]:
        """List installed skills, one record per scope and skill name.

        Args:
            global_scope: True = global only, False = project only, None = both
            agent_filter: Agents whose directories are scanned
                (default: the agents detected on this machine)
        """
        scopes: list[Scope]
        if global_scope is None:
            scopes = ["project", "global"]
        else:
            scopes = ["global" if global_scope else "project"]

        skills: dict[str, Skill] = {}
        for scope in scopes:
            canonical_dir = get_canonical_skills_dir(scope, self.cwd, self.home)
            self._scan_directory(canonical_dir, scope, CANONICAL_AGENT_ID, skills)

        agents_to_check = agent_filter if agent_filter is not None else detect_installed_agents(self.home, self.cwd)
        for agent_id in agents_to_check:
            agent = find_agent(agent_id)
            if agent is None or agent.universal:
                continue
            for scope in scopes:
                agent_dir = get_agent_skills_dir(agent_id, scope, self.cwd, self.home)
                self._scan_directory(agent_dir, scope, agent_id, skills)

        return list(skills.values())

    def _scan_directory(self, directory: Path, scope: Scope, agent_id: str, skills: dict[str, Skill]) -> None:
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return

        for entry in entries:
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            manifest = parse_manifest(entry / MANIFEST_FILENAME)
            if manifest is None:
                continue

            key = f"{scope}:{manifest.name}"
            method = "copy" if agent_id != CANONICAL_AGENT_ID and not entry.is_symlink() else "symlink"
            version = InstalledVersion(agent=agent_id, scope=scope, path=entry, install_method=method)

            existing = skills.get(key)
            if existing is not None:
                if not any(v.agent == agent_id and v.scope == scope for v in existing.installed_versions):
                    existing.installed_versions.append(version)
                continue

            tracking = read_source_metadata(entry)
            manifest_path = entry / MANIFEST_FILENAME
            if tracking is not None:
                source = RemoteSkillSource(manifest_path=manifest_path, local_path=entry, tracking=tracking)
            else:
                source = LocalSkillSource(manifest_path=manifest_path, local_path=entry)

            skills[key] = Skill(
                id=entry.name,
                name=manifest.name,
                description=manifest.description,
                source=source,
                installed_versions=[version],
                has_update=_tracked_update(tracking),
            )

    # ── Updates ──────────────────────────────────────────────────────────

    def _locate_tracked_skill(self, checkout: Path, tracking: SkillSourceMetadata) -> Path:
        skill_dir = self._resolve_subpath(checkout, tracking.skill_dir) if tracking.skill_dir else checkout
        if not has_manifest(skill_dir):
            raise ManifestNotFoundError(str(skill_dir), [tracking.skill_path])
        return skill_dir

    def check_updates(self, skills: list[Skill]) -> list[Skill]:
        """Re-hash each tracked skill's remote and flag the ones that changed.

        A skill whose remote cannot be cloned or no longer contains the
        tracked path is reported without an update; the batch continues.
        The refreshed remote hash is persisted either way.
        """
        checked = []
        for skill in skills:
            if not isinstance(skill.source, RemoteSkillSource):
                checked.append(dataclasses.replace(skill, has_update=False))
                continue

            tracking = skill.source.tracking
            try:
                with self._clone(tracking.repository, tracking.source_ref) as checkout:
                    skill_dir = self._locate_tracked_skill(checkout, tracking)
                    latest = compute_directory_hash(skill_dir, ignore=is_packaging_entry)
            except (SkillmanError, OSError) as e:
                self.hlog.update_undeterminable(skill.name, str(e).splitlines()[0] if str(e) else type(e).__name__)
                self.log.warning("skill.update.undeterminable", name=skill.name, error=str(e))
                checked.append(dataclasses.replace(skill, has_update=False))
                continue

            local_dir = skill.source.local_path
            baseline = tracking.installed_hash or compute_directory_hash(local_dir)
            refreshed = refresh_remote_hash(tracking, latest)
            with self._locks.hold(local_dir):
                write_source_metadata(local_dir, refreshed)

            has_update = latest != baseline
            if has_update:
                self.hlog.update_available(skill.name)
            else:
                self.hlog.up_to_date(skill.name)
            self.log.info("skill.update.checked", name=skill.name, has_update=has_update, latest=latest)

            checked.append(dataclasses.replace(
                skill,
                source=dataclasses.replace(skill.source, tracking=refreshed),
                has_update=has_update,
                latest_version=latest,
            ))
        return checked

    def update_skill(self, skill: Skill, agents: list[str] | None = None) -> UpdateResult:
        """Reinstall a tracked skill if its remote content changed.

        The skill keeps its scope and agents; `agents` adds more. When the
        remote hash equals the installed hash nothing on disk is touched.

        Raises:
            SkillmanError: The skill has no remote tracking metadata
            GitCloneError: The repository could not be cloned
        """
        if not isinstance(skill.source, RemoteSkillSource):
            raise SkillmanError(f"{skill.name} was not installed from a remote source")

        tracking = skill.source.tracking
        previous = tracking.installed_hash or compute_directory_hash(skill.source.local_path)
        target_agents = list(dict.fromkeys([*skill.agents, *(agents or [])]))

        parsed = parse_source(tracking.source_url)
        match parsed:
            case LocalSource():
                raise SkillmanError(f"{skill.name} is tracked with a local source: {tracking.source_url}")
            case GitHubSource() | GitLabSource() | GitSource() | DirectUrlSource() | WellKnownSource():
                pass
            case _:
                raise TypeError(f"Unsupported source: {parsed!r}")

        with self._clone(tracking.repository, tracking.source_ref) as checkout:
            skill_dir = self._locate_tracked_skill(checkout, tracking)
            latest = compute_directory_hash(skill_dir, ignore=is_packaging_entry)

            if latest == previous:
                self.hlog.up_to_date(skill.name)
                self.log.info("skill.update.none", name=skill.name, hash=latest)
                return UpdateResult(skill_name=skill.name, updated=False, previous_hash=previous, latest_hash=latest)

            remote = _RemoteInstall(
                parsed,
                checkout,
                ref=tracking.source_ref,
                remote_hash=latest,
                installed_at=tracking.installed_at,
            )
            tracked_id = parse_skill_id(tracking.skill_id) if tracking.skill_id else None
            sub_skill = tracked_id.skill_name if tracked_id else None
            install = self._install_from_path(skill_dir, target_agents, skill.scope, sub_skill, remote=remote)

        self.hlog.updated(skill.name)
        self.log.info("skill.update.done", name=skill.name, previous=previous, latest=latest)
        return UpdateResult(
            skill_name=skill.name,
            updated=True,
            previous_hash=previous,
            latest_hash=latest,
            install=install,
        )

    # ── Remove ───────────────────────────────────────────────────────────

    def remove_skill(self, skill_id: str, agents: list[str], scope: Scope = "project") -> RemoveResult:
        """Remove a skill from some or all agents.

        Agent links are removed first. The canonical directory is removed
        only when no agent outside `agents` still uses it, or when every
        known agent is targeted. An empty `agents` list targets every agent.

        Raises:
            UnknownAgentError: An agent id is not in the registry.
        """
        name = sanitize_name(skill_id)
        all_ids = [agent.id for agent in SUPPORTED_AGENTS]
        targets = list(agents) if agents else all_ids
        for agent_id in targets:
            get_agent(agent_id)

        canonical = get_canonical_skills_dir(scope, self.cwd, self.home) / name
        removed: list[str] = []

        with self._locks.hold(canonical):
            for agent_id in targets:
                if get_agent(agent_id).universal:
                    continue
                link = get_agent_skills_dir(agent_id, scope, self.cwd, self.home) / name
                if _remove_entry(link):
                    removed.append(agent_id)
                    self.log.debug("skill.remove.unlinked", agent=agent_id, path=str(link))

            removing_all = set(all_ids) <= set(targets)
            if not removing_all and self._still_used(canonical, name, set(targets), scope):
                self.hlog.removed(name, canonical_removed=False)
                self.log.info("skill.remove.canonical_preserved", name=name, path=str(canonical))
                return RemoveResult(skill_name=name, removed_agents=removed, canonical_removed=False)

            canonical_removed = _remove_entry(canonical)

        self.hlog.removed(name, canonical_removed=canonical_removed)
        self.log.info("skill.remove.done", name=name, agents=removed, canonical_removed=canonical_removed)
        return RemoveResult(skill_name=name, removed_agents=removed, canonical_removed=canonical_removed)

    def _still_used(self, canonical: Path, name: str, targets: set[str], scope: Scope) -> bool:
        """Whether an agent outside `targets` still reads the canonical directory.

        Universal agents always count. Other agents count only through a
        symlink that resolves to the canonical path; broken links, foreign
        links and independent copies do not.
        """
        if not canonical.exists():
            return False

        canonical_real = os.path.realpath(canonical)
        for agent in SUPPORTED_AGENTS:
            if agent.id in targets:
                continue
            if agent.universal:
                return True
            link = get_agent_skills_dir(agent.id, scope, self.cwd, self.home) / name
            if link.is_symlink() and os.path.realpath(link) == canonical_real:
                return True
        return False


def _tracked_update(tracking: SkillSourceMetadata | None) -> bool:
    if tracking is None:
        return False
    if not tracking.installed_hash or not tracking.last_remote_hash:
        return False
    return tracking.installed_hash != tracking.last_remote_hash
