"""
Data types shared by the installation manager, the CLI and the marketplace.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .tracking import SkillSourceMetadata

Scope = Literal["project", "global"]
InstallMethod = Literal["symlink", "copy"]

# Agent id used for the canonical directory in listings
CANONICAL_AGENT_ID = "universal"


@dataclass
class InstalledVersion:
    """One placement of a skill: an agent, a scope and a directory."""

    agent: str
    scope: Scope
    path: Path
    install_method: InstallMethod = "symlink"


@dataclass
class LocalSkillSource:
    """A skill with no remote tracking."""

    manifest_path: Path
    local_path: Path
    type: Literal["local"] = "local"


@dataclass
class RemoteSkillSource:
    """A skill installed from a repository, with its tracking metadata."""

    manifest_path: Path
    local_path: Path
    tracking: SkillSourceMetadata
    type: Literal["remote"] = "remote"


SkillSource = LocalSkillSource | RemoteSkillSource


@dataclass
class Skill:
    """A skill as listed: one record per scope and name, however many agents use it."""

    id: str
    name: str
    description: str
    source: SkillSource
    installed_versions: list[InstalledVersion] = field(default_factory=list)
    has_update: bool = False
    latest_version: str | None = None

    @property
    def scope(self) -> Scope:
        return self.installed_versions[0].scope if self.installed_versions else "project"

    @property
    def agents(self) -> list[str]:
        return [v.agent for v in self.installed_versions if v.agent != CANONICAL_AGENT_ID]


@dataclass
class InstallSourceMetadata:
    """Hints for an install, usually taken from a marketplace search result.

    Attributes:
        remote_hash: Best known remote content hash; becomes the update baseline
        sub_skill: Name of the skill to pick in a multi-skill repository
        ref: Branch or tag to clone
    """

    remote_hash: str | None = None
    sub_skill: str | None = None
    ref: str | None = None


@dataclass
class InstallResult:
    skill_name: str
    canonical_dir: Path
    linked_agents: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skill_id: str | None = None


@dataclass
class UpdateResult:
    skill_name: str
    updated: bool
    previous_hash: str | None = None
    latest_hash: str | None = None
    install: InstallResult | None = None


@dataclass
class RemoveResult:
    skill_name: str
    removed_agents: list[str] = field(default_factory=list)
    canonical_removed: bool = False


@dataclass
class SearchResult:
    """A marketplace listing.

    `id` is unique per result: `<base id>#<skill_id>` when the listing points
    at one skill inside a multi-skill repository.
    """

    id: str
    name: str
    description: str = ""
    repository: str | None = None
    skill_id: str | None = None
    version: str | None = None
    stars: int | None = None
    installs: int | None = None
    updated_at: str | None = None
    market_name: str | None = None
    source: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"{self.id}::{self.skill_id or ''}"

    def completeness(self) -> int:
        fields = (
            self.name,
            self.description,
            self.repository,
            self.version,
            self.stars,
            self.installs,
            self.updated_at,
        )
        return sum(1 for value in fields if value)
