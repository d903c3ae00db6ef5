"""
Typed representation of skill sources.

`ParsedSource` is a closed union: every consumer matches on the concrete
class and ends with an exhaustive branch.
"""

from dataclasses import dataclass
from typing import Literal

MANIFEST_FILENAME = "SKILL.md"


@dataclass(frozen=True)
class LocalSource:
    """A directory on the local filesystem."""

    input: str
    local_path: str
    type: Literal["local"] = "local"


@dataclass(frozen=True)
class GitHubSource:
    """A GitHub repository, optionally narrowed to a ref, subpath or sub-skill."""

    input: str
    url: str
    owner: str
    repo: str
    ref: str | None = None
    subpath: str | None = None
    skill_filter: str | None = None
    type: Literal["github"] = "github"


@dataclass(frozen=True)
class GitLabSource:
    """A GitLab repository on gitlab.com or a self-hosted instance."""

    input: str
    url: str
    hostname: str
    repo_path: str
    ref: str | None = None
    subpath: str | None = None
    type: Literal["gitlab"] = "gitlab"


@dataclass(frozen=True)
class GitSource:
    """Any other clone URL (ssh, scp-style, self-hosted)."""

    input: str
    url: str
    type: Literal["git"] = "git"


@dataclass(frozen=True)
class DirectUrlSource:
    """A URL pointing straight at a SKILL.md file."""

    input: str
    url: str
    type: Literal["direct-url"] = "direct-url"


@dataclass(frozen=True)
class WellKnownSource:
    """Any other http(s) URL."""

    input: str
    url: str
    type: Literal["well-known"] = "well-known"


ParsedSource = LocalSource | GitHubSource | GitLabSource | GitSource | DirectUrlSource | WellKnownSource

RemoteSource = GitHubSource | GitLabSource | GitSource | DirectUrlSource | WellKnownSource


@dataclass(frozen=True)
class ParsedSkillId:
    """Components recovered from a skill identifier."""

    type: Literal["github", "gitlab", "local"]
    repo_path: str
    skill_name: str | None = None
    subpath: str | None = None
    hostname: str | None = None
