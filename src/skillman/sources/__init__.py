"""
Skill source parsing and identifiers.
"""

from .parser import (
    get_owner_repo,
    normalize_repository_url,
    parse_owner_repo,
    parse_source,
    source_clone_url,
    source_ref,
    source_subpath,
)
from .skill_id import build_repository_url_from_skill_id, build_skill_id, parse_skill_id
from .types import (
    MANIFEST_FILENAME,
    DirectUrlSource,
    GitHubSource,
    GitLabSource,
    GitSource,
    LocalSource,
    ParsedSkillId,
    ParsedSource,
    RemoteSource,
    WellKnownSource,
)

__all__ = [
    "MANIFEST_FILENAME",
    "DirectUrlSource",
    "GitHubSource",
    "GitLabSource",
    "GitSource",
    "LocalSource",
    "ParsedSkillId",
    "ParsedSource",
    "RemoteSource",
    "WellKnownSource",
    "build_repository_url_from_skill_id",
    "build_skill_id",
    "get_owner_repo",
    "normalize_repository_url",
    "parse_owner_repo",
    "parse_skill_id",
    "parse_source",
    "source_clone_url",
    "source_ref",
    "source_subpath",
]
