"""
Source parser -- turns free-form skill source strings into a ParsedSource.

Supported formats:
- GitHub shorthand: owner/repo, owner/repo/path/to/skill, owner/repo@skill-name
- GitHub URL: https://github.com/owner/repo[.git][/tree/<ref>[/<path>]]
- GitLab shorthand: gitlab.com/owner/repo, gitlab.com/group/subgroup/repo
- GitLab URL (gitlab.com or self-hosted): https://<host>/<path>[/-/tree/<ref>[/<path>]]
- Local path: /abs/path, ./rel, ../rel, ., .., C:\\path
- Direct manifest URL: https://example.com/path/SKILL.md
- Any other http(s) URL (well-known), anything else (generic git URL)

The grammar has no reject state: unrecognized input becomes a GitSource.
"""

import ntpath
import os
import re
from urllib.parse import urlparse

from .types import (
    MANIFEST_FILENAME,
    DirectUrlSource,
    GitHubSource,
    GitLabSource,
    GitSource,
    LocalSource,
    ParsedSource,
    WellKnownSource,
)

# Shorthands that moved to a canonical repository
SOURCE_ALIASES: dict[str, str] = {
    "coinbase/agentWallet": "coinbase/agentic-wallet-skills",
}

WELL_KNOWN_EXCLUDED_HOSTS = frozenset({
    "github.com",
    "gitlab.com",
    "huggingface.co",
    "raw.githubusercontent.com",
})

_MANIFEST_SUFFIX = "/" + MANIFEST_FILENAME.lower()
_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:[/\\]")

_GITHUB_TREE_WITH_PATH = re.compile(r"github\.com/([^/]+)/([^/]+)/tree/([^/]+)/(.+)")
_GITHUB_TREE = re.compile(r"github\.com/([^/]+)/([^/]+)/tree/([^/]+)$")
_GITHUB_REPO = re.compile(r"github\.com/([^/]+)/([^/]+)")

_SHORT_AT_SKILL = re.compile(r"^([^/]+)/([^/@]+)@(.+)$")
_SHORT_WITH_PATH = re.compile(r"^([^/]+)/([^/]+)/(.+)$")
_SHORT_BASIC = re.compile(r"^([^/]+)/([^/]+)$")

_GITLAB_TREE_WITH_PATH = re.compile(r"^(https?)://([^/]+)/(.+?)/-/tree/([^/]+)/(.+)")
_GITLAB_TREE = re.compile(r"^(https?)://([^/]+)/(.+?)/-/tree/([^/]+)$")
_GITLAB_REPO = re.compile(r"^(https?)://([^/]+)/(.+)$")
_GITLAB_SHORT = re.compile(r"^gitlab\.com/(.+?)(?:\.git)?/?$")

_OWNER_REPO = re.compile(r"^([^/]+)/([^/]+)$")


def parse_source(input: str) -> ParsedSource:
    """Parse a source string. Never raises.

    The first matching rule wins; later rules are broader and would shadow
    the more specific ones.
    """
    trimmed = input.strip()
    value = SOURCE_ALIASES.get(trimmed, trimmed)

    if _is_local_path(value):
        return _parse_local_path(value)

    if _is_direct_manifest_url(value):
        return DirectUrlSource(input=value, url=value)

    for rule in (_parse_github_url, _parse_github_short, _parse_gitlab_url, _parse_gitlab_short):
        parsed = rule(value)
        if parsed is not None:
            return parsed

    if _is_well_known_url(value):
        return WellKnownSource(input=value, url=value)

    return GitSource(input=value, url=value)


def _is_local_path(value: str) -> bool:
    return (
        os.path.isabs(value)
        or value.startswith("./")
        or value.startswith("../")
        or value in (".", "..")
        or bool(_DRIVE_LETTER.match(value))
    )


def _parse_local_path(value: str) -> LocalSource:
    if _DRIVE_LETTER.match(value) and os.name != "nt":
        resolved = ntpath.normpath(value)
    else:
        resolved = os.path.abspath(value)
    return LocalSource(input=value, local_path=resolved)


def _is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def _is_direct_manifest_url(value: str) -> bool:
    if not _is_http_url(value):
        return False
    if not value.lower().endswith(_MANIFEST_SUFFIX):
        return False

    # Repository browsing URLs belong to the provider-specific rules
    if "github.com/" in value and "raw.githubusercontent.com" not in value:
        if "/blob/" not in value and "/raw/" not in value:
            return False
    if "gitlab.com/" in value and "/-/raw/" not in value:
        return False
    return True


def _github(value: str, owner: str, repo: str, **extra) -> GitHubSource:
    return GitHubSource(
        input=value,
        url=f"https://github.com/{owner}/{repo}.git",
        owner=owner,
        repo=repo,
        **extra,
    )


def _parse_github_url(value: str) -> GitHubSource | None:
    if match := _GITHUB_TREE_WITH_PATH.search(value):
        owner, repo, ref, subpath = match.groups()
        return _github(value, owner, repo, ref=ref, subpath=subpath)

    if match := _GITHUB_TREE.search(value):
        owner, repo, ref = match.groups()
        return _github(value, owner, repo, ref=ref)

    if match := _GITHUB_REPO.search(value):
        owner, repo = match.groups()
        return _github(value, owner, _strip_git_suffix(repo))

    return None


def _looks_like_path_or_scp(value: str) -> bool:
    return ":" in value or value.startswith(".") or value.startswith("/")


def _parse_github_short(value: str) -> GitHubSource | None:
    if _looks_like_path_or_scp(value):
        return None
    # GitHub owners cannot contain dots; a dotted first segment is a hostname
    if "." in value.split("/", 1)[0]:
        return None

    if match := _SHORT_AT_SKILL.match(value):
        owner, repo, skill_filter = match.groups()
        return _github(value, owner, repo, skill_filter=skill_filter)

    if match := _SHORT_WITH_PATH.match(value):
        owner, repo, subpath = match.groups()
        return _github(value, owner, repo, subpath=subpath)

    if match := _SHORT_BASIC.match(value):
        owner, repo = match.groups()
        return _github(value, owner, repo)

    return None


def _gitlab(value: str, protocol: str, hostname: str, repo_path: str, **extra) -> GitLabSource:
    clean_path = _strip_git_suffix(repo_path)
    return GitLabSource(
        input=value,
        url=f"{protocol}://{hostname}/{clean_path}.git",
        hostname=hostname,
        repo_path=clean_path,
        **extra,
    )


def _parse_gitlab_url(value: str) -> GitLabSource | None:
    if match := _GITLAB_TREE_WITH_PATH.match(value):
        protocol, hostname, repo_path, ref, subpath = match.groups()
        if hostname == "github.com":
            return None
        return _gitlab(value, protocol, hostname, repo_path, ref=ref, subpath=subpath)

    if match := _GITLAB_TREE.match(value):
        protocol, hostname, repo_path, ref = match.groups()
        if hostname == "github.com":
            return None
        return _gitlab(value, protocol, hostname, repo_path, ref=ref)

    if match := _GITLAB_REPO.match(value):
        protocol, hostname, repo_path = match.groups()
        if hostname == "github.com":
            return None
        if hostname == "gitlab.com" or "/" in repo_path:
            return _gitlab(value, protocol, hostname, repo_path)

    return None


def _parse_gitlab_short(value: str) -> GitLabSource | None:
    if _looks_like_path_or_scp(value):
        return None

    match = _GITLAB_SHORT.match(value)
    if match is None:
        return None
    repo_path = match.group(1)
    # Needs at least owner/repo
    if "/" not in repo_path:
        return None
    return GitLabSource(
        input=value,
        url=f"https://gitlab.com/{repo_path}.git",
        hostname="gitlab.com",
        repo_path=repo_path,
    )


def _is_well_known_url(value: str) -> bool:
    if not _is_http_url(value):
        return False

    hostname = urlparse(value).hostname
    if not hostname or hostname in WELL_KNOWN_EXCLUDED_HOSTS:
        return False
    if value.lower().endswith(_MANIFEST_SUFFIX):
        return False
    if value.endswith(".git"):
        return False
    return True


def _strip_git_suffix(value: str) -> str:
    return value[:-4] if value.endswith(".git") else value


def normalize_repository_url(input: str) -> str:
    """Project any source string to a single clone URL or local path.

    owner/repo -> https://github.com/owner/repo.git
    gitlab.com/owner/repo -> https://gitlab.com/owner/repo.git
    /path/to/repo -> /path/to/repo
    """
    parsed = parse_source(input)
    match parsed:
        case LocalSource():
            return parsed.local_path
        case GitHubSource() | GitLabSource() | GitSource() | DirectUrlSource() | WellKnownSource():
            return parsed.url
        case _:
            return input


def get_owner_repo(parsed: ParsedSource) -> str | None:
    """Extract an owner/repo-shaped key for dedup and lock keys.

    Returns None for local sources and for URLs without a two-segment path.
    """
    match parsed:
        case LocalSource():
            return None
        case GitHubSource():
            return f"{parsed.owner}/{parsed.repo}"
        case GitLabSource():
            return parsed.repo_path
        case GitSource() | DirectUrlSource() | WellKnownSource():
            url = urlparse(parsed.url)
            if not url.scheme or not url.netloc:
                return None
            pathname = _strip_git_suffix(url.path).lstrip("/")
            if "/" in pathname:
                return pathname
            return None
        case _:
            return None


def parse_owner_repo(owner_repo: str) -> tuple[str, str] | None:
    """Split "owner/repo" into its parts, or None if it has another shape."""
    match = _OWNER_REPO.match(owner_repo)
    if match is None:
        return None
    return match.group(1), match.group(2)


def source_clone_url(parsed: ParsedSource) -> str | None:
    """URL to hand to git clone, or None for local sources."""
    match parsed:
        case LocalSource():
            return None
        case GitHubSource() | GitLabSource() | GitSource() | DirectUrlSource() | WellKnownSource():
            return parsed.url
        case _:
            return None


def source_ref(parsed: ParsedSource) -> str | None:
    match parsed:
        case GitHubSource() | GitLabSource():
            return parsed.ref
        case _:
            return None


def source_subpath(parsed: ParsedSource) -> str | None:
    match parsed:
        case GitHubSource() | GitLabSource():
            return parsed.subpath
        case _:
            return None
