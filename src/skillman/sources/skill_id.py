"""
Skill identifiers -- stable, printable keys derived from a ParsedSource.

    github/<owner>/<repo>[/<subpath>][@<name>]
    gitlab/<host>/<repo_path>[/-/<subpath>][@<name>]
    local/<path with separators replaced by _>
    git/<host>/<path>
    direct-url/<b64>, well-known/<b64>

GitLab repository paths can be nested, so the subpath is introduced by a
"-" segment (the same marker GitLab uses in its own URLs). Subpaths are
percent-quoted, so a literal "@" in a folder name never reads as the
skill-name separator. github and gitlab identifiers round-trip through
parse_skill_id.
"""

import base64
import re
from urllib.parse import quote, unquote, urlparse

from .types import (
    DirectUrlSource,
    GitHubSource,
    GitLabSource,
    GitSource,
    LocalSource,
    ParsedSkillId,
    ParsedSource,
    WellKnownSource,
)

SUBPATH_MARKER = "-"
_OPAQUE_ID_LENGTH = 16


def build_skill_id(parsed: ParsedSource, skill_name: str | None = None) -> str:
    """Build the identifier for a parsed source.

    Args:
        parsed: Source as returned by parse_source
        skill_name: Sub-skill to pin; for GitHub falls back to the @filter
            given in the source string
    """
    match parsed:
        case GitHubSource():
            skill_id = f"github/{parsed.owner}/{parsed.repo}"
            if parsed.subpath:
                skill_id += f"/{_quote_subpath(parsed.subpath)}"
            name = skill_name or parsed.skill_filter
            if name:
                skill_id += f"@{name}"
            return skill_id

        case GitLabSource():
            skill_id = f"gitlab/{parsed.hostname}/{parsed.repo_path}"
            if parsed.subpath:
                skill_id += f"/{SUBPATH_MARKER}/{_quote_subpath(parsed.subpath)}"
            if skill_name:
                skill_id += f"@{skill_name}"
            return skill_id

        case LocalSource():
            return "local/" + re.sub(r"[/\\]", "_", parsed.local_path)

        case DirectUrlSource():
            return f"direct-url/{_opaque_id(parsed.url)}"

        case WellKnownSource():
            return f"well-known/{_opaque_id(parsed.url)}"

        case GitSource():
            url = urlparse(parsed.url)
            if url.scheme and url.hostname:
                path = url.path
                if path.endswith(".git"):
                    path = path[:-4]
                return f"git/{url.hostname}/{path.lstrip('/')}"
            return f"git/{_opaque_id(parsed.url)}"

        case _:
            raise TypeError(f"Unsupported source: {parsed!r}")


def _quote_subpath(subpath: str) -> str:
    return quote(subpath, safe="/")


def _opaque_id(url: str) -> str:
    # URL-safe alphabet keeps the id to a single path segment
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")[:_OPAQUE_ID_LENGTH]


def parse_skill_id(skill_id: str) -> ParsedSkillId | None:
    """Recover the components of a github, gitlab or local identifier.

    Returns None for empty or malformed ids and for kinds that carry no
    recoverable structure (git, direct-url, well-known).
    """
    if not skill_id or "/" not in skill_id:
        return None

    kind, rest = skill_id.split("/", 1)

    if kind == "local":
        return ParsedSkillId(type="local", repo_path=rest)

    if kind not in ("github", "gitlab"):
        return None

    # subpaths are quoted, so the first "@" starts the skill name
    rest, separator, skill_name = rest.partition("@")
    if separator and (not skill_name or "/" in skill_name):
        return None
    skill_name = skill_name or None

    if kind == "github":
        parts = rest.split("/")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            return None
        subpath = unquote("/".join(parts[2:])) or None
        return ParsedSkillId(
            type="github",
            repo_path=f"{parts[0]}/{parts[1]}",
            skill_name=skill_name,
            subpath=subpath,
        )

    hostname, _, remainder = rest.partition("/")
    parts = remainder.split("/") if remainder else []
    subpath = None
    if SUBPATH_MARKER in parts:
        marker = parts.index(SUBPATH_MARKER)
        subpath = unquote("/".join(parts[marker + 1:])) or None
        parts = parts[:marker]
    # the hostname counts toward the two-segment minimum: gitlab/<host>/<repo>
    if not hostname or not parts or not all(parts):
        return None
    return ParsedSkillId(
        type="gitlab",
        repo_path="/".join(parts),
        skill_name=skill_name,
        subpath=subpath,
        hostname=hostname,
    )


def build_repository_url_from_skill_id(skill_id: str) -> str | None:
    """Rebuild a clone URL from a github or gitlab identifier.

    Example:
        >>> build_repository_url_from_skill_id("github/anthropics/skills@pdf")
        'https://github.com/anthropics/skills.git'
    """
    parsed = parse_skill_id(skill_id)
    if parsed is None:
        return None

    if parsed.type == "github":
        return f"https://github.com/{parsed.repo_path}.git"
    if parsed.type == "gitlab":
        return f"https://{parsed.hostname}/{parsed.repo_path}.git"
    return None
