"""
SKILL.md parsing and skill name sanitizing.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from ..sources.types import MANIFEST_FILENAME

logger = structlog.get_logger(component="manifest")

UNNAMED_SKILL = "unnamed-skill"
MAX_NAME_LENGTH = 255

_FRONTMATTER = re.compile(r"^---[ \t]*\n(.*?)\n---[ \t]*(?:\n(.*))?$", re.DOTALL)


@dataclass
class SkillManifest:
    """Header metadata of a SKILL.md plus its body."""

    name: str
    description: str
    path: Path  # directory holding the SKILL.md
    body: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


def parse_manifest(path: str | Path) -> SkillManifest | None:
    """Parse the YAML front matter of a SKILL.md.

    Args:
        path: The SKILL.md file, or the directory that contains it

    Returns:
        The manifest, or None when the file is missing, the header does not
        parse, or name/description are absent or not strings.
    """
    path = Path(path)
    if path.is_dir():
        path = path / MANIFEST_FILENAME

    try:
        content = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("manifest.read_error", path=str(path), error=str(e))
        return None

    match = _FRONTMATTER.match(content.replace("\r\n", "\n"))
    if match is None:
        return None

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError:
        logger.debug("manifest.invalid_header", path=str(path))
        return None

    if not isinstance(meta, dict):
        return None

    name = meta.get("name")
    description = meta.get("description")
    if not isinstance(name, str) or not isinstance(description, str):
        return None
    if not name or not description:
        return None

    return SkillManifest(
        name=name,
        description=description,
        path=path.parent,
        body=match.group(2) or "",
        metadata=meta,
    )


def sanitize_name(name: str) -> str:
    """Turn a skill name into a safe directory name.

    Example:
        >>> sanitize_name("My Cool Skill!")
        'my-cool-skill'
        >>> sanitize_name("../..")
        'unnamed-skill'
    """
    cleaned = re.sub(r"[^a-z0-9._]+", "-", name.lower())
    cleaned = re.sub(r"^[.\-]+|[.\-]+$", "", cleaned)
    return cleaned[:MAX_NAME_LENGTH] or UNNAMED_SKILL
