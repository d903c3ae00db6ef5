"""
Skill Discovery -- finds SKILL.md manifests inside a checkout or local tree.

Two searches:
- discover_skills(): the broad scan used to list what a repository offers.
  Conventional folders first, recursive fallback when they hold nothing.
- find_install_candidates(): the narrow scan used when installing from a
  path with no SKILL.md at its root.
"""

import os
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..sources.types import MANIFEST_FILENAME
from .manifest import parse_manifest

logger = structlog.get_logger(component="discovery")

PRIORITY_SEARCH_DIRS = [
    "skills",
    "skills/.curated",
    "skills/.experimental",
    "skills/.system",
    ".agent/skills",
    ".agents/skills",
    ".claude/skills",
    ".cline/skills",
    ".codebuddy/skills",
    ".codex/skills",
    ".commandcode/skills",
    ".continue/skills",
    ".github/skills",
    ".goose/skills",
    ".iflow/skills",
    ".junie/skills",
    ".kilocode/skills",
    ".kiro/skills",
    ".mux/skills",
    ".neovate/skills",
    ".opencode/skills",
    ".openhands/skills",
    ".pi/skills",
    ".qoder/skills",
    ".roo/skills",
    ".trae/skills",
    ".windsurf/skills",
    ".zencoder/skills",
]

INSTALL_SEARCH_DIRS = ["skills", ".agents/skills", ".claude/skills"]

SKIP_DIRS = frozenset({"node_modules", ".git", "dist", "build", "__pycache__"})
MAX_SEARCH_DEPTH = 5


@dataclass(frozen=True)
class DiscoveredSkill:
    """A directory holding a valid SKILL.md."""

    name: str
    description: str
    path: Path  # directory containing SKILL.md

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILENAME


def has_manifest(directory: Path) -> bool:
    return (directory / MANIFEST_FILENAME).is_file()


def _load(directory: Path) -> DiscoveredSkill | None:
    manifest = parse_manifest(directory / MANIFEST_FILENAME)
    if manifest is None:
        logger.debug("discovery.skipped", path=str(directory))
        return None
    return DiscoveredSkill(name=manifest.name, description=manifest.description, path=directory)


def _child_dirs(directory: Path) -> list[Path]:
    try:
        return sorted(entry for entry in directory.iterdir() if entry.is_dir())
    except OSError:
        return []


def _scan_children(directory: Path) -> list[DiscoveredSkill]:
    found = []
    for child in _child_dirs(directory):
        if has_manifest(child) and (skill := _load(child)) is not None:
            found.append(skill)
    return found


def _find_manifest_dirs(directory: Path, depth: int = 0) -> list[Path]:
    if depth > MAX_SEARCH_DEPTH:
        return []
    found = [directory] if has_manifest(directory) else []
    for child in _child_dirs(directory):
        if child.name in SKIP_DIRS:
            continue
        found.extend(_find_manifest_dirs(child, depth + 1))
    return found


def discover_skills(root: str | Path, subpath: str | None = None) -> list[DiscoveredSkill]:
    """Find every valid skill under a directory.

    Scans the search root itself, then the children of each conventional
    folder (PRIORITY_SEARCH_DIRS). If that finds nothing, walks the tree up
    to MAX_SEARCH_DEPTH levels, skipping SKIP_DIRS. Manifests that fail to
    parse are skipped. A directory is reported once.

    Args:
        root: Checkout or local directory
        subpath: Optional path inside root to search instead
    """
    search_path = Path(root) / subpath if subpath else Path(root)

    candidates: list[DiscoveredSkill] = []
    if has_manifest(search_path) and (skill := _load(search_path)) is not None:
        candidates.append(skill)
    for rel in PRIORITY_SEARCH_DIRS:
        candidates.extend(_scan_children(search_path / rel))

    if not candidates:
        for directory in _find_manifest_dirs(search_path):
            if (skill := _load(directory)) is not None:
                candidates.append(skill)

    results: list[DiscoveredSkill] = []
    seen: set[str] = set()
    for skill in candidates:
        key = os.path.realpath(skill.path)
        if key in seen:
            continue
        seen.add(key)
        results.append(skill)

    logger.info("discovery.done", root=str(search_path), count=len(results))
    return results


def find_install_candidates(path: str | Path) -> list[DiscoveredSkill]:
    """Skills offered by a path that has no SKILL.md at its root.

    Checks INSTALL_SEARCH_DIRS in order and stops at the first one that
    yields at least one valid skill. Results are sorted by name.
    """
    base = Path(path)
    for rel in INSTALL_SEARCH_DIRS:
        found = _scan_children(base / rel)
        if found:
            return sorted(found, key=lambda skill: skill.name)
    return []
