"""
Skills -- discovery, hashing, tracking and the installation manager.
"""

from .agents import AgentInfo, detect_installed_agents, get_agent, get_supported_agents
from .discovery import DiscoveredSkill, discover_skills, find_install_candidates
from .hashing import compute_directory_hash
from .manager import Chooser, ProgressReporter, SkillManager
from .manifest import SkillManifest, parse_manifest, sanitize_name
from .models import (
    InstalledVersion,
    InstallResult,
    InstallSourceMetadata,
    LocalSkillSource,
    RemoteSkillSource,
    RemoveResult,
    SearchResult,
    Skill,
    UpdateResult,
)
from .tracking import SkillSourceMetadata, read_source_metadata, write_source_metadata

__all__ = [
    "AgentInfo",
    "Chooser",
    "DiscoveredSkill",
    "InstallResult",
    "InstallSourceMetadata",
    "InstalledVersion",
    "LocalSkillSource",
    "ProgressReporter",
    "RemoteSkillSource",
    "RemoveResult",
    "SearchResult",
    "Skill",
    "SkillManager",
    "SkillManifest",
    "SkillSourceMetadata",
    "UpdateResult",
    "compute_directory_hash",
    "detect_installed_agents",
    "discover_skills",
    "find_install_candidates",
    "get_agent",
    "get_supported_agents",
    "parse_manifest",
    "read_source_metadata",
    "sanitize_name",
    "write_source_metadata",
]
