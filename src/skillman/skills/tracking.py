"""
Source tracking -- the `.skill-source.json` file kept next to each canonical
skill installed from a remote source.

The file is written with camelCase keys. Reading never raises: a missing or
unreadable file means "no remote tracking available".
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger(component="tracking")

SOURCE_METADATA_FILENAME = ".skill-source.json"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SkillSourceMetadata(BaseModel):
    """Where an installed skill came from and which content it was built from.

    installed_hash is the hash of the canonical copy at last write.
    last_remote_hash and skill_folder_hash only move after a successful
    remote fetch; skill_folder_hash is the baseline update checks compare to.
    """

    source_type: Literal["github", "gitlab", "git"] = Field(alias="sourceType")
    source_url: str = Field(alias="sourceUrl", description="Source string the user installed from")
    repository: str = Field(description="Clone URL")
    owner_repo: str | None = Field(default=None, alias="ownerRepo")
    skill_path: str = Field(
        alias="skillPath",
        description="Path of the SKILL.md relative to the repository root",
    )
    skill_id: str | None = Field(default=None, alias="skillId")
    source_ref: str | None = Field(default=None, alias="sourceRef")
    installed_hash: str = Field(alias="installedHash")
    last_remote_hash: str = Field(alias="lastRemoteHash")
    skill_folder_hash: str = Field(alias="skillFolderHash")
    installed_at: datetime = Field(default_factory=_now, alias="installedAt")
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @property
    def skill_dir(self) -> str:
        """Directory of the skill relative to the repository root ("" for the root)."""
        parent = Path(self.skill_path).parent.as_posix()
        return "" if parent == "." else parent


def read_source_metadata(skill_dir: str | Path) -> SkillSourceMetadata | None:
    """Load the tracking file of a skill directory, or None if absent or corrupt."""
    path = Path(skill_dir) / SOURCE_METADATA_FILENAME
    if not path.is_file():
        return None

    try:
        return SkillSourceMetadata.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("tracking.read_failed", path=str(path), error=str(e))
        return None


def write_source_metadata(skill_dir: str | Path, metadata: SkillSourceMetadata) -> Path:
    """Write the tracking file. Errors propagate to the caller."""
    path = Path(skill_dir) / SOURCE_METADATA_FILENAME
    path.write_text(
        metadata.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n",
        encoding="utf-8",
    )
    logger.debug("tracking.written", path=str(path))
    return path


def refresh_remote_hash(metadata: SkillSourceMetadata, remote_hash: str) -> SkillSourceMetadata:
    """Return a copy that records a freshly observed remote hash."""
    return metadata.model_copy(update={
        "last_remote_hash": remote_hash,
        "skill_folder_hash": remote_hash,
        "updated_at": _now(),
    })
