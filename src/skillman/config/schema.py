"""
Pydantic models for skillman configuration.

Defines all configuration schemas using Pydantic v2 for validation,
defaults, and serialization.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_FALLBACK_BRANCHES = ["master", "main", "develop", "dev"]


class LoggingConfig(BaseModel):
    """Logging system configuration."""

    level: Literal["debug", "info", "human", "warn", "error"] = "human"
    file: Path | None = None
    verbose: int = 0

    model_config = {"extra": "forbid"}


class WorkspaceConfig(BaseModel):
    """Where project-scope and global-scope skills live."""

    root: Path = Path(".")
    home: Path | None = Field(
        default=None,
        description=(
            "Base directory for the global scope. None = the user's home directory."
        ),
    )

    model_config = {"extra": "forbid"}


class InstallConfig(BaseModel):
    """Defaults for install/update operations."""

    default_agents: list[str] = Field(
        default_factory=list,
        description="Agents targeted when none are given. Empty = detected agents.",
    )
    default_scope: Literal["project", "global"] = "project"
    clone_timeout: int = Field(
        default=60,
        ge=1,
        le=3600,
        description="Wall-clock limit for one git clone attempt, in seconds",
    )
    fallback_branches: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_BRANCHES),
        description=(
            "Branches probed in order when a clone without explicit ref "
            "fails because the default branch was not found"
        ),
    )

    model_config = {"extra": "forbid"}


class MarketplaceApiConfig(BaseModel):
    """One marketplace search endpoint."""

    url: str = Field(description="Base URL; /api/search is appended to its origin")
    name: str | None = None
    enabled: bool = True
    priority: int = Field(default=0, description="Higher priority is queried first")

    model_config = {"extra": "forbid"}

    @field_validator("url")
    @classmethod
    def _require_http(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("marketplace url must start with http:// or https://")
        return value


class MarketplaceConfig(BaseModel):
    """Marketplace search configuration."""

    apis: list[MarketplaceApiConfig] = Field(
        default_factory=lambda: [MarketplaceApiConfig(url="https://skills.sh", name="Skills.sh")]
    )
    search_limit: int = Field(default=10, ge=1, le=100)
    request_timeout: float = Field(default=10.0, gt=0)
    retries: int = Field(default=2, ge=0, le=10)

    model_config = {"extra": "forbid"}


class CacheConfig(BaseModel):
    """On-disk cache for remote SKILL.md documents fetched for viewing."""

    enabled: bool = True
    dir: Path = Path("~/.skillman/cache")
    ttl_days: int = Field(default=7, ge=1, le=365)

    model_config = {"extra": "forbid"}


class AppConfig(BaseModel):
    """Root configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)
    marketplace: MarketplaceConfig = Field(default_factory=MarketplaceConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    model_config = {"extra": "forbid"}
