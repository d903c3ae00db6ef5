"""
Configuration module for skillman.
"""

from .loader import load_config
from .schema import (
    AppConfig,
    CacheConfig,
    InstallConfig,
    LoggingConfig,
    MarketplaceApiConfig,
    MarketplaceConfig,
    WorkspaceConfig,
)

__all__ = [
    "load_config",
    "AppConfig",
    "CacheConfig",
    "InstallConfig",
    "LoggingConfig",
    "MarketplaceApiConfig",
    "MarketplaceConfig",
    "WorkspaceConfig",
]
