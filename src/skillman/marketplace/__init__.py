"""
Marketplace search and remote SKILL.md viewing.
"""

from .cache import ManifestCache
from .client import MarketplaceClient, deduplicate_results, format_installs, normalize_result

__all__ = [
    "ManifestCache",
    "MarketplaceClient",
    "deduplicate_results",
    "format_installs",
    "normalize_result",
]
