"""
Shallow git clones into ephemeral directories.
"""

from .fetcher import CLONE_TIMEOUT, cleanup_temp_dir, clone_repo, ephemeral_clone

__all__ = [
    "CLONE_TIMEOUT",
    "cleanup_temp_dir",
    "clone_repo",
    "ephemeral_clone",
]
