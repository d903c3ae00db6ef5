"""
Per-skill locks -- serialize install/update/remove on one canonical directory.

Keys are fully resolved canonical paths (symlinks followed), so two managers
in the same process that target the same skill share a lock even when they
reach it through a symlinked workspace. Operations on different skills never
block each other.
"""

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


class SkillLocks:
    """Process-wide registry of re-entrant locks keyed by canonical path.

    Usage:
        with SkillLocks.get().hold(canonical_dir):
            ...
    """

    _instance: "SkillLocks | None" = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def get(cls) -> "SkillLocks":
        """Get or create the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def lock_for(self, path: str | Path) -> threading.RLock:
        key = os.path.realpath(path)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, path: str | Path) -> Iterator[None]:
        with self.lock_for(path):
            yield
