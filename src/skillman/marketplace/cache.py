"""
On-disk cache of remote SKILL.md documents fetched for viewing.

One JSON file per skill key. The file name is a SHA-256 prefix of the key;
entries expire ttl_days after they were written (file mtime). Cache failures
are logged and never break the caller.
"""

import hashlib
import json
import time
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()

CACHE_VERSION = "1"


class ManifestCache:
    """Disk cache keyed by fully qualified skill id.

    Usage:
        cache = ManifestCache(Path("~/.skillman/cache"), ttl_days=7)
        content = cache.get("github/anthropics/skills@pdf")
        if content is None:
            content = fetch()
            cache.set("github/anthropics/skills@pdf", content, url)
    """

    def __init__(self, cache_dir: Path, ttl_days: int = 7) -> None:
        self._dir = Path(cache_dir).expanduser().resolve()
        self._ttl_seconds = ttl_days * 24 * 3600
        self._log = logger.bind(component="manifest_cache")

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._log.warning("manifest_cache.dir_create_failed", path=str(self._dir), error=str(e))

    def get(self, key: str) -> str | None:
        """Cached content for a key, or None on miss or expiry."""
        cache_file = self._cache_path(key)
        try:
            if not cache_file.exists():
                return None

            age = time.time() - cache_file.stat().st_mtime
            if age > self._ttl_seconds:
                self._log.debug("manifest_cache.expired", key=key, age_days=round(age / 86400, 1))
                cache_file.unlink(missing_ok=True)
                return None

            data = json.loads(cache_file.read_text(encoding="utf-8"))
            if data.get("key") != key:
                return None
            self._log.info("manifest_cache.hit", key=key)
            return data["content"]
        except (OSError, ValueError, KeyError) as e:
            self._log.warning("manifest_cache.get_failed", key=key, error=str(e))
            return None

    def set(self, key: str, content: str, url: str | None = None) -> Path | None:
        """Store content. Returns the cache file, or None if writing failed."""
        cache_file = self._cache_path(key)
        entry = {
            "version": CACHE_VERSION,
            "key": key,
            "url": url,
            "content": content,
            "timestamp": time.time(),
            "size": len(content),
        }
        try:
            cache_file.write_text(json.dumps(entry, ensure_ascii=False), encoding="utf-8")
            self._log.debug("manifest_cache.set", key=key, file=cache_file.name)
            return cache_file
        except OSError as e:
            self._log.warning("manifest_cache.set_failed", key=key, error=str(e))
            return None

    def invalidate(self, key: str) -> None:
        self._cache_path(key).unlink(missing_ok=True)

    def clear(self) -> int:
        """Delete every entry. Returns the number of files removed."""
        count = 0
        for f in self._dir.glob("*.json"):
            try:
                f.unlink()
                count += 1
            except OSError:
                continue
        self._log.info("manifest_cache.cleared", count=count)
        return count

    def stats(self) -> dict[str, Any]:
        files = list(self._dir.glob("*.json"))
        now = time.time()
        return {
            "entries": len(files),
            "expired": sum(1 for f in files if (now - f.stat().st_mtime) > self._ttl_seconds),
            "total_size_bytes": sum(f.stat().st_size for f in files),
            "dir": str(self._dir),
        }

    def _cache_path(self, key: str) -> Path:
        digest = hashlib.sha256(f"{CACHE_VERSION}:{key}".encode("utf-8")).hexdigest()[:24]
        return self._dir / f"{digest}.json"
