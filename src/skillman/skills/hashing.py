"""
Content Hasher -- deterministic sha256 over a directory tree.

For every entry, in sorted order per directory listing, the digest receives
a tagged relative path line ("dir:<rel>\\n" or "file:<rel>\\n"); files
then contribute their raw bytes followed by "\\n". Relative paths always
use "/" so the hash does not depend on the platform.

The .git directory and the tracking file are never hashed, so rewriting
tracking metadata cannot flip a skill to "update available". Symlinks are
skipped as well: installs copy only real directories and regular files.
"""

import hashlib
from collections.abc import Callable
from pathlib import Path

from .tracking import SOURCE_METADATA_FILENAME

EXCLUDED_NAMES = frozenset({".git", SOURCE_METADATA_FILENAME})


def compute_directory_hash(
    path: str | Path,
    ignore: Callable[[Path], bool] | None = None,
) -> str:
    """Hash a directory's relative paths and file contents.

    Args:
        path: Directory to hash
        ignore: Extra predicate; entries for which it returns True are skipped
            together with their children

    Returns:
        Hex sha256 digest.
    """
    root = Path(path)
    digest = _hash_directory(root, root, hashlib.sha256(), ignore)
    return digest.hexdigest()


def _hash_directory(root: Path, current: Path, digest, ignore):
    for entry in sorted(current.iterdir(), key=lambda p: p.name):
        if entry.name in EXCLUDED_NAMES or entry.is_symlink():
            continue
        if ignore is not None and ignore(entry):
            continue

        rel = entry.relative_to(root).as_posix()
        if entry.is_dir():
            digest.update(f"dir:{rel}\n".encode("utf-8"))
            digest = _hash_directory(root, entry, digest, ignore)
        elif entry.is_file():
            digest.update(f"file:{rel}\n".encode("utf-8"))
            digest.update(entry.read_bytes())
            digest.update(b"\n")
    return digest
