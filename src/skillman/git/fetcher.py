"""
Repository Fetcher -- shallow clones into ephemeral temp directories.

Every clone lives under the system temp directory and must be released with
cleanup_temp_dir(), which refuses to delete anything outside that root.
ephemeral_clone() wraps both steps for callers that only need the checkout
for the duration of a block.
"""

import os
import shutil
import subprocess
import tempfile
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

import structlog

from ..config.schema import DEFAULT_FALLBACK_BRANCHES
from ..errors import GitCloneError, UnsafeCleanupError
from ..logging.human import HumanLog

logger = structlog.get_logger(component="git")
_hlog = HumanLog(logger)

CLONE_TIMEOUT = 60
TEMP_PREFIX = "skills-"

# Markers in git's stderr suggesting the default branch could not be checked out
_MISSING_BRANCH_MARKERS = ("remote branch", "main")
_TIMEOUT_MARKERS = ("block timeout", "timed out")
_AUTH_MARKERS = (
    "Authentication failed",
    "could not read Username",
    "Permission denied",
    "Repository not found",
)


def clone_repo(
    url: str,
    ref: str | None = None,
    *,
    timeout: int = CLONE_TIMEOUT,
    fallback_branches: Sequence[str] = DEFAULT_FALLBACK_BRANCHES,
) -> Path:
    """Shallow-clone a repository into a fresh temp directory.

    When no ref is given and the first attempt fails with what looks like a
    missing default branch, each fallback branch is tried in order. This is
    a best-effort heuristic; the remote's real default branch is not queried.

    Args:
        url: Repository URL (https, ssh or scp-style)
        ref: Branch or tag to check out
        timeout: Wall-clock limit per attempt, in seconds
        fallback_branches: Branch names to probe when the default fails

    Returns:
        Path to the checkout. The caller owns it and must clean it up.

    Raises:
        GitCloneError: All attempts failed; classified as timeout, auth or generic.
    """
    temp_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX))
    _hlog.clone_start(url, ref)
    logger.info("git.clone.start", url=url, ref=ref, path=str(temp_dir))

    error = _run_clone(url, temp_dir, ref, timeout)
    if error is None:
        logger.info("git.clone.done", url=url, path=str(temp_dir))
        return temp_dir

    logger.warning("git.clone.failed", url=url, ref=ref, error=error[:200])

    if ref is None and any(marker in error for marker in _MISSING_BRANCH_MARKERS):
        for branch in fallback_branches:
            _remove_tree(temp_dir)
            _hlog.clone_fallback(branch)
            logger.debug("git.clone.fallback", url=url, branch=branch)
            if _run_clone(url, temp_dir, branch, timeout) is None:
                logger.info("git.clone.done", url=url, branch=branch, path=str(temp_dir))
                return temp_dir

    _remove_tree(temp_dir)
    raise _classify_error(url, error, timeout)


def _run_clone(url: str, target: Path, ref: str | None, timeout: int) -> str | None:
    """Run one clone attempt. Returns None on success, else the error text."""
    cmd = ["git", "clone", "--depth", "1"]
    if ref:
        cmd += ["--branch", ref]
    cmd += [url, str(target)]

    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        return f"git clone timed out after {timeout}s"
    except OSError as e:
        return f"could not run git: {e}"

    if proc.returncode != 0:
        return proc.stderr.strip() or f"git clone exited with code {proc.returncode}"
    return None


def _classify_error(url: str, error: str, timeout: int) -> GitCloneError:
    if any(marker in error for marker in _TIMEOUT_MARKERS):
        return GitCloneError(
            f"Clone timed out after {timeout}s. This often happens with private repos "
            "that require authentication.\n"
            "  Ensure you have access and your SSH keys or credentials are configured:\n"
            "  - For SSH: ssh-add -l (to check loaded keys)\n"
            "  - For HTTPS: gh auth status (if using GitHub CLI)",
            url,
            is_timeout=True,
        )

    if any(marker in error for marker in _AUTH_MARKERS):
        return GitCloneError(
            f"Authentication failed for {url}.\n"
            "  - For private repos, ensure you have access\n"
            "  - For SSH: check your keys with 'ssh -T git@github.com'\n"
            "  - For HTTPS: run 'gh auth login' or configure git credentials",
            url,
            is_auth_error=True,
        )

    return GitCloneError(f"Failed to clone {url}: {error}", url)


def _is_within_temp_root(path: Path) -> bool:
    target = os.path.normpath(os.path.abspath(path))
    temp_root = os.path.normpath(os.path.abspath(tempfile.gettempdir()))
    return target.startswith(temp_root + os.sep)


def _remove_tree(path: Path) -> None:
    if _is_within_temp_root(path):
        shutil.rmtree(path, ignore_errors=True)


def cleanup_temp_dir(path: str | Path) -> None:
    """Recursively delete a clone directory.

    The path is checked lexically (absolute, normalized) against the system
    temp root before anything is touched. The temp root itself is refused.

    Raises:
        UnsafeCleanupError: The path is not strictly inside the temp root.
    """
    if not _is_within_temp_root(Path(path)):
        logger.error("git.cleanup.refused", path=str(path))
        raise UnsafeCleanupError(str(path))

    shutil.rmtree(path, ignore_errors=True)
    logger.debug("git.cleanup.done", path=str(path))


@contextmanager
def ephemeral_clone(
    url: str,
    ref: str | None = None,
    *,
    timeout: int = CLONE_TIMEOUT,
    fallback_branches: Sequence[str] = DEFAULT_FALLBACK_BRANCHES,
) -> Iterator[Path]:
    """Clone for the duration of a with-block and always clean up.

    Usage:
        with ephemeral_clone("https://github.com/o/r.git") as checkout:
            skills = discover_skills(checkout)
    """
    temp_dir = clone_repo(url, ref, timeout=timeout, fallback_branches=fallback_branches)
    try:
        yield temp_dir
    finally:
        cleanup_temp_dir(temp_dir)
