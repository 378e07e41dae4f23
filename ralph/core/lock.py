"""Single-loop-per-project lock.

Two loops in one working tree would race on the git index and on the plan
file the agent edits. The lock is a filelock taken without waiting. It lives
inside the repository's git directory so it never shows up as an untracked
file the agent could commit; outside a git repository it falls back to
.ralph/loop.lock.
"""

import logging
import subprocess
from pathlib import Path
from types import TracebackType

from filelock import FileLock, Timeout

from ralph.core.config import CONFIG_DIR

logger = logging.getLogger(__name__)

LOCK_FILENAME = "loop.lock"
GIT_LOCK_FILENAME = "ralph-loop.lock"
GIT_TIMEOUT = 10


class LoopLockedError(Exception):
    """Another loop already holds the project lock."""

    pass


def _git_dir(repo_path: Path) -> Path | None:
    """Absolute git directory for ``repo_path``, or None outside a repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--absolute-git-dir"],
            cwd=repo_path,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"Could not locate git directory: {e}")
        return None
    path = result.stdout.strip()
    if result.returncode != 0 or not path:
        return None
    return Path(path)


class LoopLock:
    """Exclusive lock for running a loop in ``repo_path``."""

    def __init__(self, repo_path: Path, timeout: float = 0):
        self.repo_path = Path(repo_path).resolve()
        self.timeout = timeout
        self._filelock: FileLock | None = None
        self._lock_path: Path | None = None
        self.acquired = False

    @property
    def lock_path(self) -> Path:
        if self._lock_path is None:
            git_dir = _git_dir(self.repo_path)
            if git_dir is not None:
                self._lock_path = git_dir / GIT_LOCK_FILENAME
            else:
                self._lock_path = self.repo_path / CONFIG_DIR / LOCK_FILENAME
        return self._lock_path

    def __enter__(self) -> "LoopLock":
        lock_dir = self.lock_path.parent
        if lock_dir.is_symlink():
            raise LoopLockedError(f"{lock_dir} is a symlink; refusing to lock through it")
        lock_dir.mkdir(parents=True, exist_ok=True)

        self._filelock = FileLock(str(self.lock_path), timeout=self.timeout)
        try:
            self._filelock.acquire()
        except Timeout:
            raise LoopLockedError(
                f"Another ralph loop is already running in {self.repo_path} "
                f"(lock: {self.lock_path})"
            ) from None
        self.acquired = True
        logger.debug(f"Acquired loop lock {self.lock_path}")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool:
        if self._filelock is not None and self.acquired:
            self._filelock.release()
            self.acquired = False
        return False
