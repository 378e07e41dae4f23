"""Git synchronisation between loop iterations.

The supervisor never commits or merges; the agent does that. After each
iteration we only push whatever the agent committed, creating the upstream
branch on first push. Failures here are never fatal to the loop.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"


@dataclass
class PushResult:
    """Outcome of a push attempt."""

    ok: bool
    branch: str
    created_upstream: bool = False
    message: str = ""


class GitSync:
    """Push the current branch of a working tree to its remote."""

    # Pushes go over the network and can stall on auth prompts
    GIT_TIMEOUT = 60

    def __init__(self, repo_path: Path, remote: str = "origin", timeout: int | None = None):
        self.repo_path = Path(repo_path)
        self.remote = remote
        self.timeout = timeout or self.GIT_TIMEOUT

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", *args],
            cwd=self.repo_path,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def current_branch(self) -> str:
        """Name of the checked-out branch, or ``main`` if it can't be determined."""
        try:
            result = self._git("branch", "--show-current")
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"Could not read current branch: {e}")
            return DEFAULT_BRANCH
        branch = result.stdout.strip()
        if result.returncode != 0 or not branch:
            return DEFAULT_BRANCH
        return branch

    def has_upstream(self, branch: str) -> bool:
        try:
            result = self._git("rev-parse", "--abbrev-ref", f"{branch}@{{upstream}}")
        except (subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0

    def push(self, branch: str | None = None) -> PushResult:
        """Push ``branch`` (default: current), setting upstream when missing.

        Never raises for git failures; the result carries the error text.
        """
        branch = branch or self.current_branch()

        upstream = self.has_upstream(branch)
        try:
            if upstream:
                result = self._git("push", self.remote, branch)
                if result.returncode == 0:
                    return PushResult(ok=True, branch=branch)
                logger.warning(
                    f"Push of '{branch}' failed, retrying with upstream: {result.stderr.strip()}"
                )

            result = self._git("push", "-u", self.remote, branch)
        except subprocess.TimeoutExpired:
            message = f"git push timed out after {self.timeout}s"
            logger.warning(message)
            return PushResult(ok=False, branch=branch, message=message)
        except OSError as e:
            message = f"git push could not run: {e}"
            logger.warning(message)
            return PushResult(ok=False, branch=branch, message=message)

        if result.returncode == 0:
            logger.info(f"Pushed '{branch}' with upstream {self.remote}/{branch}")
            return PushResult(ok=True, branch=branch, created_upstream=not upstream)

        message = result.stderr.strip() or f"git push exited {result.returncode}"
        logger.warning(f"Push of '{branch}' to {self.remote} failed: {message}")
        return PushResult(ok=False, branch=branch, message=message)
