"""Tests for the single-loop project lock."""

import subprocess

import pytest

from ralph.core.lock import LoopLock, LoopLockedError


def test_acquire_and_release(tmp_path):
    with LoopLock(tmp_path) as lock:
        assert lock.acquired
        assert lock.lock_path.exists()
    assert not lock.acquired


def test_second_loop_refused(tmp_path):
    with LoopLock(tmp_path):
        with pytest.raises(LoopLockedError, match="already running"):
            with LoopLock(tmp_path):
                pass


def test_reacquire_after_release(tmp_path):
    with LoopLock(tmp_path):
        pass
    with LoopLock(tmp_path) as lock:
        assert lock.acquired


def test_symlinked_config_dir_refused(tmp_path):
    target = tmp_path / "elsewhere"
    target.mkdir()
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / ".ralph").symlink_to(target)

    with pytest.raises(LoopLockedError, match="symlink"):
        with LoopLock(repo):
            pass


def test_lock_lives_in_git_dir(repo_with_remote):
    with LoopLock(repo_with_remote) as lock:
        assert lock.lock_path.parent == (repo_with_remote / ".git").resolve()
        status = subprocess.run(
            ["git", "status", "--porcelain", "-uall"],
            cwd=repo_with_remote,
            capture_output=True,
            text=True,
            check=True,
        )
        assert status.stdout == ""
    assert not (repo_with_remote / ".ralph").exists()


def test_git_repo_second_loop_refused(repo_with_remote):
    with LoopLock(repo_with_remote):
        with pytest.raises(LoopLockedError):
            with LoopLock(repo_with_remote / "."):
                pass
