"""Tests for the git adapter against a local bare remote."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from dotvault.errors import GitCommandError, PreconditionViolation
from dotvault.git import GitSyncAdapter, _parse_branch_header


@pytest.fixture
def adapter(tmp_path: Path) -> GitSyncAdapter:
    return GitSyncAdapter(tmp_path / "vault")


def _remote_log(remote: str) -> list[str]:
    result = subprocess.run(
        ["git", "--git-dir", remote, "log", "--format=%s", "main"],
        capture_output=True, text=True,
    )
    return result.stdout.splitlines() if result.returncode == 0 else []


class TestBootstrap:
    """Tests for clone/init fallback."""

    def test_empty_remote_is_initialized(self, adapter, remote, git_log):
        outcome = adapter.bootstrap(remote, {"seed.json": "{}\n"})
        assert outcome == "initialized"
        assert adapter.is_initialized()
        assert adapter.has_commits()
        assert (adapter.worktree / "seed.json").read_text() == "{}\n"
        assert (adapter.worktree / ".gitignore").exists()
        assert (adapter.worktree / "README.md").exists()
        assert git_log(adapter.worktree) == ["Initial dotvault setup"]

    def test_unreachable_remote_falls_back_to_init(self, adapter, tmp_path, git_log):
        outcome = adapter.bootstrap(str(tmp_path / "does-not-exist.git"))
        assert outcome == "initialized"
        assert git_log(adapter.worktree) == ["Initial dotvault setup"]

    def test_populated_remote_is_cloned(self, adapter, remote, tmp_path):
        adapter.bootstrap(remote, {"seed.json": "{}\n"})
        adapter.sync()

        second = GitSyncAdapter(tmp_path / "second")
        assert second.bootstrap(remote) == "cloned"
        assert (second.worktree / "seed.json").exists()

    def test_clone_requires_empty_directory(self, adapter, remote):
        adapter.worktree.mkdir(parents=True)
        (adapter.worktree / "stray").write_text("x")
        with pytest.raises(PreconditionViolation):
            adapter.clone(remote)

    def test_check_remote(self, adapter, remote, tmp_path):
        assert adapter.check_remote(remote)
        assert not adapter.check_remote(str(tmp_path / "absent.git"))


class TestCommit:
    def test_commit_only_when_changed(self, adapter, remote, git_log):
        adapter.bootstrap(remote)
        assert adapter.commit_all("Nothing") is False

        (adapter.worktree / "a.txt").write_text("a")
        assert adapter.commit_all("Add a") is True
        assert adapter.commit_all("Add a again") is False
        assert git_log(adapter.worktree)[0] == "Add a"


class TestSync:
    """Tests for commit/pull/push sequencing."""

    def test_first_sync_establishes_upstream(self, adapter, remote):
        adapter.bootstrap(remote)
        result = adapter.sync()
        assert result.pushed
        assert not result.pulled
        assert _remote_log(remote) == ["Initial dotvault setup"]
        assert adapter.status().upstream == "origin/main"

    def test_second_sync_is_a_no_op(self, adapter, remote, git_log):
        adapter.bootstrap(remote)
        adapter.sync()
        before = git_log(adapter.worktree)

        result = adapter.sync()
        assert not result.committed
        assert not result.pushed
        assert git_log(adapter.worktree) == before
        assert _remote_log(remote) == before

    def test_sync_commits_dirty_tree(self, adapter, remote):
        adapter.bootstrap(remote)
        adapter.sync()
        (adapter.worktree / "new.txt").write_text("x")

        result = adapter.sync("Sync new file")
        assert result.committed
        assert result.pulled
        assert result.pushed
        assert _remote_log(remote)[0] == "Sync new file"

    def test_pull_brings_in_remote_changes(self, adapter, remote, tmp_path):
        adapter.bootstrap(remote)
        adapter.sync()
        other = GitSyncAdapter(tmp_path / "other")
        other.bootstrap(remote)
        (other.worktree / "shared.txt").write_text("from other")
        other.commit_all("Add shared")
        other.sync()

        result = adapter.sync()
        assert result.pulled
        assert not result.pushed
        assert (adapter.worktree / "shared.txt").read_text() == "from other"

    def test_pull_without_upstream_is_skipped(self, adapter, remote):
        adapter.bootstrap(remote)
        assert adapter.pull() is False

    def test_push_to_missing_remote_fails(self, adapter, tmp_path):
        adapter.bootstrap(str(tmp_path / "gone.git"))
        with pytest.raises(GitCommandError):
            adapter.push()


class TestStatus:
    def test_status_counts_modified(self, adapter, remote):
        adapter.bootstrap(remote)
        adapter.sync()
        (adapter.worktree / "one").write_text("1")
        (adapter.worktree / "two").write_text("2")
        status = adapter.status()
        assert status.branch == "main"
        assert status.modified == 2
        assert status.dirty

    def test_ahead_after_local_commit(self, adapter, remote):
        adapter.bootstrap(remote)
        adapter.sync()
        (adapter.worktree / "x").write_text("x")
        adapter.commit_all("Local")
        status = adapter.status()
        assert status.ahead == 1
        assert status.behind == 0
        assert not status.dirty


class TestParseBranchHeader:
    """Tests for ``## ...`` header parsing."""

    def test_no_commits(self):
        status = _parse_branch_header("No commits yet on main", "main")
        assert status.branch == "main"
        assert not status.has_commits
        assert status.upstream is None

    def test_plain_branch(self):
        status = _parse_branch_header("feature", "main")
        assert status.branch == "feature"
        assert status.upstream is None

    def test_tracking(self):
        status = _parse_branch_header("main...origin/main [ahead 3, behind 2]", "main")
        assert status.upstream == "origin/main"
        assert (status.ahead, status.behind) == (3, 2)

    def test_behind_only(self):
        status = _parse_branch_header("main...origin/main [behind 5]", "main")
        assert (status.ahead, status.behind) == (0, 5)

    def test_gone_upstream(self):
        status = _parse_branch_header("main...origin/main [gone]", "main")
        assert status.upstream is None
