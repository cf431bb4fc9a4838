"""
Git-backed durability and replication for the vault tree.

Every vault change is committed to a local working tree and travels
through an ordinary git remote. The adapter shells out to ``git`` and
keeps no state of its own beyond the working-tree path and branch.

Lifecycle:
    bootstrap  -- clone the remote, or init locally when it has no history
    commit_all -- stage everything, commit only if something changed
    pull/push  -- tolerate a missing upstream on a brand-new repo
    sync       -- commit if dirty, pull, push only when ahead

No retries and no timeouts: callers own retry policy.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Mapping, Optional

from .errors import GitCommandError, PreconditionViolation, RemoteUnavailable
from .models import GitStatus, SyncResult

logger = logging.getLogger("dotvault.git")

DEFAULT_BRANCH = "main"
DEFAULT_REMOTE = "origin"

GITIGNORE = "# Local files\n.dotvault-local\n"

README = """# dotvault

This repository is managed by dotvault.

**This is a private repository containing environment secrets.**

## Structure

```
<project>/
    <environment>/
        .env        plaintext KEY=value lines
        .env.enc    encrypted envelope (base64)
.dotvault-manifest.json
.dotvault-salt
```

Do not edit encrypted files by hand; use the dotvault CLI.
"""

# Substrings git prints (under LC_ALL=C) when a branch has no upstream yet.
_NO_UPSTREAM_ON_PULL = (
    "no tracking information",
    "couldn't find remote ref",
    "no such ref was fetched",
)
_NO_UPSTREAM_ON_PUSH = (
    "has no upstream branch",
    "--set-upstream",
)


class GitSyncAdapter:
    """Runs git against one explicit working tree.

    Args:
        worktree: Path to the vault's working tree.
        branch: Branch the vault lives on.
        remote: Name of the remote to sync with.
    """

    def __init__(
        self,
        worktree: Path,
        branch: str = DEFAULT_BRANCH,
        remote: str = DEFAULT_REMOTE,
    ):
        self.worktree = Path(worktree).expanduser()
        self.branch = branch
        self.remote = remote

    # ------------------------------------------------------------------
    # Subprocess plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        *args: str,
        cwd: Optional[Path] = None,
        remote_op: bool = False,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        env = os.environ.copy()
        env["LC_ALL"] = "C"
        env["GIT_TERMINAL_PROMPT"] = "0"

        cmd = ["git", *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                cwd=str(cwd or self.worktree),
                env=env,
            )
        except FileNotFoundError as exc:
            raise GitCommandError("git executable not found") from exc

        if check and result.returncode != 0:
            output = result.stderr or result.stdout
            exc_cls = GitCommandError
            if remote_op and not _is_local_conflict(output):
                exc_cls = RemoteUnavailable
            raise exc_cls(
                f"git {args[0]} failed",
                subject=str(self.worktree),
                returncode=result.returncode,
                stderr=output,
            )
        return result

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return (self.worktree / ".git").exists()

    def has_commits(self) -> bool:
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        return result.returncode == 0

    def check_remote(self, url: str) -> bool:
        """Return True if ``git ls-remote`` can reach the URL."""
        cwd = self.worktree if self.worktree.exists() else Path.cwd()
        result = self._run("ls-remote", url, cwd=cwd, check=False)
        return result.returncode == 0

    def clone(self, url: str) -> None:
        """Clone the remote branch into the (empty) working tree.

        Raises:
            PreconditionViolation: If the working tree is not empty.
            RemoteUnavailable: If the clone fails.
        """
        self.worktree.mkdir(parents=True, exist_ok=True)
        if any(self.worktree.iterdir()):
            raise PreconditionViolation(
                "Vault directory is not empty", str(self.worktree)
            )
        self._run(
            "clone", "--branch", self.branch, url, str(self.worktree),
            cwd=self.worktree.parent, remote_op=True,
        )
        logger.info("Cloned %s into %s", url, self.worktree)

    def init(self, url: str, initial_files: Optional[Mapping[str, str]] = None) -> None:
        """Create a local repository, register the remote, and commit
        the initial vault files."""
        self.worktree.mkdir(parents=True, exist_ok=True)
        self._run("init")
        self._run("symbolic-ref", "HEAD", f"refs/heads/{self.branch}")
        self._run("remote", "add", self.remote, url)
        self._seed(initial_files)
        logger.info("Initialized new vault repository at %s", self.worktree)

    def _seed(self, initial_files: Optional[Mapping[str, str]]) -> None:
        files = {".gitignore": GITIGNORE, "README.md": README}
        files.update(initial_files or {})
        for rel_path, content in files.items():
            target = self.worktree / rel_path
            if not target.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
        self.commit_all("Initial dotvault setup")

    def bootstrap(
        self, url: str, initial_files: Optional[Mapping[str, str]] = None
    ) -> str:
        """Clone the remote, falling back to a fresh local init.

        A remote without history cannot be cloned on our branch, so the
        fallback creates the repository locally and seeds it. Cloning an
        empty remote that git accepts is seeded the same way.

        Returns:
            ``"cloned"`` or ``"initialized"``.

        Raises:
            GitCommandError: If neither path succeeds.
        """
        try:
            self.clone(url)
        except RemoteUnavailable as clone_exc:
            logger.info("Clone failed, initializing locally: %s", clone_exc)
            try:
                self.init(url, initial_files)
            except GitCommandError as init_exc:
                raise GitCommandError(
                    "Could not clone or initialize vault",
                    subject=url,
                    returncode=init_exc.returncode,
                    stderr=f"{clone_exc.stderr}\n{init_exc.stderr}".strip(),
                ) from init_exc
            return "initialized"

        if not self.has_commits():
            self._run("symbolic-ref", "HEAD", f"refs/heads/{self.branch}")
            self._seed(initial_files)
            return "initialized"
        return "cloned"

    # ------------------------------------------------------------------
    # Commit / pull / push
    # ------------------------------------------------------------------

    def commit_all(self, message: str) -> bool:
        """Stage the whole tree and commit if anything changed.

        Returns:
            True if a commit was created.
        """
        self._run("add", "-A")
        staged = self._run("status", "--porcelain")
        if not staged.stdout.strip():
            logger.debug("Nothing to commit")
            return False
        self._run("commit", "-m", message)
        logger.info("Committed: %s", message)
        return True

    def pull(self) -> bool:
        """Merge from the tracking branch.

        Returns:
            False when skipped because no upstream exists yet.
        """
        try:
            self._run("pull", "--no-rebase", "--no-edit", remote_op=True)
        except GitCommandError as exc:
            if _mentions(exc.stderr, _NO_UPSTREAM_ON_PULL):
                logger.debug("No upstream to pull from yet")
                return False
            raise
        return True

    def push(self) -> None:
        """Push the current branch, establishing an upstream if needed."""
        try:
            self._run("push", remote_op=True)
        except GitCommandError as exc:
            if not _mentions(exc.stderr, _NO_UPSTREAM_ON_PUSH):
                raise
            branch = self.status().branch
            self._run("push", "-u", self.remote, branch, remote_op=True)
        logger.info("Pushed %s to %s", self.branch, self.remote)

    def sync(self, message: str = "Sync from dotvault") -> SyncResult:
        """Commit if dirty, pull, then push only if locally ahead.

        The ahead/behind snapshot is taken once after the pull and not
        re-checked before the push.
        """
        result = SyncResult()

        if self.status().dirty:
            result.committed = self.commit_all(message)

        result.pulled = self.pull()

        after = self.status()
        if after.upstream is None:
            needs_push = after.has_commits
        else:
            needs_push = after.ahead > 0
        if needs_push:
            self.push()
            result.pushed = True

        return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> GitStatus:
        """Snapshot of branch, upstream, ahead/behind, and local changes."""
        result = self._run("status", "--porcelain=v1", "--branch")
        lines = result.stdout.splitlines()
        header = lines[0] if lines and lines[0].startswith("## ") else "## "
        status = _parse_branch_header(header[3:], self.branch)
        status.modified = sum(1 for line in lines[1:] if line.strip())
        return status


def _mentions(text: str, needles: tuple[str, ...]) -> bool:
    lowered = (text or "").lower()
    return any(n.lower() in lowered for n in needles)


def _is_local_conflict(output: str) -> bool:
    return _mentions(output, ("conflict", "[rejected]", "non-fast-forward", "would be overwritten"))


def _parse_branch_header(header: str, default_branch: str) -> GitStatus:
    """Parse the ``## ...`` line of ``git status --porcelain --branch``.

    Shapes handled::

        No commits yet on main
        main
        main...origin/main
        main...origin/main [ahead 1, behind 2]
        main...origin/main [gone]
        HEAD (no branch)
    """
    has_commits = True
    for prefix in ("No commits yet on ", "Initial commit on "):
        if header.startswith(prefix):
            header = header[len(prefix):]
            has_commits = False

    tracking = ""
    if " [" in header and header.endswith("]"):
        header, tracking = header.split(" [", 1)
        tracking = tracking[:-1]

    branch, _, upstream = header.partition("...")
    branch = branch.strip() or default_branch
    upstream = upstream.strip() or None

    ahead = behind = 0
    for part in tracking.split(","):
        part = part.strip()
        if part.startswith("ahead "):
            ahead = int(part[len("ahead "):])
        elif part.startswith("behind "):
            behind = int(part[len("behind "):])
        elif part == "gone":
            upstream = None

    return GitStatus(
        branch=branch,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        has_commits=has_commits,
    )
