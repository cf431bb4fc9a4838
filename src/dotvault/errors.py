"""
Error taxonomy shared by every dotvault component.

Each error names the file id or path it concerns so callers can
surface it without extra bookkeeping.
"""

from __future__ import annotations

from typing import Optional


class DotvaultError(Exception):
    """Base class for all dotvault errors."""

    def __init__(self, message: str, subject: Optional[str] = None):
        self.message = message
        self.subject = subject
        super().__init__(message)

    def __str__(self) -> str:
        if self.subject:
            return f"{self.message}: {self.subject}"
        return self.message


class NotFound(DotvaultError):
    """Unknown file id, missing link, or missing target."""


class PermissionDenied(DotvaultError):
    """A lock primitive refused, or the OS blocked symlink creation."""


class CryptoFailure(DotvaultError):
    """Wrong secret, or a tampered or malformed envelope."""


class ManifestCorrupt(DotvaultError):
    """The manifest (or another persisted document) cannot be read."""


class PreconditionViolation(DotvaultError):
    """The operation is not legal for the given input."""


class NotConfigured(DotvaultError):
    """No local configuration exists yet."""


class EditorError(DotvaultError):
    """The external editor failed to start or exited non-zero."""


class GitCommandError(DotvaultError):
    """A git subprocess exited non-zero."""

    def __init__(
        self,
        message: str,
        subject: Optional[str] = None,
        returncode: int = 1,
        stderr: str = "",
    ):
        super().__init__(message, subject)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        detail = self.stderr.strip()
        return f"{base} ({detail})" if detail else base


class RemoteUnavailable(GitCommandError):
    """Network or auth failure talking to the git remote."""
