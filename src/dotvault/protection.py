"""
Write protection ("lock") for vault-managed files.

Locked files cannot be edited in place by accident; every managed
write goes through :meth:`ProtectionGuard.scoped_unlock`.

Platform primitives:
    linux   -- strip the write permission bits
    darwin  -- set the user-immutable flag (chflags uchg), plus the
               permission bits so the lock survives copies
    win32   -- os.chmod toggles FILE_ATTRIBUTE_READONLY
"""

from __future__ import annotations

import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, TypeVar

from .errors import NotFound, PermissionDenied

logger = logging.getLogger("dotvault.protection")

T = TypeVar("T")

_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


class ProtectionGuard:
    """Toggles and probes the lock state of individual files.

    Args:
        platform: ``sys.platform``-style name; detected when omitted.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform or sys.platform

    @property
    def _uses_flags(self) -> bool:
        return self.platform == "darwin" and hasattr(os, "chflags")

    def lock(self, path: Path | str) -> None:
        """Write-protect a file. Locking a locked file is a no-op.

        Raises:
            NotFound: If the file does not exist.
            PermissionDenied: If the primitive is refused.
        """
        target = self._existing(path)
        try:
            st = target.stat()
            if self._uses_flags and st.st_flags & stat.UF_IMMUTABLE:
                return
            os.chmod(target, stat.S_IMODE(st.st_mode) & ~_WRITE_BITS)
            if self._uses_flags:
                os.chflags(target, st.st_flags | stat.UF_IMMUTABLE)
        except OSError as exc:
            raise PermissionDenied("Could not lock file", str(target)) from exc
        logger.debug("Locked %s", target)

    def unlock(self, path: Path | str) -> None:
        """Remove write protection. Unlocking an unlocked file is a no-op.

        Raises:
            NotFound: If the file does not exist.
            PermissionDenied: If the primitive is refused.
        """
        target = self._existing(path)
        try:
            if self._uses_flags:
                flags = target.stat().st_flags
                if flags & stat.UF_IMMUTABLE:
                    os.chflags(target, flags & ~stat.UF_IMMUTABLE)
            mode = target.stat().st_mode
            os.chmod(target, stat.S_IMODE(mode) | stat.S_IWUSR)
        except OSError as exc:
            raise PermissionDenied("Could not unlock file", str(target)) from exc
        logger.debug("Unlocked %s", target)

    def is_locked(self, path: Path | str) -> bool:
        """Probe the lock state; a missing path reports False."""
        target = Path(path)
        try:
            st = target.stat()
        except OSError:
            return False

        if self.platform == "win32":
            attrs = getattr(st, "st_file_attributes", None)
            if attrs is not None:
                return bool(attrs & stat.FILE_ATTRIBUTE_READONLY)
        if self._uses_flags and getattr(st, "st_flags", 0) & stat.UF_IMMUTABLE:
            return True
        return not st.st_mode & _WRITE_BITS

    @contextmanager
    def scoped_unlock(self, path: Path | str) -> Iterator[None]:
        """Unlock for the duration of the block, then restore the prior
        state whether or not the block raised.

        The prior state is captured once on entry; an external relock
        during the block is overwritten on exit.
        """
        target = Path(path)
        was_locked = self.is_locked(target)
        if was_locked:
            self.unlock(target)
        try:
            yield
        finally:
            if was_locked and target.exists():
                self.lock(target)

    def run_unlocked(self, path: Path | str, action: Callable[[], T]) -> T:
        """Run ``action`` inside :meth:`scoped_unlock` and return its result."""
        with self.scoped_unlock(path):
            return action()

    def protect_directory(self, directory: Path | str) -> int:
        """Lock every regular file below a directory. Returns the count."""
        count = 0
        for file_path in sorted(Path(directory).rglob("*")):
            if file_path.is_file() and not file_path.is_symlink() and ".git" not in file_path.parts:
                self.lock(file_path)
                count += 1
        return count

    def unprotect_directory(self, directory: Path | str) -> int:
        """Unlock every regular file below a directory. Returns the count."""
        count = 0
        for file_path in sorted(Path(directory).rglob("*")):
            if file_path.is_file() and not file_path.is_symlink() and ".git" not in file_path.parts:
                self.unlock(file_path)
                count += 1
        return count

    @staticmethod
    def _existing(path: Path | str) -> Path:
        target = Path(path)
        if not target.exists():
            raise NotFound("File not found", str(target))
        return target
