"""
Link registry -- projections of vault entries into working directories.

A link is either a symlink to the plaintext blob inside the vault, or
a materialized plaintext copy that must be refreshed when the source
changes. The registry is a local JSON document (one LinkRecord per
target path) that lives outside the versioned tree.

Batch operations (``sync_copies``, ``repair_links``) never stop on the
first failure: per-target errors are collected and reported.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from .crypto import Secret
from .envfile import serialize_env
from .errors import DotvaultError, ManifestCorrupt, NotFound, PermissionDenied, PreconditionViolation
from .files import EnvFileStore
from .models import CopySyncReport, LinkHealth, LinkRecord, LinkType, RepairReport

logger = logging.getLogger("dotvault.links")

_LINKS_ADAPTER = TypeAdapter(list[LinkRecord])

# Windows: ERROR_PRIVILEGE_NOT_HELD when Developer Mode is off.
_WINERROR_PRIVILEGE_NOT_HELD = 1314


def _absolute(path: Path | str) -> str:
    """Absolute target path without following a symlink at the target."""
    return os.path.abspath(os.path.expanduser(str(path)))


def _remove_target(target: str) -> None:
    if os.path.islink(target) or os.path.isfile(target):
        os.unlink(target)
    elif os.path.isdir(target):
        raise PreconditionViolation("Link target is a directory", target)


class LinkRegistry:
    """Creates, refreshes, validates, and repairs links.

    Args:
        links_path: Location of the registry JSON document.
        files: Blob store used to resolve and read link sources.
    """

    def __init__(self, links_path: Path, files: EnvFileStore):
        self.links_path = Path(links_path)
        self.files = files

    # ------------------------------------------------------------------
    # Registry document
    # ------------------------------------------------------------------

    def list_links(self) -> list[LinkRecord]:
        if not self.links_path.exists():
            return []
        try:
            return _LINKS_ADAPTER.validate_json(self.links_path.read_bytes())
        except (OSError, ValidationError) as exc:
            raise ManifestCorrupt("Link registry is unreadable", str(self.links_path)) from exc

    def _save(self, links: list[LinkRecord]) -> None:
        self.links_path.parent.mkdir(parents=True, exist_ok=True)
        self.links_path.write_bytes(_LINKS_ADAPTER.dump_json(links, by_alias=True, indent=2) + b"\n")

    def _register(self, link: LinkRecord) -> None:
        links = [l for l in self.list_links() if l.target_path != link.target_path]
        links.append(link)
        self._save(links)

    def _deregister(self, target: str) -> bool:
        links = self.list_links()
        remaining = [l for l in links if l.target_path != target]
        if len(remaining) == len(links):
            return False
        self._save(remaining)
        return True

    def links_for(self, source_id: str) -> list[LinkRecord]:
        return [l for l in self.list_links() if l.source_id == source_id]

    def get(self, target_path: Path | str) -> Optional[LinkRecord]:
        target = _absolute(target_path)
        return next((l for l in self.list_links() if l.target_path == target), None)

    # ------------------------------------------------------------------
    # Create / remove
    # ------------------------------------------------------------------

    def create_symlink(self, source_id: str, target_path: Path | str) -> LinkRecord:
        """Symlink ``target_path`` to the source's plaintext blob.

        Raises:
            NotFound: If the source record or its blob is missing.
            PreconditionViolation: If the source is encrypted. Checked
                before anything on disk changes.
            PermissionDenied: If the OS refuses to create symlinks, so
                the caller can fall back to a copy.
        """
        record = self.files.manifest.find(source_id)
        if record.encrypted:
            raise PreconditionViolation(
                "Encrypted files cannot be symlinked, use a copy instead", source_id
            )

        source = self.files.record_path(record)
        if not source.exists():
            raise NotFound("Source file not found", str(source))

        target = _absolute(target_path)
        self._clear(target)
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        try:
            os.symlink(source, target)
        except OSError as exc:
            if exc.errno in (errno.EPERM, errno.EACCES) or (
                getattr(exc, "winerror", None) == _WINERROR_PRIVILEGE_NOT_HELD
            ):
                raise PermissionDenied(
                    "Symlink creation blocked by the operating system", target
                ) from exc
            raise

        link = LinkRecord(source_id=source_id, target_path=target, type=LinkType.SYMLINK)
        self._register(link)
        logger.info("Linked %s -> %s", target, source)
        return link

    def create_copy(
        self,
        source_id: str,
        target_path: Path | str,
        secret: Optional[Secret] = None,
        auto_sync: bool = False,
    ) -> LinkRecord:
        """Write a plaintext copy of the source at ``target_path``."""
        content = serialize_env(self.files.read_variables(source_id, secret))

        target = _absolute(target_path)
        self._clear(target)
        Path(target).parent.mkdir(parents=True, exist_ok=True)
        Path(target).write_text(content, encoding="utf-8")

        link = LinkRecord(
            source_id=source_id,
            target_path=target,
            type=LinkType.COPY,
            auto_sync=auto_sync,
        )
        self._register(link)
        logger.info("Copied %s -> %s", source_id, target)
        return link

    def _clear(self, target: str) -> None:
        """Drop whatever is registered or present at a target path."""
        _remove_target(target)
        self._deregister(target)

    def unlink(self, target_path: Path | str) -> bool:
        """Remove a link's registry entry and filesystem object.

        Returns:
            True if the target was registered.
        """
        target = _absolute(target_path)
        _remove_target(target)
        was_registered = self._deregister(target)
        if was_registered:
            logger.info("Unlinked %s", target)
        return was_registered

    def remove_links_for(self, source_id: str) -> list[LinkRecord]:
        """Unlink every projection of a source. Returns the removed records."""
        removed = self.links_for(source_id)
        for link in removed:
            self.unlink(link.target_path)
        return removed

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def sync_copies(
        self,
        source_id: str,
        secret: Optional[Secret] = None,
        auto_only: bool = False,
    ) -> CopySyncReport:
        """Rewrite the registered copies of a source.

        The source is read once. A write failure on one target is
        recorded and the remaining targets are still updated. With
        ``auto_only`` only copies registered with ``auto_sync`` are
        touched.
        """
        report = CopySyncReport()
        copies = [
            l for l in self.links_for(source_id)
            if l.type == LinkType.COPY and (l.auto_sync or not auto_only)
        ]
        if not copies:
            return report

        content = serialize_env(self.files.read_variables(source_id, secret))
        for copy in copies:
            try:
                Path(copy.target_path).write_text(content, encoding="utf-8")
                report.updated += 1
            except OSError as exc:
                logger.warning("Failed to sync %s: %s", copy.target_path, exc)
                report.failures.append(f"{copy.target_path}: {exc}")
        return report

    def sync_all_copies(self, secret: Optional[Secret] = None) -> dict[str, CopySyncReport]:
        """Refresh copies for every source that has any, keyed by source id."""
        sources = dict.fromkeys(
            l.source_id for l in self.list_links() if l.type == LinkType.COPY
        )
        reports: dict[str, CopySyncReport] = {}
        for source_id in sources:
            try:
                reports[source_id] = self.sync_copies(source_id, secret)
            except DotvaultError as exc:
                logger.warning("Failed to read %s: %s", source_id, exc)
                reports[source_id] = CopySyncReport(failures=[f"{source_id}: {exc}"])
        return reports

    # ------------------------------------------------------------------
    # Validation / repair
    # ------------------------------------------------------------------

    def expected_source(self, link: LinkRecord) -> Optional[Path]:
        record = self.files.manifest.load().get(link.source_id)
        if record is None:
            return None
        return self.files.record_path(record)

    def validate_link(self, link: LinkRecord) -> LinkHealth:
        """Classify a link as missing, wrong-type, stale-target, or valid.

        A symlink is stale when its resolved path is not the current
        blob path of its source (source moved, renamed, re-encrypted,
        or deleted).
        """
        target = link.target_path
        if not os.path.lexists(target):
            return LinkHealth.MISSING

        is_symlink = os.path.islink(target)
        if link.type == LinkType.SYMLINK:
            if not is_symlink:
                return LinkHealth.WRONG_TYPE
            expected = self.expected_source(link)
            if expected is None or not expected.exists():
                return LinkHealth.STALE_TARGET
            if os.path.realpath(target) != os.path.realpath(expected):
                return LinkHealth.STALE_TARGET
            return LinkHealth.VALID

        if is_symlink or not os.path.isfile(target):
            return LinkHealth.WRONG_TYPE
        return LinkHealth.VALID

    def repair_links(self, secret: Optional[Secret] = None) -> RepairReport:
        """Recreate every invalid link in place.

        Links whose source no longer exists are removed outright; any
        other failure is recorded and the pass continues.
        """
        report = RepairReport()
        for link in self.list_links():
            health = self.validate_link(link)
            if health == LinkHealth.VALID:
                continue

            try:
                if not self.files.manifest.exists(link.source_id):
                    self.unlink(link.target_path)
                    report.removed += 1
                    logger.info("Removed link to deleted source: %s", link.target_path)
                    continue
                if link.type == LinkType.SYMLINK:
                    self.create_symlink(link.source_id, link.target_path)
                else:
                    self.create_copy(link.source_id, link.target_path, secret, link.auto_sync)
                report.repaired += 1
            except (DotvaultError, OSError) as exc:
                logger.warning("Could not repair %s: %s", link.target_path, exc)
                report.errors.append(f"{link.target_path}: {exc}")
        return report
