"""
On-disk variable blobs inside the vault tree.

A FileRecord ``project/environment/name`` lives at
``<vault>/project/environment/name``, with ``.enc`` appended when the
record is encrypted. This module is the single read path (used by the
vault facade and by link materialization) and the single write path.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .crypto import CryptoEnvelope, Secret
from .envfile import parse_env, serialize_env
from .errors import CryptoFailure, NotFound, PreconditionViolation
from .manifest import ManifestStore
from .models import FileRecord
from .protection import ProtectionGuard

logger = logging.getLogger("dotvault.files")

ENCRYPTED_EXT = ".enc"
DEFAULT_NAME = ".env"


def file_id(project: str, environment: str, name: str = DEFAULT_NAME) -> str:
    """Build the path-shaped id ``project/environment/name``.

    Raises:
        PreconditionViolation: If a component is empty or would escape
            the vault tree.
    """
    for part in (project, environment, name):
        if not part or part in (".", "..") or "/" in part or "\\" in part:
            raise PreconditionViolation(
                "Invalid path component", f"{project}/{environment}/{name}"
            )
    return f"{project}/{environment}/{name}"


class EnvFileStore:
    """Reads, writes, and removes variable blobs for FileRecords."""

    def __init__(
        self,
        vault_dir: Path,
        manifest: ManifestStore,
        envelope: CryptoEnvelope,
        guard: ProtectionGuard,
    ):
        self.vault_dir = Path(vault_dir)
        self.manifest = manifest
        self.envelope = envelope
        self.guard = guard

    def path_for(self, fid: str, encrypted: bool = False) -> Path:
        return self.vault_dir / (fid + (ENCRYPTED_EXT if encrypted else ""))

    def record_path(self, record: FileRecord) -> Path:
        return self.path_for(record.id, record.encrypted)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read_text(self, record: FileRecord, secret: Optional[Secret] = None) -> str:
        """Return the plaintext content of a record's blob.

        Raises:
            NotFound: If the blob is missing on disk.
            PreconditionViolation: If the record is encrypted and no
                secret was given.
            CryptoFailure: If the secret is wrong or the blob tampered.
        """
        path = self.record_path(record)
        if not path.exists():
            raise NotFound("Env file not found on disk", str(path))

        content = path.read_text(encoding="utf-8")
        if not record.encrypted:
            return content

        if secret is None:
            raise PreconditionViolation("A secret is required to read encrypted file", record.id)
        try:
            return self.envelope.open(content, secret)
        except CryptoFailure as exc:
            raise CryptoFailure(exc.message, record.id) from exc

    def read_variables(self, fid: str, secret: Optional[Secret] = None) -> dict[str, str]:
        record = self.manifest.find(fid)
        return parse_env(self.read_text(record, secret))

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write_variables(
        self,
        record: FileRecord,
        variables: dict[str, str],
        secret: Optional[Secret] = None,
    ) -> Path:
        """Serialize, seal if needed, and write a record's blob.

        An existing locked blob is unlocked for the write and relocked
        afterwards; immutable records are locked after every write.
        """
        content = serialize_env(variables)
        if record.encrypted:
            if secret is None:
                raise PreconditionViolation("A secret is required to write encrypted file", record.id)
            content = self.envelope.seal(content, secret)

        path = self.record_path(record)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self.guard.scoped_unlock(path):
            path.write_text(content, encoding="utf-8")

        if record.immutable:
            self.guard.lock(path)
        logger.debug("Wrote %s", path)
        return path

    def remove_blob(self, record: FileRecord, encrypted: Optional[bool] = None) -> bool:
        """Delete a record's blob and prune empty parent directories.

        Args:
            record: The record whose blob to remove.
            encrypted: Override which variant (plain or ``.enc``) to remove.

        Returns:
            True if a file was removed.
        """
        is_encrypted = record.encrypted if encrypted is None else encrypted
        path = self.path_for(record.id, is_encrypted)
        if not path.exists():
            return False

        if self.guard.is_locked(path):
            self.guard.unlock(path)
        path.unlink()

        parent = path.parent
        while parent != self.vault_dir and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent
        logger.debug("Removed %s", path)
        return True
