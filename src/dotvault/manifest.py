"""
The manifest: authoritative index of tracked files and projects.

Stored as one JSON document at the root of the vault tree. Every
mutation is written through immediately and committed via the git
adapter; nothing is buffered in memory between calls.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .errors import ManifestCorrupt, NotFound
from .git import GitSyncAdapter
from .models import FileRecord, VaultManifest

logger = logging.getLogger("dotvault.manifest")

MANIFEST_FILE = ".dotvault-manifest.json"


class ManifestStore:
    """Reads and writes the vault manifest.

    Args:
        vault_dir: Root of the vault working tree.
        git: Adapter that commits each mutation. ``None`` writes
            without committing (used before the repository exists).
    """

    def __init__(self, vault_dir: Path, git: Optional[GitSyncAdapter] = None):
        self.vault_dir = Path(vault_dir)
        self.path = self.vault_dir / MANIFEST_FILE
        self.git = git

    def load(self) -> VaultManifest:
        """Load the manifest, or an empty one if none exists yet.

        Raises:
            ManifestCorrupt: If the document is not valid JSON or does
                not match the manifest schema.
        """
        if not self.path.exists():
            return VaultManifest()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return VaultManifest.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ManifestCorrupt("Manifest is unreadable", str(self.path)) from exc

    def save(self, manifest: VaultManifest, message: Optional[str] = None) -> None:
        """Write the whole manifest and, when a message is given, commit."""
        manifest.reindex()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(manifest.to_json() + "\n", encoding="utf-8")
        if self.git is not None and message:
            self.git.commit_all(message)

    def find(self, file_id: str) -> FileRecord:
        record = self.load().get(file_id)
        if record is None:
            raise NotFound("Env file not found", file_id)
        return record

    def exists(self, file_id: str) -> bool:
        return self.load().get(file_id) is not None

    def upsert(self, record: FileRecord, message: Optional[str] = None) -> VaultManifest:
        """Insert or replace a record by id."""
        manifest = self.load()
        for index, existing in enumerate(manifest.files):
            if existing.id == record.id:
                manifest.files[index] = record
                break
        else:
            manifest.files.append(record)

        self.save(manifest, message or f"Update {record.id}")
        logger.debug("Upserted %s", record.id)
        return manifest

    def remove(self, file_id: str, message: Optional[str] = None) -> FileRecord:
        """Delete a record; its project disappears with its last file.

        Raises:
            NotFound: If no record has this id.
        """
        manifest = self.load()
        record = manifest.get(file_id)
        if record is None:
            raise NotFound("Env file not found", file_id)

        manifest.files = [f for f in manifest.files if f.id != file_id]
        self.save(manifest, message or f"Delete {file_id}")
        logger.debug("Removed %s", file_id)
        return record

    def list_files(self, project: Optional[str] = None) -> list[FileRecord]:
        files = self.load().files
        if project:
            return [f for f in files if f.project == project]
        return files

    def list_projects(self) -> list[str]:
        return self.load().projects
