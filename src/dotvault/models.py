"""
Pydantic models for everything dotvault persists or reports.

Documents that live in the versioned tree (manifest, link registry)
serialize with camelCase keys; local configuration stays snake_case
YAML.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

MANIFEST_VERSION = "1.0.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Document(BaseModel):
    """Base for camelCase JSON documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True, exclude_none=True)


class EncryptionMethod(str, Enum):
    """How the vault secret is supplied."""

    PASSWORD = "password"
    KEYFILE = "keyfile"


class LinkType(str, Enum):
    """Kind of external projection."""

    SYMLINK = "symlink"
    COPY = "copy"


class LinkHealth(str, Enum):
    """Result of validating a single link."""

    MISSING = "missing"
    WRONG_TYPE = "wrong-type"
    STALE_TARGET = "stale-target"
    VALID = "valid"


class FileRecord(_Document):
    """One tracked variable file.

    ``id`` is ``project/environment/name`` and maps one-to-one onto
    the storage path inside the vault (plus ``.enc`` when encrypted).
    """

    id: str
    name: str
    project: str
    environment: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    encrypted: bool = False
    immutable: bool = False


class VaultManifest(_Document):
    """Authoritative index of tracked files.

    ``projects`` is derived: it always equals the distinct projects of
    ``files`` in first-seen order, and is recomputed on every
    construction and mutation.
    """

    version: str = MANIFEST_VERSION
    files: list[FileRecord] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _derive_projects(self) -> "VaultManifest":
        self.reindex()
        return self

    def reindex(self) -> None:
        self.projects = list(dict.fromkeys(f.project for f in self.files))

    def get(self, file_id: str) -> Optional[FileRecord]:
        return next((f for f in self.files if f.id == file_id), None)


class LinkRecord(_Document):
    """A registered symlink or copy of a vault entry."""

    source_id: str
    target_path: str
    type: LinkType
    auto_sync: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class VaultConfig(BaseModel):
    """Local, non-versioned vault configuration."""

    repo_url: str
    encryption_enabled: bool = True
    encryption_method: Optional[EncryptionMethod] = None
    key_path: Optional[Path] = None
    immutable_by_default: bool = True
    branch: str = "main"
    last_sync: Optional[datetime] = None


class GitStatus(BaseModel):
    """Read-only snapshot of the working tree against its upstream."""

    branch: str
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    modified: int = 0
    has_commits: bool = True

    @property
    def dirty(self) -> bool:
        return self.modified > 0


class SyncResult(BaseModel):
    """Which sync steps actually did something."""

    committed: bool = False
    pulled: bool = False
    pushed: bool = False


class CopySyncReport(BaseModel):
    """Outcome of refreshing the copies of one source."""

    updated: int = 0
    failures: list[str] = Field(default_factory=list)


class RepairReport(BaseModel):
    """Outcome of a link repair pass."""

    repaired: int = 0
    removed: int = 0
    errors: list[str] = Field(default_factory=list)


class RotationReport(BaseModel):
    """Outcome of re-encrypting the vault under a new secret."""

    processed: int = 0
    errors: list[str] = Field(default_factory=list)
