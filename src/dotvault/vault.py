"""
The Vault -- top-level operations over the four consistency domains.

Every operation follows the same path: resolve the FileRecord through
the manifest, seal or open content through the envelope, write the
blob (bracketed by the protection guard when locked), write the
manifest (which commits), and refresh auto-sync copies.

Usage:
    vault = Vault.open(secret=Password("..."))
    record = vault.create("app", "dev", {"PORT": "3000"})
    vault.link(record.id, "~/src/app/.env", LinkType.COPY, auto_sync=True)
    vault.sync()
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .config import VaultHome
from .crypto import CryptoEnvelope, KeyMaterial, Password, SaltStore, Secret
from .editor import EditorSpec, open_in_editor
from .envfile import parse_env, serialize_env
from .errors import CryptoFailure, DotvaultError, PreconditionViolation
from .files import DEFAULT_NAME, EnvFileStore, file_id
from .git import GitSyncAdapter
from .links import LinkRegistry
from .manifest import MANIFEST_FILE, ManifestStore
from .models import (
    CopySyncReport,
    EncryptionMethod,
    FileRecord,
    GitStatus,
    LinkRecord,
    LinkType,
    RotationReport,
    SyncResult,
    VaultConfig,
    VaultManifest,
)
from .protection import ProtectionGuard

logger = logging.getLogger("dotvault.vault")


class Vault:
    """One configured vault with an optional unlocked secret.

    Args:
        home: The dotvault home directory.
        config: Loaded vault configuration.
        secret: Secret for encrypted files; required to read or write
            them when encryption is enabled.
        guard: Protection guard (injectable for tests).
    """

    def __init__(
        self,
        home: VaultHome,
        config: VaultConfig,
        secret: Optional[Secret] = None,
        guard: Optional[ProtectionGuard] = None,
    ):
        self.home = home
        self.config = config
        self.secret = secret
        self.git = GitSyncAdapter(home.vault_dir, branch=config.branch)
        self.manifest = ManifestStore(home.vault_dir, git=self.git)
        self.envelope = CryptoEnvelope(SaltStore(home.vault_dir))
        self.guard = guard or ProtectionGuard()
        self.files = EnvFileStore(home.vault_dir, self.manifest, self.envelope, self.guard)
        self.links = LinkRegistry(home.links_path, self.files)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        home: Optional[VaultHome] = None,
        secret: Optional[Secret] = None,
        guard: Optional[ProtectionGuard] = None,
    ) -> "Vault":
        home = home or VaultHome()
        return cls(home, home.load_config(), secret=secret, guard=guard)

    @classmethod
    def initialize(
        cls,
        repo_url: str,
        home: Optional[VaultHome] = None,
        *,
        secret: Optional[Secret] = None,
        immutable_by_default: bool = True,
        branch: str = "main",
        key_path: Optional[Path] = None,
        guard: Optional[ProtectionGuard] = None,
    ) -> "Vault":
        """Bootstrap the vault tree and write the local config.

        Encryption is enabled when a secret is given; its kind decides
        the method. The salt is created (or reused from a cloned vault)
        and committed so every checkout derives the same keys.
        """
        home = home or VaultHome()
        method = None
        if isinstance(secret, Password):
            method = EncryptionMethod.PASSWORD
        elif isinstance(secret, KeyMaterial):
            method = EncryptionMethod.KEYFILE
            key_path = key_path or secret.source

        config = VaultConfig(
            repo_url=repo_url,
            encryption_enabled=secret is not None,
            encryption_method=method,
            key_path=key_path,
            immutable_by_default=immutable_by_default,
            branch=branch,
        )

        git = GitSyncAdapter(home.vault_dir, branch=branch)
        outcome = git.bootstrap(repo_url, {MANIFEST_FILE: VaultManifest().to_json() + "\n"})
        logger.info("Vault %s from %s", outcome, repo_url)

        vault = cls(home, config, secret=secret, guard=guard)
        if secret is not None:
            vault.envelope.salt_store.get_or_create()
            git.commit_all("Add encryption salt")
            if not vault.verify_secret(secret):
                raise CryptoFailure("Secret does not open the existing vault", repo_url)

        home.save_config(config)
        return vault

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def encrypting(self) -> bool:
        return self.config.encryption_enabled

    def _require_secret(self, fid: str) -> Secret:
        if self.secret is None:
            raise PreconditionViolation("A secret is required for encrypted files", fid)
        return self.secret

    def _refresh_auto_copies(self, fid: str) -> Optional[CopySyncReport]:
        if not any(l.auto_sync for l in self.links.links_for(fid)):
            return None
        report = self.links.sync_copies(fid, self.secret, auto_only=True)
        if report.failures:
            logger.warning("Some copies of %s failed to update: %s", fid, report.failures)
        return report

    def path_of(self, fid: str) -> Path:
        return self.files.record_path(self.manifest.find(fid))

    # ------------------------------------------------------------------
    # Create / read / update / delete
    # ------------------------------------------------------------------

    def create(
        self,
        project: str,
        environment: str,
        variables: dict[str, str],
        *,
        name: str = DEFAULT_NAME,
        description: Optional[str] = None,
        immutable: Optional[bool] = None,
    ) -> FileRecord:
        """Create (or replace) a variable file and commit it."""
        fid = file_id(project, environment, name)
        if self.encrypting:
            self._require_secret(fid)

        now = datetime.now(timezone.utc)
        previous = self.manifest.load().get(fid)
        record = FileRecord(
            id=fid,
            name=name,
            project=project,
            environment=environment,
            description=description,
            created_at=previous.created_at if previous else now,
            updated_at=now,
            encrypted=self.encrypting,
            immutable=self.config.immutable_by_default if immutable is None else immutable,
        )

        self.files.write_variables(record, variables, self.secret)
        if previous and previous.encrypted != record.encrypted:
            self.files.remove_blob(previous)
        self.manifest.upsert(record, f"Add {fid}")
        if previous:
            self._refresh_auto_copies(fid)
        logger.info("Created %s", fid)
        return record

    def read(self, fid: str) -> dict[str, str]:
        return self.files.read_variables(fid, self.secret)

    def update(self, fid: str, variables: dict[str, str]) -> FileRecord:
        """Replace a file's variables, commit, and refresh auto-sync copies."""
        record = self.manifest.find(fid)
        self.files.write_variables(record, variables, self.secret)
        record.updated_at = datetime.now(timezone.utc)
        self.manifest.upsert(record, f"Update {fid}")
        self._refresh_auto_copies(fid)
        return record

    def get_variable(self, fid: str, key: str) -> Optional[str]:
        return self.read(fid).get(key)

    def set_variable(self, fid: str, key: str, value: str) -> FileRecord:
        variables = self.read(fid)
        variables[key] = value
        return self.update(fid, variables)

    def unset_variable(self, fid: str, key: str) -> bool:
        """Remove a key. Returns False (and writes nothing) if absent."""
        variables = self.read(fid)
        if key not in variables:
            return False
        del variables[key]
        self.update(fid, variables)
        return True

    def delete(self, fid: str) -> list[LinkRecord]:
        """Delete a file, its blob, and every link to it.

        Returns:
            The link records that were removed.
        """
        record = self.manifest.find(fid)
        removed = self.links.remove_links_for(fid)
        self.files.remove_blob(record)
        self.manifest.remove(fid, f"Delete {fid}")
        logger.info("Deleted %s (%d links removed)", fid, len(removed))
        return removed

    def list_files(self, project: Optional[str] = None) -> list[FileRecord]:
        return self.manifest.list_files(project)

    def list_projects(self) -> list[str]:
        return self.manifest.list_projects()

    # ------------------------------------------------------------------
    # Import / export / edit
    # ------------------------------------------------------------------

    def import_file(
        self,
        source: Path | str,
        project: str,
        environment: str,
        *,
        name: str = DEFAULT_NAME,
        description: Optional[str] = None,
        immutable: Optional[bool] = None,
    ) -> FileRecord:
        """Import an existing variable file into the vault.

        Raises:
            PreconditionViolation: If ``source`` does not exist.
        """
        source_path = Path(source).expanduser()
        if not source_path.is_file():
            raise PreconditionViolation("File to import does not exist", str(source_path))
        variables = parse_env(source_path.read_text(encoding="utf-8"))
        return self.create(
            project, environment, variables,
            name=name, description=description, immutable=immutable,
        )

    def export(self, fid: str, target: Path | str) -> Path:
        """Write a plaintext copy without registering it as a link."""
        target_path = Path(target).expanduser()
        target_path.parent.mkdir(parents=True, exist_ok=True)
        target_path.write_text(serialize_env(self.read(fid)), encoding="utf-8")
        return target_path

    def edit(
        self,
        fid: str,
        editor: EditorSpec,
        launcher: Callable[[Path, EditorSpec], None] = open_in_editor,
    ) -> bool:
        """Edit a file's plaintext in an external editor.

        The plaintext goes to a private temporary file which is removed
        afterwards. Returns True if the variables changed.
        """
        before = self.read(fid)
        fd, tmp_name = tempfile.mkstemp(prefix="dotvault-", suffix=".env")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(serialize_env(before))
            launcher(tmp_path, editor)
            after = parse_env(tmp_path.read_text(encoding="utf-8"))
        finally:
            tmp_path.unlink(missing_ok=True)

        if after == before:
            return False
        self.update(fid, after)
        return True

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def link(
        self,
        fid: str,
        target: Path | str,
        mode: LinkType = LinkType.SYMLINK,
        auto_sync: bool = False,
    ) -> LinkRecord:
        if mode == LinkType.SYMLINK:
            return self.links.create_symlink(fid, target)
        return self.links.create_copy(fid, target, self.secret, auto_sync)

    def unlink(self, target: Path | str) -> bool:
        return self.links.unlink(target)

    # ------------------------------------------------------------------
    # Protection
    # ------------------------------------------------------------------

    def lock(self, fid: str) -> Path:
        path = self.path_of(fid)
        self.guard.lock(path)
        return path

    def unlock(self, fid: str) -> Path:
        path = self.path_of(fid)
        self.guard.unlock(path)
        return path

    def lock_status(self) -> list[tuple[FileRecord, bool]]:
        return [
            (record, self.guard.is_locked(self.files.record_path(record)))
            for record in self.list_files()
        ]

    def find_unlocked(self) -> list[FileRecord]:
        """Immutable records whose blob is currently writable."""
        return [r for r, locked in self.lock_status() if r.immutable and not locked]

    def lock_all(self) -> int:
        count = 0
        for record in self.find_unlocked():
            self.guard.lock(self.files.record_path(record))
            count += 1
        return count

    def unlock_all(self) -> int:
        count = 0
        for record, locked in self.lock_status():
            if locked:
                self.guard.unlock(self.files.record_path(record))
                count += 1
        return count

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(self) -> SyncResult:
        result = self.git.sync()
        self.config = self.home.update_config(last_sync=datetime.now(timezone.utc))
        return result

    def pull(self) -> SyncResult:
        """One-way sync: merge remote changes without pushing."""
        result = SyncResult(pulled=self.git.pull())
        self.config = self.home.update_config(last_sync=datetime.now(timezone.utc))
        return result

    def push(self, message: str = "Sync from dotvault") -> SyncResult:
        """One-way sync: commit local changes if any, then push."""
        result = SyncResult()
        if self.git.status().dirty:
            result.committed = self.git.commit_all(message)
        self.git.push()
        result.pushed = True
        self.config = self.home.update_config(last_sync=datetime.now(timezone.utc))
        return result

    def status(self) -> GitStatus:
        return self.git.status()

    def files_for_directory(self, directory: Path | str) -> list[FileRecord]:
        """Records whose project matches a directory's name, case-insensitively."""
        project = Path(directory).expanduser().resolve().name.lower()
        return [r for r in self.list_files() if r.project.lower() == project]

    # ------------------------------------------------------------------
    # Secrets and rotation
    # ------------------------------------------------------------------

    def verify_secret(self, secret: Secret) -> bool:
        """True if ``secret`` seals and opens, and opens an existing blob."""
        probe = None
        for record in self.list_files():
            if record.encrypted:
                path = self.files.record_path(record)
                if path.exists():
                    probe = path.read_text(encoding="utf-8")
                    break
        return self.envelope.verify(secret, probe)

    def change_password(self, old: Password, new: Password) -> RotationReport:
        """Re-encrypt every encrypted file under a new password."""
        if self.config.encryption_method != EncryptionMethod.PASSWORD:
            raise PreconditionViolation("Vault is not password-encrypted", str(self.home.root))
        if old == new:
            raise PreconditionViolation("New password must differ from the current one")
        return self.rotate(old, new)

    def rotate(self, old: Optional[Secret], new: Optional[Secret]) -> RotationReport:
        """Switch the vault to a new secret, or disable encryption with ``None``.

        The old secret is verified first. Each encrypted file is read
        under the old secret and rewritten under the new one; per-file
        failures are collected and do not stop the pass. Config and the
        active secret are updated, and the whole rotation lands as a
        single commit.

        Raises:
            CryptoFailure: If the old secret does not open the vault.
        """
        if self.encrypting:
            if old is None or not self.verify_secret(old):
                raise CryptoFailure("Current secret is incorrect", str(self.home.root))

        report = RotationReport()
        manifest = self.manifest.load()
        for index, record in enumerate(manifest.files):
            if not record.encrypted:
                continue
            try:
                manifest.files[index] = self._reseal(record, old, new)
                report.processed += 1
            except (DotvaultError, OSError) as exc:
                logger.warning("Failed to rotate %s: %s", record.id, exc)
                report.errors.append(f"{record.id}: {exc}")

        changes: dict = {"encryption_enabled": new is not None}
        if isinstance(new, Password):
            changes.update(encryption_method=EncryptionMethod.PASSWORD, key_path=None)
        elif isinstance(new, KeyMaterial):
            changes.update(encryption_method=EncryptionMethod.KEYFILE, key_path=new.source)
        else:
            changes.update(encryption_method=None, key_path=None)
        self.config = self.home.update_config(**changes)
        self.secret = new
        self.manifest.save(manifest)
        self.git.commit_all("Rotate encryption secret")
        return report

    def _reseal(
        self, record: FileRecord, old: Optional[Secret], new: Optional[Secret]
    ) -> FileRecord:
        variables = parse_env(self.files.read_text(record, old))
        updated = record.model_copy(
            update={"encrypted": new is not None, "updated_at": datetime.now(timezone.utc)}
        )
        self.files.write_variables(updated, variables, new)
        if updated.encrypted != record.encrypted:
            self.files.remove_blob(record)
        return updated
