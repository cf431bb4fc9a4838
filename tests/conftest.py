"""Shared test fixtures for dotvault."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from dotvault.config import VaultHome
from dotvault.crypto import Password
from dotvault.vault import Vault

PASSWORD = "correctpw12"


@pytest.fixture(autouse=True)
def git_identity(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the user's config and give it a commit identity."""
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text("[init]\n\tdefaultBranch = main\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for var in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(var, "dotvault tests")
    for var in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(var, "tests@dotvault.local")
    monkeypatch.delenv("DOTVAULT_PASSWORD", raising=False)


@pytest.fixture
def remote(tmp_path: Path) -> str:
    """An empty bare repository standing in for the git remote."""
    path = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", str(path)], check=True, capture_output=True)
    return str(path)


@pytest.fixture
def home(tmp_path: Path) -> VaultHome:
    return VaultHome(tmp_path / "home")


@pytest.fixture
def vault(remote: str, home: VaultHome) -> Vault:
    """A plaintext, mutable-by-default vault."""
    return Vault.initialize(remote, home, immutable_by_default=False)


@pytest.fixture
def secret() -> Password:
    return Password(PASSWORD)


@pytest.fixture
def encrypted_vault(remote: str, home: VaultHome, secret: Password) -> Vault:
    """A password-encrypted, mutable-by-default vault."""
    return Vault.initialize(remote, home, secret=secret, immutable_by_default=False)


@pytest.fixture
def git_log():
    """Return a helper listing commit subjects, newest first."""

    def _log(worktree: Path) -> list[str]:
        result = subprocess.run(
            ["git", "log", "--format=%s"],
            cwd=worktree, check=True, capture_output=True, text=True,
        )
        return result.stdout.splitlines()

    return _log
