"""Vault lifecycle commands: init, sync, status."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
from rich.panel import Panel

from ._common import console, handle_errors, home_option, open_vault, prompt_password
from ..config import VaultHome
from ..crypto import KeyMaterial
from ..git import GitSyncAdapter
from ..vault import Vault


def register_sync_commands(main: click.Group) -> None:
    """Register init, sync, and status."""

    @main.command("init")
    @click.argument("repo_url")
    @home_option
    @click.option("--no-encrypt", is_flag=True, help="Store files as plaintext.")
    @click.option("--key-file", type=click.Path(exists=True, dir_okay=False), default=None,
                  help="Derive the key from a private key file instead of a password.")
    @click.option("--mutable", is_flag=True, help="Do not lock new files by default.")
    @click.option("--branch", default="main", show_default=True)
    @handle_errors
    def init_cmd(
        repo_url: str,
        home: str,
        no_encrypt: bool,
        key_file: Optional[str],
        mutable: bool,
        branch: str,
    ):
        """Clone (or create) the vault repository and configure dotvault."""
        vault_home = VaultHome(Path(home))
        if vault_home.is_configured():
            console.print("[yellow]dotvault is already configured.[/]")
            raise SystemExit(1)

        if not GitSyncAdapter(vault_home.vault_dir).check_remote(repo_url):
            console.print("[yellow]Remote not reachable yet; continuing with a local repository.[/]")

        secret = None
        if key_file:
            secret = KeyMaterial.from_file(key_file)
        elif not no_encrypt:
            secret = prompt_password(confirm=True)

        vault = Vault.initialize(
            repo_url,
            vault_home,
            secret=secret,
            immutable_by_default=not mutable,
            branch=branch,
        )
        method = vault.config.encryption_method.value if vault.config.encryption_method else "none"
        console.print(Panel(
            f"Repository: [cyan]{repo_url}[/]\n"
            f"Vault: {vault_home.vault_dir}\n"
            f"Encryption: {method}\n"
            f"Immutable by default: {vault.config.immutable_by_default}",
            title="dotvault initialized",
            border_style="green",
        ))

    @main.command("sync")
    @home_option
    @click.option("--pull", "pull_only", is_flag=True, help="Only pull remote changes.")
    @click.option("--push", "push_only", is_flag=True, help="Only commit and push local changes.")
    @handle_errors
    def sync_cmd(home: str, pull_only: bool, push_only: bool):
        """Commit local changes, pull, and push if ahead."""
        vault = open_vault(home, need_secret=False)
        if pull_only and not push_only:
            if vault.pull().pulled:
                console.print("[green]Pulled latest changes.[/]")
            else:
                console.print("[yellow]No upstream to pull from yet.[/]")
            return
        if push_only and not pull_only:
            result = vault.push()
        else:
            result = vault.sync()
        if not (result.committed or result.pushed):
            console.print("[green]Already in sync.[/]")
            return
        for step in ("committed", "pulled", "pushed"):
            if getattr(result, step):
                console.print(f"  [green]{step}[/]")

    @main.command("status")
    @home_option
    @handle_errors
    def status_cmd(home: str):
        """Show branch, ahead/behind counts, and local modifications."""
        vault = open_vault(home, need_secret=False)
        st = vault.status()
        console.print(
            f"\n  Branch: [cyan]{st.branch}[/]"
            f"  Upstream: {st.upstream or '[dim]none[/]'}"
            f"\n  Ahead: {st.ahead}  Behind: {st.behind}  Modified: {st.modified}"
        )
        if vault.config.last_sync:
            console.print(f"  [dim]Last sync: {vault.config.last_sync.isoformat()}[/]")
        console.print()
