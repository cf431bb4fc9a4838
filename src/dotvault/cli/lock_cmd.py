"""Protection and rotation commands: lock, unlock, passwd, rotate."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ._common import console, handle_errors, home_option, open_vault, resolve_secret
from ..crypto import KeyMaterial, Password, Secret
from ..errors import PreconditionViolation


def _print_rotation(report) -> None:
    console.print(f"  Re-encrypted {report.processed} file(s)")
    for error in report.errors:
        console.print(f"    [red]{error}[/]")


def register_lock_commands(main: click.Group) -> None:
    """Register lock, unlock, passwd, and rotate."""

    @main.command("lock")
    @click.argument("file_id", required=False)
    @home_option
    @click.option("--all", "lock_all", is_flag=True, help="Lock every immutable file that is writable.")
    @handle_errors
    def lock_cmd(file_id: Optional[str], home: str, lock_all: bool):
        """Write-protect a file (or all immutable files)."""
        vault = open_vault(home, need_secret=False)
        if lock_all or not file_id:
            count = vault.lock_all()
            console.print(f"[green]Locked {count} file(s)[/]")
            return
        vault.lock(file_id)
        console.print(f"[green]Locked[/] [cyan]{file_id}[/]")

    @main.command("unlock")
    @click.argument("file_id", required=False)
    @home_option
    @click.option("--all", "unlock_all", is_flag=True, help="Unlock every locked file.")
    @handle_errors
    def unlock_cmd(file_id: Optional[str], home: str, unlock_all: bool):
        """Remove write protection for manual edits."""
        vault = open_vault(home, need_secret=False)
        if unlock_all or not file_id:
            count = vault.unlock_all()
            console.print(f"[green]Unlocked {count} file(s)[/]")
            return
        path = vault.unlock(file_id)
        console.print(f"[green]Unlocked[/] {path}")
        console.print("[dim]Run `dotvault lock` when you are done editing.[/]")

    @main.command("passwd")
    @home_option
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    @handle_errors
    def passwd_cmd(home: str, yes: bool):
        """Change the vault password and re-encrypt every file."""
        vault = open_vault(home, need_secret=False)
        old = Password(click.prompt("Current password", hide_input=True))
        new = Password(click.prompt("New password", hide_input=True, confirmation_prompt=True))
        if not yes and not click.confirm("Re-encrypt all files under the new password?", default=False):
            return
        vault.secret = old
        _print_rotation(vault.change_password(old, new))
        console.print("[yellow]Remember your new password; it cannot be recovered.[/]")

    @main.command("rotate")
    @home_option
    @click.option("--method", type=click.Choice(["password", "keyfile", "none"]), required=True)
    @click.option("--key-file", type=click.Path(exists=True, dir_okay=False), default=None)
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    @handle_errors
    def rotate_cmd(home: str, method: str, key_file: Optional[str], yes: bool):
        """Switch encryption method (password, key file, or none)."""
        vault = open_vault(home, need_secret=False)
        old = resolve_secret(vault.config)

        new: Optional[Secret] = None
        if method == "keyfile":
            if not key_file:
                raise PreconditionViolation("--key-file is required for the keyfile method")
            new = KeyMaterial.from_file(Path(key_file))
        elif method == "password":
            new = Password(click.prompt("New password", hide_input=True, confirmation_prompt=True))

        if new is None:
            console.print("[bold yellow]Files will be stored as plaintext in the repository.[/]")
        if not yes and not click.confirm("Rotate encryption for all files?", default=False):
            return
        vault.secret = old
        _print_rotation(vault.rotate(old, new))
