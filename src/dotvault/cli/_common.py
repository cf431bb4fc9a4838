"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the ``--home`` option, secret
resolution, and the error boundary used by every command.
"""

from __future__ import annotations

import functools
import logging
import os
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from .. import DOTVAULT_HOME
from ..config import VaultHome
from ..crypto import KeyMaterial, Password, Secret
from ..errors import DotvaultError, PreconditionViolation
from ..models import EncryptionMethod, VaultConfig
from ..vault import Vault

console = Console()
logger = logging.getLogger("dotvault.cli")

PASSWORD_ENV = "DOTVAULT_PASSWORD"

home_option = click.option(
    "--home", default=DOTVAULT_HOME, type=click.Path(), help="dotvault home directory."
)


def handle_errors(func):
    """Print dotvault errors in red and exit 1 instead of a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except DotvaultError as exc:
            console.print(f"[bold red]Error:[/] {exc}")
            raise SystemExit(1)

    return wrapper


def prompt_password(confirm: bool = False, label: str = "Vault password") -> Password:
    value = os.environ.get(PASSWORD_ENV)
    if value is None:
        value = click.prompt(label, hide_input=True, confirmation_prompt=confirm)
    return Password(value)


def resolve_secret(config: VaultConfig) -> Optional[Secret]:
    """Secret for the configured encryption method, or None if disabled."""
    if not config.encryption_enabled:
        return None
    if config.encryption_method == EncryptionMethod.KEYFILE:
        if config.key_path is None:
            raise PreconditionViolation("Key file encryption configured without a key path")
        return KeyMaterial.from_file(config.key_path)
    return prompt_password()


def open_vault(home: str, need_secret: bool = True) -> Vault:
    vault_home = VaultHome(Path(home))
    config = vault_home.load_config()
    secret = resolve_secret(config) if need_secret else None
    return Vault(vault_home, config, secret=secret)


def parse_assignments(pairs: tuple[str, ...]) -> dict[str, str]:
    """Turn ``KEY=value`` arguments into a dict."""
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=value, got {pair!r}")
        variables[key.strip()] = value
    return variables
