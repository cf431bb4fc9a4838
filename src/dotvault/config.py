"""
Local vault home and configuration.

Layout of the home directory (``$DOTVAULT_HOME`` or ``~/.dotvault``)::

    config.yaml   VaultConfig (never versioned)
    links.json    link registry (never versioned)
    vault/        the git working tree
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from . import DOTVAULT_HOME
from .errors import ManifestCorrupt, NotConfigured
from .models import VaultConfig

logger = logging.getLogger("dotvault.config")

CONFIG_FILE = "config.yaml"
LINKS_FILE = "links.json"
VAULT_DIR = "vault"


class VaultHome:
    """Paths of one dotvault home directory."""

    def __init__(self, root: Optional[Path | str] = None):
        self.root = Path(root or DOTVAULT_HOME).expanduser()

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE

    @property
    def links_path(self) -> Path:
        return self.root / LINKS_FILE

    @property
    def vault_dir(self) -> Path:
        return self.root / VAULT_DIR

    def is_configured(self) -> bool:
        return self.config_path.exists()

    def load_config(self) -> VaultConfig:
        """Load the configuration.

        Raises:
            NotConfigured: If no config file exists.
            ManifestCorrupt: If the file cannot be parsed.
        """
        if not self.config_path.exists():
            raise NotConfigured("dotvault is not configured, run `dotvault init`", str(self.root))
        try:
            data = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
            return VaultConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as exc:
            raise ManifestCorrupt("Config file is unreadable", str(self.config_path)) from exc

    def save_config(self, config: VaultConfig) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json", exclude_none=True)
        self.config_path.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
        logger.debug("Saved config to %s", self.config_path)

    def update_config(self, **changes: Any) -> VaultConfig:
        """Merge ``changes`` into the stored config and persist it."""
        current = self.load_config()
        updated = current.model_copy(update=changes)
        self.save_config(updated)
        return updated

    def clear(self) -> None:
        """Forget local config and link registry (the vault tree stays)."""
        for path in (self.config_path, self.links_path):
            if path.exists():
                path.unlink()
