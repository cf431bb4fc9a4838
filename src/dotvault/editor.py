"""
External editor discovery and invocation.

The vault only needs "spawn, wait, re-read": an editor is launched on a
file path, must exit 0, and the file is read back afterwards.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from .errors import EditorError

logger = logging.getLogger("dotvault.editor")

TERMINAL_EDITORS = {"vi", "vim", "nvim", "nano", "emacs", "micro", "hx"}

# (name, command, platforms or None for all)
_KNOWN_EDITORS: list[tuple[str, tuple[str, ...], Optional[set[str]]]] = [
    ("Neovim", ("nvim",), None),
    ("Vim", ("vim",), None),
    ("VS Code", ("code", "--wait"), None),
    ("Nano", ("nano",), {"linux", "darwin"}),
    ("Gedit", ("gedit",), {"linux"}),
    ("Notepad++", ("notepad++",), {"win32"}),
]


@dataclass(frozen=True)
class EditorSpec:
    """How to invoke one editor."""

    name: str
    command: tuple[str, ...]
    terminal: bool = False

    @classmethod
    def from_command(cls, name: str, command: str) -> "EditorSpec":
        parts = tuple(shlex.split(command))
        if not parts:
            raise EditorError("Empty editor command", name)
        return cls(name=name, command=parts, terminal=Path(parts[0]).name in TERMINAL_EDITORS)


class EditorCatalog:
    """Discovers which editors are usable on this machine.

    Args:
        env: Environment to read ``VISUAL``/``EDITOR`` from.
        which: PATH lookup, ``shutil.which`` by default.
        platform: ``sys.platform``-style name.
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        platform: Optional[str] = None,
    ):
        self.env = os.environ if env is None else env
        self.which = which
        self.platform = platform or sys.platform

    def list_editors(self) -> list[EditorSpec]:
        editors: list[EditorSpec] = []

        system = self.env.get("VISUAL") or self.env.get("EDITOR")
        if system:
            editors.append(EditorSpec.from_command(f"System Default ({system})", system))

        platform_key = "linux" if self.platform.startswith("linux") else self.platform
        for name, command, platforms in _KNOWN_EDITORS:
            if platforms is not None and platform_key not in platforms:
                continue
            if self.which(command[0]):
                editors.append(
                    EditorSpec(name=name, command=command, terminal=command[0] in TERMINAL_EDITORS)
                )

        if platform_key == "win32":
            editors.append(EditorSpec(name="Notepad", command=("notepad",)))
        elif platform_key == "darwin":
            editors.append(EditorSpec(name="TextEdit", command=("open", "-e", "-W")))

        return editors


def open_in_editor(path: Path | str, editor: EditorSpec) -> None:
    """Launch an editor on ``path`` and wait for it to exit.

    Terminal editors inherit stdio; GUI editors run detached from it.

    Raises:
        EditorError: If the editor cannot start or exits non-zero.
    """
    cmd = [*editor.command, str(path)]
    stdio = None if editor.terminal else subprocess.DEVNULL
    logger.debug("Launching editor: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, stdin=stdio, stdout=stdio, stderr=stdio, check=False)
    except OSError as exc:
        raise EditorError(f"Failed to open editor {editor.name}", str(path)) from exc
    if result.returncode != 0:
        raise EditorError(f"Editor exited with code {result.returncode}", str(path))
