"""
dotvault -- a git-backed vault for per-project environment files.

Variables live in one version-controlled tree, optionally encrypted at
rest, and are projected into working directories as symlinks or
synced copies.
"""

import os

__version__ = "0.1.0"

DOTVAULT_HOME = os.environ.get("DOTVAULT_HOME", "~/.dotvault")
