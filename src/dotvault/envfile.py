"""
Parse and serialize ``KEY=value`` variable files.

Values containing a space, ``#``, a quote, or a line break, and values
with leading or trailing whitespace, are written double-quoted with
``\\"``, ``\\n`` and ``\\r`` escapes, which python-dotenv decodes back
on read.
"""

from __future__ import annotations

import io

from dotenv import dotenv_values

_NEEDS_QUOTES = (" ", "#", "\n", "\r", '"', "'")


def parse_env(content: str) -> dict[str, str]:
    """Parse variable file content into an ordered dict.

    Keys declared without a value (``KEY`` alone) parse as empty strings.
    """
    parsed = dotenv_values(stream=io.StringIO(content), interpolate=False)
    return {key: value if value is not None else "" for key, value in parsed.items()}


def serialize_env(variables: dict[str, str]) -> str:
    """Render variables as ``KEY=value`` lines, one per key."""
    lines = []
    for key, value in variables.items():
        if value != value.strip() or any(ch in value for ch in _NEEDS_QUOTES):
            escaped = (
                value.replace("\\", "\\\\")
                .replace('"', '\\"')
                .replace("\n", "\\n")
                .replace("\r", "\\r")
            )
            lines.append(f'{key}="{escaped}"')
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"
