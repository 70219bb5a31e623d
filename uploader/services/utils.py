"""Shared utility functions for uploader services."""

import re
from typing import Any

SIZE_UNITS = ["KB", "MB", "GB", "TB"]


def format_bytes(size_bytes: int) -> str:
    """Format a byte count to a human-readable string.

    Picks the largest unit for which the value is at least 1024^n, falling
    back to the raw count with a "Bytes" suffix.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 KB", "500 Bytes")
    """
    for index in range(len(SIZE_UNITS), 0, -1):
        unit_size = 1024**index
        if size_bytes >= unit_size:
            return f"{size_bytes / unit_size:.1f} {SIZE_UNITS[index - 1]}"
    return f"{size_bytes} Bytes"


def get_file_name(path: str) -> str:
    """Extract the file name from a path, accepting both separator styles."""
    return path.replace("\\", "/").split("/")[-1]


def get_file_extension(file_name: str) -> str:
    """Return the extension of a file name without the dot ("" if none)."""
    parts = file_name.split(".")
    return parts[-1] if len(parts) > 1 else ""


def render_message(template: str, parameters: dict[str, Any]) -> str:
    """Replace {{name}} placeholders in a message template.

    Placeholder names are matched case-insensitively. None values render as
    an empty string.

    Args:
        template: Message containing {{placeholder}} tokens
        parameters: Placeholder values keyed by name

    Returns:
        The resolved message
    """
    message = template
    for name, value in parameters.items():
        pattern = re.compile(r"\{\{" + re.escape(name) + r"\}\}", re.IGNORECASE)
        replacement = "" if value is None else str(value)
        message = pattern.sub(lambda _match: replacement, message)
    return message
