"""
Utility functions for file names, content types and directories.

This module provides helper functions for:
- Sanitizing uploaded filenames into safe object-store key segments
- Choosing a file extension for an uploaded image
- Ensuring directory creation for the local storage backends
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

# Pattern to match characters that are not safe in object keys
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
}


def sanitize_label(label: str, fallback: str) -> str:
    """
    Generate a key-safe label from user input.

    Args:
        label: The original label string to sanitize
        fallback: Default value to return if sanitization results in an empty string

    Returns:
        A lowercase, key-safe label or the fallback value

    Example:
        >>> sanitize_label("My Cover!", "cover")
        "my-cover"
        >>> sanitize_label("@#$", "cover")
        "cover"
    """
    cleaned = SANITIZE_PATTERN.sub("-", label.strip())
    cleaned = cleaned.strip("-_.").lower()
    return cleaned or fallback


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def split_extension(filename: str) -> tuple[str, str]:
    """
    Split a filename into stem and extension components.

    Example:
        >>> split_extension("cover.PNG")
        ("cover", ".PNG")
    """
    path = Path(filename)
    return path.stem, path.suffix


def image_extension(filename: str | None, content_type: str | None) -> str:
    """
    Pick the extension for an uploaded image.

    The uploaded filename wins when it carries a usable extension; otherwise
    the extension is derived from the content type. Returns an empty string
    when neither is known.
    """
    if filename:
        _, suffix = split_extension(filename)
        suffix = sanitize_label(suffix, "")
        if suffix:
            return f".{suffix}"
    return CONTENT_TYPE_EXTENSIONS.get((content_type or "").lower(), "")


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()
