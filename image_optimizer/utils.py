"""Utility helpers for URL paths and numeric rounding."""

from __future__ import annotations

import math
import posixpath
import re
from typing import Optional

PIXEL_VALUE_PATTERN = re.compile(r"^\s*(\d+)\s*(?:px)?\s*$", re.IGNORECASE)
SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def path_extension(path: str) -> str:
    """Return the extension of the last path segment, without the dot."""
    return posixpath.splitext(path)[1][1:]


def round_half_up(value: float) -> int:
    """Round like PHP's round(): halves go away from zero."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def parse_pixel_value(value: Optional[str]) -> Optional[int]:
    """Parse an HTML width/height attribute; percentages and zero are unset."""
    if value is None:
        return None
    match = PIXEL_VALUE_PATTERN.match(str(value))
    if not match:
        return None
    pixels = int(match.group(1))
    return pixels or None
