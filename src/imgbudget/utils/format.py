"""Formatting helpers for sizes and filenames."""

from __future__ import annotations

import math
import re

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")
_BYTE_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?B?)\s*$", re.IGNORECASE)
_UNIT_MULTIPLIERS = {"": 1, "B": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


def format_file_size(num_bytes: int) -> str:
    """Format a byte count for display.

    Examples:
        >>> format_file_size(0)
        '0 Bytes'
        >>> format_file_size(1536)
        '1.5 KB'
        >>> format_file_size(1048576)
        '1 MB'
    """
    if num_bytes <= 0:
        return "0 Bytes"
    k = 1024
    i = min(int(math.floor(math.log(num_bytes) / math.log(k))), len(_SIZE_UNITS) - 1)
    value = round(num_bytes / k**i, 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[i]}"


def parse_byte_size(value: str | int) -> int:
    """Parse a size like ``500KB``, ``1.5 MB`` or ``1000000`` into bytes (base 1024).

    Raises:
        ValueError: If the value is not a recognizable size
    """
    if isinstance(value, int):
        return value
    match = _BYTE_SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid byte size: {value!r}")
    number, unit = match.groups()
    prefix = unit.upper().rstrip("B") if unit.upper() != "B" else "B"
    return int(float(number) * _UNIT_MULTIPLIERS[prefix])


def sanitize_filename(name: str, max_length: int = 100) -> str:
    """Sanitize filename for cross-platform compatibility."""
    invalid_chars = '<>:"/\\|?*'
    for char in invalid_chars:
        name = name.replace(char, "_")
    # Remove control characters
    name = "".join(c for c in name if ord(c) >= 32)
    name = name.strip(". ")
    if len(name) > max_length:
        name = name[:max_length]
    return name or "image"
