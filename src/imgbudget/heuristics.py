"""Classify whether an image already went through an optimization pass.

The signals are naming conventions, so they can be wrong. Each one is an
explicit rule so callers and tests can see exactly why an address matched.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from urllib.parse import parse_qsl, unquote, urlparse

from imgbudget.constants import (
    DEFAULT_OUTPUT_FORMAT,
    EXTENSION_TO_MIME,
    OPTIMIZED_MARKER,
)

# Query parameters image CDNs use to select the delivered format
FORMAT_QUERY_KEYS = frozenset({"format", "fm", "f", "ext", "output"})


class OptimizedMarkerRule(str, Enum):
    """Rules that flag an image as already optimized."""

    ADDRESS_MARKER = "address_marker"  # address contains "optimized_"
    NAME_MARKER = "name_marker"  # asset name contains "optimized_"
    TARGET_FORMAT = "target_format"  # address already points at the output format
    TARGET_FORMAT_HINT = "target_format_hint"  # format named mid-path or in the query


def _normalize_format(value: str) -> str:
    value = value.lower().lstrip(".")
    mime = EXTENSION_TO_MIME.get(f".{value}")
    return mime[6:] if mime else value


def _address_format(address: str) -> str | None:
    """Best guess at the image format an address points to."""
    lowered = address.strip().lower()
    if lowered.startswith("data:"):
        mime = lowered[5:].split(";", 1)[0].split(",", 1)[0]
        if mime.startswith("image/"):
            return mime[6:]
        return None
    suffix = PurePosixPath(unquote(urlparse(lowered).path)).suffix
    return _normalize_format(suffix) if suffix else None


def _hinted_formats(address: str) -> set[str]:
    """Formats named by a non-final path segment or a format query parameter.

    Examples:
        >>> sorted(_hinted_formats("https://cdn/img.webp/variant?fm=avif"))
        ['avif', 'webp']
    """
    lowered = address.strip().lower()
    if lowered.startswith("data:"):
        return set()
    parsed = urlparse(lowered)
    segments = [s for s in unquote(parsed.path).split("/") if s]
    formats = {
        _normalize_format(PurePosixPath(s).suffix)
        for s in segments[:-1]
        if PurePosixPath(s).suffix
    }
    formats.update(
        _normalize_format(value)
        for key, value in parse_qsl(parsed.query)
        if key in FORMAT_QUERY_KEYS and value
    )
    return formats


def matched_rules(
    address: str,
    name: str | None = None,
    target_format: str = DEFAULT_OUTPUT_FORMAT,
) -> list[OptimizedMarkerRule]:
    """Return every rule that ``address``/``name`` satisfies, in rule order."""
    rules: list[OptimizedMarkerRule] = []
    if OPTIMIZED_MARKER in address:
        rules.append(OptimizedMarkerRule.ADDRESS_MARKER)
    if name and OPTIMIZED_MARKER in name:
        rules.append(OptimizedMarkerRule.NAME_MARKER)
    target = _normalize_format(target_format)
    if _address_format(address) == target:
        rules.append(OptimizedMarkerRule.TARGET_FORMAT)
    elif target in _hinted_formats(address):
        rules.append(OptimizedMarkerRule.TARGET_FORMAT_HINT)
    return rules


def classify_already_optimized(
    address: str,
    name: str | None = None,
    target_format: str = DEFAULT_OUTPUT_FORMAT,
) -> bool:
    """Check whether any already-optimized rule matches."""
    return bool(matched_rules(address, name, target_format))
