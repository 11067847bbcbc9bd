"""Centralized constants for imgbudget.

Default values and policy numbers used across the scan and compression
pipeline live here so they can be found and tuned in one place.
"""

from __future__ import annotations

# =============================================================================
# Network
# =============================================================================

DEFAULT_NETWORK_CONCURRENCY = 5  # Simultaneous size probes
DEFAULT_HTTP_TIMEOUT = 30.0  # seconds, per request
RANGE_PROBE_BYTES = 1024  # Partial-content probe length
DEFAULT_USER_AGENT = "imgbudget/0.1 (+https://pypi.org/project/imgbudget/)"

# =============================================================================
# Scanning
# =============================================================================

DEFAULT_BATCH_CHUNK_SIZE = 10  # Items in flight per chunk
DEFAULT_THUMBNAIL_SIZE = 64  # Square edge in pixels
DEFAULT_THUMBNAIL_TIMEOUT = 2.0  # seconds
DEFAULT_THUMBNAIL_QUALITY = 70  # JPEG quality (1-100)

# Progress bands reported during a scan (percent)
PROGRESS_STARTED = 5
PROGRESS_CANVAS_LISTED = 15
PROGRESS_CANVAS_DONE = 50
PROGRESS_COLLECTIONS_LISTED = 60
PROGRESS_CONTENT_TASKS_BUILT = 70
PROGRESS_CONTENT_DONE = 90
PROGRESS_COMPLETE = 100

CANVAS_IDENTITY_PREFIX = "canvas-"
CONTENT_IDENTITY_PREFIX = "cms-"
CANVAS_LABEL_PREFIX = "Canvas: "
CONTENT_LABEL_PREFIX = "CMS: "
DEFAULT_CANVAS_NODE_NAME = "Background Image"
IMAGE_FIELD_TYPE = "image"

# =============================================================================
# Compression
# =============================================================================

DEFAULT_BYTE_BUDGET = 1_000_000  # bytes
DEFAULT_OUTPUT_FORMAT = "webp"
DEFAULT_OUTPUT_MIME = "image/webp"
OPTIMIZED_MARKER = "optimized_"  # Filename prefix written on upload

# (scale, quality) pairs, least destructive first
DEFAULT_COMPRESSION_POLICY: tuple[tuple[float, float], ...] = (
    (1.0, 0.85),
    (1.0, 0.70),
    (1.0, 0.50),
    (1.0, 0.30),
    (0.8, 0.85),
    (0.8, 0.70),
    (0.8, 0.50),
    (0.6, 0.85),
    (0.6, 0.70),
    (0.6, 0.50),
    (0.4, 0.85),
    (0.4, 0.70),
    (0.3, 0.70),
    (0.2, 0.80),
)
EMERGENCY_SCALE = 0.15
EMERGENCY_QUALITY = 0.4

# =============================================================================
# Configuration & Logging
# =============================================================================

CONFIG_FILENAME = "imgbudget.json"
CONFIG_ENV_VAR = "IMGBUDGET_CONFIG"
DEFAULT_USER_CONFIG_DIR = "~/.imgbudget"
LOG_DIR_ENV_VAR = "IMGBUDGET_LOG_DIR"
DEFAULT_LOG_LEVEL = "DEBUG"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"

# =============================================================================
# Image formats
# =============================================================================

EXTENSION_TO_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
}
