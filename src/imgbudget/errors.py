"""Structured error classes for imgbudget.

Error Hierarchy:
    ImgBudgetError (base)
    ├── ConfigError (configuration file could not be loaded)
    ├── ScanError (document API unreachable, scan yields nothing)
    ├── ScanNotAllowedError (entitlement gate refused the scan)
    └── AssetError (failure tied to one asset)
        ├── CompressionError (decode or every encode failed)
        ├── ApplyError (upload or node update failed)
        ├── ArtifactUnavailableError (no artifact to download/apply)
        └── ProvenanceError (operation not valid for the asset's origin)

Transient size-probe failures and per-item extraction failures never
surface as exceptions; they are logged and absorbed by their component.
"""

from __future__ import annotations


class ImgBudgetError(Exception):
    """Base exception for all imgbudget errors."""


class ConfigError(ImgBudgetError):
    """Raised when a configuration file is unreadable or invalid."""

    __slots__ = ("path",)

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ScanError(ImgBudgetError):
    """Raised when the whole scan fails (e.g. the document API is unreachable)."""


class ScanNotAllowedError(ImgBudgetError):
    """Raised when the entitlement gate does not allow another scan."""


class AssetError(ImgBudgetError):
    """Base class for failures scoped to a single asset.

    Attributes:
        asset_identity: Identity of the descriptor the failure belongs to
    """

    __slots__ = ("asset_identity",)

    def __init__(self, message: str, *, asset_identity: str | None = None) -> None:
        super().__init__(message)
        self.asset_identity = asset_identity

    def __str__(self) -> str:
        base = super().__str__()
        if self.asset_identity:
            return f"{base} [{self.asset_identity}]"
        return base


class CompressionError(AssetError):
    """Raised when an image cannot be decoded or no encode attempt succeeds."""


class ApplyError(AssetError):
    """Raised when uploading or committing an artifact to the document fails."""


class ArtifactUnavailableError(AssetError):
    """Raised when an operation needs an optimized artifact that does not exist."""


class ProvenanceError(AssetError):
    """Raised when an operation is not valid for the asset's provenance."""
