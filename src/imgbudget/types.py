"""Common type definitions for imgbudget."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from imgbudget.constants import DEFAULT_OUTPUT_MIME
from imgbudget.errors import ProvenanceError


class Provenance(str, Enum):
    """Where a discovered image lives.

    Only canvas images can be written back to the document; content
    repository images are offered for download instead.
    """

    CANVAS = "canvas"
    CONTENT = "cms"


class AssetState(str, Enum):
    """Optimization state of a single asset.

    State transitions:
        DISCOVERED -> SEARCH_RUNNING -> OPTIMIZED_PENDING -> APPLIED
        OPTIMIZED_PENDING -> SEARCH_RUNNING (re-optimize overwrites artifact)

    APPLIED is reachable only for canvas assets.
    """

    DISCOVERED = "discovered"
    SEARCH_RUNNING = "search_running"
    OPTIMIZED_PENDING = "optimized_pending"
    APPLIED = "applied"


@dataclass(frozen=True)
class CompressionAttempt:
    """One (scale, quality) encode tried during a compression search."""

    scale: float
    quality: float
    width: int
    height: int
    byte_size: int


@dataclass
class CompressionResult:
    """Outcome of a compression search."""

    data: bytes
    width: int
    height: int
    quality: float
    scale: float
    budget: int
    used_emergency: bool = False
    attempts: list[CompressionAttempt] = field(default_factory=list)

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def within_budget(self) -> bool:
        """Whether the encoded size is at or under the requested budget.

        The emergency encode is accepted even when this is False, so callers
        must check it rather than assume compliance.
        """
        return self.byte_size <= self.budget

    def reduction_ratio(self, original_size: int) -> float:
        """Fraction of bytes saved relative to ``original_size`` (0.0 if unknown)."""
        if original_size <= 0:
            return 0.0
        return 1.0 - self.byte_size / original_size


@dataclass
class OptimizedArtifact:
    """Encoded bytes produced for an asset, ready to upload or download."""

    data: bytes
    width: int
    height: int
    quality: float
    budget: int
    mime_type: str = DEFAULT_OUTPUT_MIME

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def within_budget(self) -> bool:
        return self.byte_size <= self.budget

    def read(self) -> bytes:
        """Return the encoded bytes."""
        return self.data

    @classmethod
    def from_result(
        cls, result: CompressionResult, mime_type: str = DEFAULT_OUTPUT_MIME
    ) -> OptimizedArtifact:
        return cls(
            data=result.data,
            width=result.width,
            height=result.height,
            quality=result.quality,
            budget=result.budget,
            mime_type=mime_type,
        )


@dataclass
class AssetDescriptor:
    """Normalized record of one discovered image and its optimization state.

    Created fresh by every scan. ``optimized_artifact`` and
    ``applied_to_document`` are only ever changed by the optimize and apply
    operations, never by the scanner.
    """

    identity: str
    display_label: str
    source_address: str
    is_remote: bool
    provenance: Provenance
    original_byte_size: int = 0
    already_optimized: bool = False
    preview_thumbnail: str | None = None  # data URI
    optimized_artifact: OptimizedArtifact | None = None
    applied_to_document: bool = False
    node_id: str | None = None  # Canvas node backing this asset
    search_running: bool = False

    @property
    def is_canvas(self) -> bool:
        return self.provenance is Provenance.CANVAS

    @property
    def state(self) -> AssetState:
        if self.search_running:
            return AssetState.SEARCH_RUNNING
        if self.applied_to_document:
            return AssetState.APPLIED
        if self.optimized_artifact is not None:
            return AssetState.OPTIMIZED_PENDING
        return AssetState.DISCOVERED

    def exceeds(self, budget: int) -> bool:
        """Check whether the resolved size is over ``budget`` bytes."""
        return self.original_byte_size > budget

    def attach_artifact(self, artifact: OptimizedArtifact) -> None:
        """Store a new artifact, replacing any previous one."""
        self.optimized_artifact = artifact
        self.applied_to_document = False

    def mark_applied(self) -> None:
        """Record that the artifact was committed back to the document.

        Raises:
            ProvenanceError: If the asset is not canvas-origin or has no artifact.
        """
        if not self.is_canvas:
            raise ProvenanceError(
                "Content repository assets cannot be applied to the document",
                asset_identity=self.identity,
            )
        if self.optimized_artifact is None:
            raise ProvenanceError(
                "Asset has no optimized artifact to apply",
                asset_identity=self.identity,
            )
        self.applied_to_document = True
        self.original_byte_size = self.optimized_artifact.byte_size
