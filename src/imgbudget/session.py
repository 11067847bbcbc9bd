"""Caller-facing operations: scan, optimize, apply and download."""

from __future__ import annotations

import re
import time
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Literal

from loguru import logger

from imgbudget.batch import BatchRunner, ProgressListener, ScanProgress
from imgbudget.config import CompressionConfig, ImgBudgetConfig
from imgbudget.constants import (
    CANVAS_LABEL_PREFIX,
    CONTENT_LABEL_PREFIX,
    OPTIMIZED_MARKER,
)
from imgbudget.errors import (
    ApplyError,
    ArtifactUnavailableError,
    CompressionError,
    ProvenanceError,
    ScanError,
    ScanNotAllowedError,
)
from imgbudget.host import (
    AllowAllEntitlement,
    ContentRepositoryAPI,
    DocumentAPI,
    EntitlementGate,
    LogNotifier,
    Notifier,
    maybe_await,
)
from imgbudget.image import (
    CompressionSearch,
    Encoder,
    PillowEncoder,
    PolicyEntry,
    decode_image,
    describe_result,
)
from imgbudget.loader import ImageLoader
from imgbudget.scanner import DiscoveryScanner
from imgbudget.sizing import SizeResolver
from imgbudget.thumbnail import ThumbnailGenerator
from imgbudget.types import AssetDescriptor, OptimizedArtifact, Provenance
from imgbudget.utils.executor import run_in_image_thread
from imgbudget.utils.format import format_file_size, sanitize_filename
from imgbudget.utils.gate import ConcurrencyGate

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


def _extension_for(mime_type: str) -> str:
    subtype = mime_type.split("/", 1)[-1]
    return "jpg" if subtype == "jpeg" else subtype


def upload_filename(
    descriptor: AssetDescriptor, timestamp_ms: int | None = None
) -> str:
    """Filename used when uploading an artifact back to the document."""
    artifact = descriptor.optimized_artifact
    ext = _extension_for(artifact.mime_type) if artifact else "webp"
    name = descriptor.display_label
    if name.startswith(CANVAS_LABEL_PREFIX):
        name = name[len(CANVAS_LABEL_PREFIX) :]
    name = _EXTENSION_RE.sub("", name)
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return sanitize_filename(f"{OPTIMIZED_MARKER}{name}_{timestamp_ms}.{ext}")


def download_filename(descriptor: AssetDescriptor) -> str:
    """Filename offered when downloading a content repository artifact."""
    artifact = descriptor.optimized_artifact
    ext = _extension_for(artifact.mime_type) if artifact else "webp"
    name = descriptor.display_label
    if name.startswith(CONTENT_LABEL_PREFIX):
        name = name[len(CONTENT_LABEL_PREFIX) :]
    return f"{OPTIMIZED_MARKER}{_NON_ALNUM_RE.sub('_', name)}.{ext}"


def _needs_optimization(descriptor: AssetDescriptor, budget: int) -> bool:
    return (
        descriptor.exceeds(budget)
        and descriptor.optimized_artifact is None
        and not descriptor.already_optimized
    )


def sort_descriptors(
    descriptors: Iterable[AssetDescriptor], by: Literal["size", "name"] = "size"
) -> list[AssetDescriptor]:
    """Sort largest first, or alphabetically by label."""
    if by == "size":
        return sorted(descriptors, key=lambda d: d.original_byte_size, reverse=True)
    return sorted(descriptors, key=lambda d: d.display_label.lower())


def filter_descriptors(
    descriptors: Iterable[AssetDescriptor],
    provenance: Provenance | None = None,
    query: str = "",
) -> list[AssetDescriptor]:
    """Keep descriptors of one provenance whose label contains ``query``."""
    needle = query.lower()
    return [
        d
        for d in descriptors
        if (provenance is None or d.provenance is provenance)
        and (not needle or needle in d.display_label.lower())
    ]


def build_search(
    compression: CompressionConfig, encoder: Encoder | None = None
) -> CompressionSearch:
    """Build a compression search from configuration."""
    return CompressionSearch(
        encoder=encoder or PillowEncoder(compression.format),
        policy=[PolicyEntry(p.scale, p.quality) for p in compression.policy],
        emergency=PolicyEntry(
            compression.emergency.scale, compression.emergency.quality
        ),
    )


class OptimizerSession:
    """One user session against a host document.

    Holds the descriptors of the latest scan. Each scan builds a fresh size
    resolver, so sizes are memoized for that scan only.

    Usage:
        async with OptimizerSession(document, content) as session:
            descriptors = await session.run_scan()
            await session.optimize_all()
            applied = await session.apply_all()
    """

    def __init__(
        self,
        document: DocumentAPI,
        content: ContentRepositoryAPI | None = None,
        *,
        config: ImgBudgetConfig | None = None,
        entitlement: EntitlementGate | None = None,
        notifier: Notifier | None = None,
        loader: ImageLoader | None = None,
        encoder: Encoder | None = None,
        progress_listeners: Sequence[ProgressListener] = (),
    ) -> None:
        self.document = document
        self.content = content
        self.config = config or ImgBudgetConfig()
        self.entitlement: EntitlementGate = entitlement or AllowAllEntitlement()
        self.notifier: Notifier = notifier or LogNotifier()
        self.loader = loader or ImageLoader(
            timeout=self.config.network.timeout,
            user_agent=self.config.network.user_agent,
        )
        self.search = build_search(self.config.compression, encoder)
        self.progress = ScanProgress(progress_listeners)
        self.descriptors: list[AssetDescriptor] = []

    @property
    def budget(self) -> int:
        return self.config.compression.budget

    def find(self, identity: str) -> AssetDescriptor | None:
        return next((d for d in self.descriptors if d.identity == identity), None)

    def over_budget(self, budget: int | None = None) -> list[AssetDescriptor]:
        """Descriptors still waiting for optimization whose size exceeds the budget."""
        limit = self.budget if budget is None else budget
        return [d for d in self.descriptors if _needs_optimization(d, limit)]

    def _build_scanner(self) -> DiscoveryScanner:
        gate = ConcurrencyGate(self.config.network.concurrency)
        resolver = SizeResolver(
            self.loader, gate, range_bytes=self.config.network.range_probe_bytes
        )
        thumbnails = ThumbnailGenerator(
            self.loader,
            size=self.config.scan.thumbnail_size,
            timeout=self.config.scan.thumbnail_timeout,
            quality=self.config.scan.thumbnail_quality,
        )
        return DiscoveryScanner(
            self.document,
            resolver,
            thumbnails,
            content=self.content if self.config.scan.include_content else None,
            runner=BatchRunner(self.config.scan.chunk_size, self.progress),
            progress=self.progress,
            target_format=self.config.compression.format,
        )

    async def run_scan(self) -> list[AssetDescriptor]:
        """Discover every image in the document and replace the descriptor set.

        Returns an empty list, after one error notification, when the
        document or the entitlement gate cannot be reached.

        Raises:
            ScanNotAllowedError: If the entitlement gate refuses the scan
        """
        try:
            allowed = await maybe_await(self.entitlement.is_allowed_to_scan())
        except Exception as e:
            return self._scan_failed(e)
        if not allowed:
            self.notifier.notify("No scans left for this period", "error")
            raise ScanNotAllowedError("Scan not allowed by entitlement gate")

        self.progress.reset()
        try:
            await maybe_await(self.entitlement.record_scan_used())
            descriptors = await self._build_scanner().scan()
        except Exception as e:
            return self._scan_failed(e)
        finally:
            self.progress.reset()

        self.descriptors = descriptors
        if not descriptors:
            self.notifier.notify("No images found in project", "info")
        else:
            content_count = sum(
                1 for d in descriptors if d.provenance is Provenance.CONTENT
            )
            canvas_count = len(descriptors) - content_count
            self.notifier.notify(
                f"Found {len(descriptors)} image(s) "
                f"({canvas_count} canvas, {content_count} CMS)",
                "success",
            )
        return descriptors

    def _scan_failed(self, error: Exception) -> list[AssetDescriptor]:
        if isinstance(error, ScanError):
            logger.error(f"Error fetching project images: {error}")
        else:
            logger.exception(f"Error fetching project images: {error}")
        self.notifier.notify("Error fetching project images", "error")
        self.descriptors = []
        return []

    async def optimize(
        self, descriptor: AssetDescriptor, budget: int | None = None
    ) -> OptimizedArtifact:
        """Run the compression search for one asset and attach the artifact.

        Raises:
            CompressionError: If the image cannot be loaded, decoded or encoded.
                The descriptor keeps its previous artifact, if any.
        """
        limit = self.budget if budget is None else budget
        descriptor.search_running = True
        try:
            try:
                data = await self.loader.load(descriptor.source_address)
            except Exception as e:
                raise CompressionError(
                    f"Cannot load image: {e}", asset_identity=descriptor.identity
                ) from e
            image = await run_in_image_thread(decode_image, data)
            result = await run_in_image_thread(self.search.compress, image, limit)
        except CompressionError as e:
            e.asset_identity = e.asset_identity or descriptor.identity
            logger.error(f"Error optimizing image: {e}")
            self.notifier.notify("Error optimizing image", "error")
            raise
        finally:
            descriptor.search_running = False

        original_size = descriptor.original_byte_size or len(data)
        artifact = OptimizedArtifact.from_result(
            result, mime_type=self.config.compression.mime_type
        )
        descriptor.attach_artifact(artifact)
        logger.info(
            f"Compression result for {descriptor.identity}: "
            f"{describe_result(result, original_size, image.size)}"
        )
        self.notifier.notify(
            f"Image optimized: {format_file_size(original_size)} → "
            f"{format_file_size(artifact.byte_size)}",
            "success",
        )
        if not result.within_budget:
            self.notifier.notify(
                f"Could not reach {format_file_size(limit)}; best result is "
                f"{format_file_size(artifact.byte_size)}",
                "warning",
            )
        return artifact

    async def optimize_all(
        self,
        budget: int | None = None,
        descriptors: Iterable[AssetDescriptor] | None = None,
    ) -> list[OptimizedArtifact]:
        """Optimize, one after another, every unoptimized asset over budget."""
        limit = self.budget if budget is None else budget
        pool = self.descriptors if descriptors is None else list(descriptors)
        candidates = [d for d in pool if _needs_optimization(d, limit)]
        artifacts: list[OptimizedArtifact] = []
        for descriptor in candidates:
            try:
                artifacts.append(await self.optimize(descriptor, limit))
            except CompressionError:
                continue
        return artifacts

    async def apply_to_document(self, descriptor: AssetDescriptor) -> bool:
        """Upload the artifact and swap it into the canvas node.

        Returns False, leaving the descriptor unapplied, if the upload or
        node update fails.

        Raises:
            ProvenanceError: If the asset is from the content repository
            ArtifactUnavailableError: If the asset has not been optimized
        """
        if not descriptor.is_canvas or descriptor.node_id is None:
            raise ProvenanceError(
                "Only canvas images can be applied to the document",
                asset_identity=descriptor.identity,
            )
        artifact = descriptor.optimized_artifact
        if artifact is None:
            raise ArtifactUnavailableError(
                "Asset has not been optimized", asset_identity=descriptor.identity
            )

        try:
            await self._commit_artifact(descriptor, artifact)
        except ApplyError as e:
            logger.error(f"Error applying canvas image: {e}")
            return False

        descriptor.mark_applied()
        return True

    async def _commit_artifact(
        self, descriptor: AssetDescriptor, artifact: OptimizedArtifact
    ) -> None:
        assert descriptor.node_id is not None
        filename = upload_filename(descriptor)
        try:
            handle = await maybe_await(
                self.document.upload_image(artifact.read(), filename, artifact.mime_type)
            )
        except Exception as e:
            raise ApplyError(
                f"Upload failed: {e}", asset_identity=descriptor.identity
            ) from e
        try:
            await maybe_await(
                self.document.replace_background_image(descriptor.node_id, handle)
            )
        except Exception as e:
            raise ApplyError(
                f"Node update failed: {e}", asset_identity=descriptor.identity
            ) from e
        logger.debug(f"Applied {filename} to node {descriptor.node_id}")

    async def apply_all(self) -> int:
        """Apply every pending canvas artifact and return how many succeeded."""
        pending = [
            d
            for d in self.descriptors
            if d.optimized_artifact is not None and not d.applied_to_document
        ]
        if not pending:
            self.notifier.notify("No optimized images to apply", "info")
            return 0

        applied = 0
        for descriptor in pending:
            if not descriptor.is_canvas:
                continue
            if await self.apply_to_document(descriptor):
                applied += 1

        self.notifier.notify(
            f"Applied {applied} canvas image optimization(s)", "success"
        )
        return applied

    def download_artifact(self, descriptor: AssetDescriptor) -> bytes:
        """Return the artifact bytes of a content repository asset.

        Raises:
            ProvenanceError: If the asset is canvas-origin (apply it instead)
            ArtifactUnavailableError: If the asset has not been optimized
        """
        if descriptor.provenance is not Provenance.CONTENT:
            raise ProvenanceError(
                "Canvas images are applied to the document, not downloaded",
                asset_identity=descriptor.identity,
            )
        if descriptor.optimized_artifact is None:
            raise ArtifactUnavailableError(
                "Asset has not been optimized", asset_identity=descriptor.identity
            )
        return descriptor.optimized_artifact.read()

    def save_artifact(self, descriptor: AssetDescriptor, directory: Path) -> Path:
        """Write a content repository artifact into ``directory``."""
        data = self.download_artifact(descriptor)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / download_filename(descriptor)
        path.write_bytes(data)
        self.notifier.notify("Optimized image downloaded", "success")
        return path

    async def aclose(self) -> None:
        await self.loader.aclose()

    async def __aenter__(self) -> OptimizerSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
