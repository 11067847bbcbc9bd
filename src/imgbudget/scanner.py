"""Discover image assets on the canvas and in the content repository."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from imgbudget.batch import BatchRunner, ProgressBand, ScanProgress
from imgbudget.constants import (
    CANVAS_IDENTITY_PREFIX,
    CANVAS_LABEL_PREFIX,
    CONTENT_IDENTITY_PREFIX,
    CONTENT_LABEL_PREFIX,
    DEFAULT_CANVAS_NODE_NAME,
    DEFAULT_OUTPUT_FORMAT,
    IMAGE_FIELD_TYPE,
    PROGRESS_CANVAS_DONE,
    PROGRESS_CANVAS_LISTED,
    PROGRESS_COLLECTIONS_LISTED,
    PROGRESS_COMPLETE,
    PROGRESS_CONTENT_DONE,
    PROGRESS_CONTENT_TASKS_BUILT,
    PROGRESS_STARTED,
)
from imgbudget.errors import ScanError
from imgbudget.heuristics import classify_already_optimized
from imgbudget.host import CanvasNode, ContentRepositoryAPI, DocumentAPI, maybe_await
from imgbudget.loader import is_remote_address, normalize_address
from imgbudget.sizing import SizeResolver
from imgbudget.thumbnail import ThumbnailGenerator
from imgbudget.types import AssetDescriptor, Provenance


@dataclass(frozen=True)
class ContentImageRef:
    """A populated image field found in the content repository."""

    address: str
    collection_name: str
    record_key: str
    field_name: str


def extract_field_address(value: Any) -> str | None:
    """Pull an image address out of a content field value.

    Accepted shapes: a bare string, ``{"url": ...}``, ``{"value": {"url": ...}}``,
    ``{"value": "..."}``, or an object with a ``url`` attribute.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        url = value.get("url")
        if isinstance(url, str) and url.strip():
            return url.strip()
        inner = value.get("value")
        if isinstance(inner, Mapping):
            return extract_field_address(inner.get("url"))
        if isinstance(inner, str):
            return inner.strip() or None
        return None
    url = getattr(value, "url", None)
    if isinstance(url, str) and url.strip():
        return url.strip()
    return None


def deduplicate_descriptors(
    descriptors: Iterable[AssetDescriptor],
) -> list[AssetDescriptor]:
    """Keep the first descriptor seen for each resolved source address."""
    seen: set[str] = set()
    unique: list[AssetDescriptor] = []
    for descriptor in descriptors:
        key = normalize_address(descriptor.source_address)
        if key in seen:
            logger.debug(f"Dropping duplicate {descriptor.identity} ({key[:80]})")
            continue
        seen.add(key)
        unique.append(descriptor)
    return unique


class DiscoveryScanner:
    """Enumerate image references and describe each one.

    The canvas phase runs first. A failure to reach the document API fails
    the whole scan with ``ScanError``; a failure anywhere in the content
    repository phase only drops that phase's results. Single nodes or
    fields that cannot be described are logged and skipped.
    """

    def __init__(
        self,
        document: DocumentAPI,
        size_resolver: SizeResolver,
        thumbnails: ThumbnailGenerator,
        content: ContentRepositoryAPI | None = None,
        runner: BatchRunner | None = None,
        progress: ScanProgress | None = None,
        target_format: str = DEFAULT_OUTPUT_FORMAT,
    ) -> None:
        self.document = document
        self.content = content
        self.size_resolver = size_resolver
        self.thumbnails = thumbnails
        self.progress = progress or ScanProgress()
        self.runner = runner or BatchRunner(progress=self.progress)
        if self.runner.progress is None:
            self.runner.progress = self.progress
        self.target_format = target_format

    async def scan(self) -> list[AssetDescriptor]:
        """Run both discovery phases and return deduplicated descriptors.

        Raises:
            ScanError: If the document's canvas nodes cannot be listed
        """
        self.progress.update(PROGRESS_STARTED)
        try:
            nodes = list(
                await maybe_await(self.document.list_nodes_with_background_image())
            )
        except Exception as e:
            raise ScanError(f"Cannot list document nodes: {e}") from e
        self.progress.update(PROGRESS_CANVAS_LISTED)
        logger.debug(f"Found {len(nodes)} node(s) with a background image")

        canvas = await self.runner.run(
            nodes,
            self._describe_canvas_node,
            ProgressBand(PROGRESS_CANVAS_LISTED, PROGRESS_CANVAS_DONE),
        )
        self.progress.update(PROGRESS_CANVAS_DONE)

        try:
            content = await self._scan_content()
        except Exception as e:
            logger.warning(f"Content repository scan failed: {e}")
            content = []
        self.progress.update(PROGRESS_CONTENT_DONE)

        unique = deduplicate_descriptors([*canvas, *content])
        self.progress.update(PROGRESS_COMPLETE)
        logger.info(
            f"Scan found {len(unique)} image(s) "
            f"({len(canvas)} canvas, {len(content)} content before dedup)"
        )
        return unique

    async def _measure(self, address: str) -> tuple[int, str | None]:
        size, thumbnail = await asyncio.gather(
            self.size_resolver.resolve(address),
            self.thumbnails.generate(address),
            return_exceptions=True,
        )
        return (
            size if isinstance(size, int) else 0,
            thumbnail if isinstance(thumbnail, str) else None,
        )

    async def _describe_canvas_node(self, node: CanvasNode) -> AssetDescriptor | None:
        try:
            address = getattr(node, "background_image_address", None)
            if not address:
                return None
            node_id = str(node.id)
            node_name = getattr(node, "name", None)
            image_name = getattr(node, "background_image_name", None)
        except Exception as e:
            logger.warning(f"Skipping unreadable canvas node: {e}")
            return None

        size, thumbnail = await self._measure(address)
        return AssetDescriptor(
            identity=f"{CANVAS_IDENTITY_PREFIX}{node_id}",
            display_label=f"{CANVAS_LABEL_PREFIX}{node_name or DEFAULT_CANVAS_NODE_NAME}",
            source_address=address,
            is_remote=is_remote_address(address),
            provenance=Provenance.CANVAS,
            original_byte_size=size,
            already_optimized=classify_already_optimized(
                address, image_name, self.target_format
            ),
            preview_thumbnail=thumbnail,
            node_id=node_id,
        )

    async def _collect_content_refs(self) -> list[ContentImageRef]:
        assert self.content is not None
        collections = list(await maybe_await(self.content.list_collections()))
        self.progress.update(PROGRESS_COLLECTIONS_LISTED)

        refs: list[ContentImageRef] = []
        for collection in collections:
            try:
                records, fields = await asyncio.gather(
                    maybe_await(collection.list_records()),
                    maybe_await(collection.list_fields()),
                )
            except Exception as e:
                logger.warning(
                    f"Skipping collection {getattr(collection, 'name', '?')}: {e}"
                )
                continue

            image_fields = [f for f in fields if f.type == IMAGE_FIELD_TYPE]
            for record in records:
                for field in image_fields:
                    try:
                        data = record.field_data
                        value = data.get(field.id, data.get(field.name))
                        address = extract_field_address(value)
                        if not address:
                            continue
                        refs.append(
                            ContentImageRef(
                                address=address,
                                collection_name=collection.name,
                                record_key=str(
                                    getattr(record, "slug", None) or record.id
                                ),
                                field_name=field.name,
                            )
                        )
                    except Exception as e:
                        logger.warning(
                            f"Skipping field {getattr(field, 'name', '?')} "
                            f"of record {getattr(record, 'id', '?')}: {e}"
                        )
        return refs

    async def _scan_content(self) -> list[AssetDescriptor]:
        if self.content is None:
            return []
        refs = await self._collect_content_refs()
        self.progress.update(PROGRESS_CONTENT_TASKS_BUILT)
        logger.debug(f"Found {len(refs)} populated image field(s)")
        return await self.runner.run(
            refs,
            self._describe_content_ref,
            ProgressBand(PROGRESS_CONTENT_TASKS_BUILT, PROGRESS_CONTENT_DONE),
        )

    async def _describe_content_ref(self, ref: ContentImageRef) -> AssetDescriptor:
        size, thumbnail = await self._measure(ref.address)
        return AssetDescriptor(
            identity=(
                f"{CONTENT_IDENTITY_PREFIX}{ref.collection_name}-"
                f"{ref.record_key}-{ref.field_name}"
            ),
            display_label=(
                f"{CONTENT_LABEL_PREFIX}{ref.collection_name} → {ref.field_name}"
            ),
            source_address=ref.address,
            is_remote=is_remote_address(ref.address),
            provenance=Provenance.CONTENT,
            original_byte_size=size,
            preview_thumbnail=thumbnail,
        )
