"""Tests for types.py, errors.py and host.py."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from imgbudget.errors import CompressionError, ImgBudgetError, ProvenanceError
from imgbudget.host import AllowAllEntitlement, CanvasNode, LogNotifier, maybe_await
from imgbudget.types import AssetDescriptor, AssetState, OptimizedArtifact, Provenance


def _descriptor(provenance: Provenance = Provenance.CANVAS) -> AssetDescriptor:
    return AssetDescriptor(
        identity="canvas-n1",
        display_label="Canvas: Hero",
        source_address="https://cdn.example.com/hero.png",
        is_remote=True,
        provenance=provenance,
        original_byte_size=2000,
        node_id="n1",
    )


def _artifact(size: int) -> OptimizedArtifact:
    return OptimizedArtifact(data=b"\x00" * size, width=1, height=1, quality=0.5, budget=1000)


class TestAssetDescriptor:
    """Tests for AssetDescriptor state handling."""

    def test_state_machine(self):
        descriptor = _descriptor()
        assert descriptor.state is AssetState.DISCOVERED

        descriptor.search_running = True
        assert descriptor.state is AssetState.SEARCH_RUNNING
        descriptor.search_running = False

        descriptor.attach_artifact(_artifact(500))
        assert descriptor.state is AssetState.OPTIMIZED_PENDING

        descriptor.mark_applied()
        assert descriptor.state is AssetState.APPLIED
        assert descriptor.original_byte_size == 500

        descriptor.attach_artifact(_artifact(400))
        assert descriptor.state is AssetState.OPTIMIZED_PENDING

    def test_exceeds_is_strict(self):
        descriptor = _descriptor()
        assert descriptor.exceeds(1999)
        assert not descriptor.exceeds(2000)

    def test_content_asset_cannot_be_applied(self):
        descriptor = _descriptor(Provenance.CONTENT)
        descriptor.attach_artifact(_artifact(10))
        with pytest.raises(ProvenanceError):
            descriptor.mark_applied()
        assert not descriptor.applied_to_document

    def test_apply_requires_artifact(self):
        with pytest.raises(ProvenanceError):
            _descriptor().mark_applied()


class TestOptimizedArtifact:
    """Tests for OptimizedArtifact."""

    def test_budget_flags(self):
        assert _artifact(1000).within_budget
        assert not _artifact(1001).within_budget
        assert _artifact(3).read() == b"\x00" * 3


class TestErrors:
    """Tests for the error hierarchy."""

    def test_asset_identity_in_message(self):
        error = CompressionError("Cannot decode", asset_identity="cms-Blog-p-Cover")
        assert isinstance(error, ImgBudgetError)
        assert str(error) == "Cannot decode [cms-Blog-p-Cover]"

    def test_message_without_identity(self):
        assert str(CompressionError("Cannot decode")) == "Cannot decode"


class TestHostHelpers:
    """Tests for host collaborator helpers."""

    @pytest.mark.asyncio
    async def test_maybe_await(self):
        async def value() -> int:
            return 2

        assert await maybe_await(1) == 1
        assert await maybe_await(value()) == 2

    def test_allow_all_entitlement(self):
        gate = AllowAllEntitlement()
        assert gate.is_allowed_to_scan() is True
        assert gate.record_scan_used() is None

    def test_log_notifier_records_messages(self):
        notifier = LogNotifier()
        notifier.notify("Found 1 image(s) (1 canvas, 0 CMS)", "success")
        notifier.notify("Error optimizing image", "error")
        assert notifier.messages == [
            ("success", "Found 1 image(s) (1 canvas, 0 CMS)"),
            ("error", "Error optimizing image"),
        ]

    def test_canvas_node_protocol(self):
        node = SimpleNamespace(
            id="n1", name="Hero", background_image_address="a.png", background_image_name=None
        )
        assert isinstance(node, CanvasNode)
        assert not isinstance(SimpleNamespace(id="n1", name="Hero"), CanvasNode)
