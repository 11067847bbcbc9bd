"""Tests for manifest.py module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from imgbudget.errors import ConfigError
from imgbudget.host import CanvasNode
from imgbudget.manifest import ManifestHost

MANIFEST = {
    "nodes": [
        {
            "id": "n1",
            "name": "Hero",
            "backgroundImage": {"url": "images/hero.png", "name": "hero.png"},
        },
        {"id": "n2", "name": "Remote", "backgroundImage": {"url": "https://cdn.example.com/r.jpg"}},
        {"id": "n3", "name": "Empty"},
    ],
    "collections": [
        {
            "name": "Blog",
            "fields": [
                {"id": "f1", "name": "Cover", "type": "image"},
                {"id": "f2", "name": "Title", "type": "plain"},
            ],
            "items": [
                {
                    "id": "i1",
                    "slug": "post-1",
                    "fieldData": {"f1": {"url": "images/cover.jpg"}, "f2": "images/not-an-image"},
                },
                {"id": "i2", "fieldData": {"f1": "//cdn.example.com/c2.png"}},
            ],
        }
    ],
}


@pytest.fixture
def manifest_path(tmp_path: Path) -> Path:
    path = tmp_path / "site.json"
    path.write_text(json.dumps(MANIFEST))
    return path


class TestManifestHost:
    """Tests for ManifestHost."""

    def test_load_resolves_relative_paths(self, manifest_path: Path, tmp_path: Path):
        host = ManifestHost.load(manifest_path)

        nodes = host.list_nodes_with_background_image()

        assert [n.id for n in nodes] == ["n1", "n2"]
        assert nodes[0].background_image_address == str(tmp_path / "images" / "hero.png")
        assert nodes[0].background_image_name == "hero.png"
        assert nodes[1].background_image_address == "https://cdn.example.com/r.jpg"

    def test_content_collections(self, manifest_path: Path, tmp_path: Path):
        host = ManifestHost.load(manifest_path)

        [collection] = host.list_collections()
        records = collection.list_records()
        fields = collection.list_fields()

        assert [f.type for f in fields] == ["image", "plain"]
        assert records[0].slug == "post-1"
        assert records[0].field_data["f1"] == {"url": str(tmp_path / "images" / "cover.jpg")}
        assert records[0].field_data["f2"] == "images/not-an-image"
        assert records[1].slug is None
        assert records[1].field_data["f1"] == "//cdn.example.com/c2.png"

    def test_default_upload_dir(self, manifest_path: Path, tmp_path: Path):
        assert ManifestHost.load(manifest_path).upload_dir == tmp_path / "optimized"

    def test_upload_and_replace(self, manifest_path: Path, tmp_output: Path):
        host = ManifestHost.load(manifest_path, upload_dir=tmp_output)

        handle = host.upload_image(b"RIFF", "optimized_Hero_1.webp", "image/webp")
        host.replace_background_image("n1", handle)

        assert Path(handle).read_bytes() == b"RIFF"
        node = host.nodes[0]
        assert node.background_image_address == handle
        assert node.background_image_name == "optimized_Hero_1.webp"

    def test_replace_unknown_node(self, manifest_path: Path):
        host = ManifestHost.load(manifest_path)
        with pytest.raises(KeyError):
            host.replace_background_image("missing", "x")

    def test_save_persists_changes(self, manifest_path: Path, tmp_output: Path):
        host = ManifestHost.load(manifest_path, upload_dir=tmp_output)
        handle = host.upload_image(b"data", "optimized_Hero_1.webp", "image/webp")
        host.replace_background_image("n1", handle)

        host.save()

        saved = json.loads(manifest_path.read_text())
        assert saved["nodes"][0]["backgroundImage"]["url"] == handle
        assert saved["collections"][0]["items"][0]["slug"] == "post-1"
        assert ManifestHost.load(manifest_path).nodes[0].background_image_address == handle

    def test_save_without_path(self):
        host = ManifestHost.from_dict({"nodes": []})
        with pytest.raises(ValueError):
            host.save()

    def test_unreadable_manifest(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("[1, 2")
        with pytest.raises(ConfigError):
            ManifestHost.load(path)

    def test_non_object_manifest(self, tmp_path: Path):
        path = tmp_path / "list.json"
        path.write_text("[]")
        with pytest.raises(ConfigError):
            ManifestHost.load(path)

    def test_save_keeps_untouched_addresses_as_written(
        self, manifest_path: Path, tmp_output: Path
    ):
        host = ManifestHost.load(manifest_path, upload_dir=tmp_output)
        handle = host.upload_image(b"data", "optimized_Hero_1.webp", "image/webp")
        host.replace_background_image("n1", handle)

        host.save()

        saved = json.loads(manifest_path.read_text())
        assert saved["nodes"][0]["backgroundImage"] == {
            "url": handle,
            "name": "optimized_Hero_1.webp",
        }
        assert saved["collections"][0]["items"][0]["fieldData"]["f1"] == {
            "url": "images/cover.jpg"
        }
        assert saved["nodes"][2] == {"id": "n3", "name": "Empty"}


class TestMalformedManifest:
    """Tests for manifests with broken entries."""

    def test_malformed_nodes_are_skipped(self, tmp_path: Path):
        data = {
            "nodes": [
                {"name": "No id", "backgroundImage": {"url": "a.png"}},
                {"id": "n2", "backgroundImage": ["a.png"]},
                "not-a-node",
                {"id": "n4", "name": "Good", "backgroundImage": "b.png"},
            ]
        }

        host = ManifestHost.from_dict(data, base_dir=tmp_path)

        assert [n.id for n in host.list_nodes_with_background_image()] == ["n4"]

    def test_malformed_collection_entries_are_skipped(self, tmp_path: Path):
        data = {
            "collections": [
                {"fields": [], "items": []},
                {
                    "name": "Blog",
                    "fields": [{"id": "f1"}, {"id": "f2", "name": "Cover", "type": "image"}],
                    "items": [
                        {"slug": "no-id", "fieldData": {"f2": "x.png"}},
                        {"id": "i2", "fieldData": "oops"},
                        {"id": "i3", "fieldData": {"f2": "c.png"}},
                    ],
                },
            ]
        }

        host = ManifestHost.from_dict(data, base_dir=tmp_path)

        [collection] = host.list_collections()
        assert collection.name == "Blog"
        assert [f.id for f in collection.list_fields()] == ["f2"]
        assert [r.id for r in collection.list_records()] == ["i3"]
        assert collection.records[0].field_data["f2"] == str(tmp_path / "c.png")

    def test_non_list_sections_are_ignored(self):
        host = ManifestHost.from_dict({"nodes": {"id": "n1"}, "collections": "none"})
        assert host.nodes == []
        assert host.collections == []

    def test_save_preserves_skipped_entries(self, tmp_path: Path):
        path = tmp_path / "site.json"
        data = {"nodes": [{"name": "No id"}, {"id": "n2", "backgroundImage": "b.png"}]}
        path.write_text(json.dumps(data))

        host = ManifestHost.load(path)
        host.save()

        assert json.loads(path.read_text()) == data

    def test_nodes_satisfy_canvas_protocol(self):
        host = ManifestHost.from_dict({"nodes": [{"id": 1, "backgroundImage": "a.png"}]})
        [node] = host.list_nodes_with_background_image()
        assert isinstance(node, CanvasNode)
        assert node.id == "1"
