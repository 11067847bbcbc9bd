"""JSON manifest host: a local stand-in for the document and content APIs.

Manifest format::

    {
      "nodes": [
        {"id": "n1", "name": "Hero",
         "backgroundImage": {"url": "https://...", "name": "hero.png"}}
      ],
      "collections": [
        {"name": "Blog",
         "fields": [{"id": "f1", "name": "Cover", "type": "image"}],
         "items": [{"id": "i1", "slug": "post-1", "fieldData": {"f1": {"url": "..."}}}]}
      ]
    }

Relative local paths are resolved against the manifest's directory when
read; the file itself keeps the addresses as written. Malformed nodes,
collections, fields and items are logged and skipped.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from imgbudget.errors import ConfigError
from imgbudget.loader import is_remote_address
from imgbudget.utils.format import sanitize_filename


@dataclass
class ManifestNode:
    id: str
    name: str | None
    background_image_address: str | None
    background_image_name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass
class ManifestField:
    id: str
    name: str
    type: str


@dataclass
class ManifestRecord:
    id: str
    slug: str | None
    field_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ManifestCollection:
    name: str
    fields: list[ManifestField] = field(default_factory=list)
    records: list[ManifestRecord] = field(default_factory=list)

    def list_records(self) -> list[ManifestRecord]:
        return list(self.records)

    def list_fields(self) -> list[ManifestField]:
        return list(self.fields)


def _resolve_local(address: str | None, base_dir: Path) -> str | None:
    if not address or is_remote_address(address) or address.startswith("data:"):
        return address
    path = Path(address).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return str(path)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return value


def _parse_node(raw: Any, base_dir: Path) -> ManifestNode:
    if not isinstance(raw, Mapping):
        raise ValueError(f"node must be an object, got {type(raw).__name__}")
    image = raw.get("backgroundImage") or {}
    if isinstance(image, str):
        image = {"url": image}
    if not isinstance(image, Mapping):
        raise ValueError("backgroundImage must be an object or a string")
    return ManifestNode(
        id=str(raw["id"]),
        name=None if raw.get("name") is None else str(raw["name"]),
        background_image_address=_resolve_local(_optional_str(image.get("url")), base_dir),
        background_image_name=_optional_str(image.get("name")),
        raw=raw,
    )


def _parse_field(raw: Any) -> ManifestField:
    if not isinstance(raw, Mapping):
        raise ValueError(f"field must be an object, got {type(raw).__name__}")
    name = raw["name"]
    return ManifestField(
        id=str(raw.get("id", name)), name=str(name), type=str(raw.get("type", ""))
    )


def _parse_item(raw: Any, image_field_ids: set[str], base_dir: Path) -> ManifestRecord:
    if not isinstance(raw, Mapping):
        raise ValueError(f"item must be an object, got {type(raw).__name__}")
    field_data = raw.get("fieldData") or {}
    if not isinstance(field_data, Mapping):
        raise ValueError("fieldData must be an object")
    field_data = dict(field_data)
    for key in image_field_ids & field_data.keys():
        value = field_data[key]
        if isinstance(value, str):
            field_data[key] = _resolve_local(value, base_dir)
        elif isinstance(value, Mapping) and isinstance(value.get("url"), str):
            field_data[key] = {**value, "url": _resolve_local(value["url"], base_dir)}
    return ManifestRecord(id=str(raw["id"]), slug=raw.get("slug"), field_data=field_data)


def _parse_collection(raw: Any, base_dir: Path) -> ManifestCollection:
    if not isinstance(raw, Mapping):
        raise ValueError(f"collection must be an object, got {type(raw).__name__}")
    name = str(raw["name"])

    fields: list[ManifestField] = []
    for entry in _entries(raw, "fields"):
        try:
            fields.append(_parse_field(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed field in collection {name}: {e!r}")

    image_field_ids = {f.id for f in fields if f.type == "image"}
    records: list[ManifestRecord] = []
    for entry in _entries(raw, "items"):
        try:
            records.append(_parse_item(entry, image_field_ids, base_dir))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed item in collection {name}: {e!r}")
    return ManifestCollection(name=name, fields=fields, records=records)


def _entries(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key) or []
    if not isinstance(value, list):
        logger.warning(f"Ignoring {key!r}: expected a list, got {type(value).__name__}")
        return []
    return value


class ManifestHost:
    """Document and content repository backed by a JSON manifest file.

    Uploaded artifacts are written into ``upload_dir``; replacing a node's
    background points it at the uploaded file. Call ``save()`` to persist
    the updated manifest.
    """

    def __init__(
        self,
        nodes: list[ManifestNode],
        collections: list[ManifestCollection],
        path: Path | None = None,
        upload_dir: Path | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.nodes = nodes
        self.collections = collections
        self.path = path
        self.upload_dir = upload_dir or (
            path.parent / "optimized" if path else Path("optimized")
        )
        self.data = data

    @classmethod
    def load(cls, path: Path, upload_dir: Path | None = None) -> ManifestHost:
        """Read a manifest file.

        Raises:
            ConfigError: If the file is unreadable or not a manifest object
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read manifest {path}: {e}", path=str(path)) from e
        if not isinstance(data, dict):
            raise ConfigError(f"Manifest root must be an object: {path}", path=str(path))
        return cls.from_dict(data, base_dir=path.parent, path=path, upload_dir=upload_dir)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        base_dir: Path = Path("."),
        path: Path | None = None,
        upload_dir: Path | None = None,
    ) -> ManifestHost:
        nodes: list[ManifestNode] = []
        for raw in _entries(data, "nodes"):
            try:
                nodes.append(_parse_node(raw, base_dir))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed node: {e!r}")

        collections: list[ManifestCollection] = []
        for raw in _entries(data, "collections"):
            try:
                collections.append(_parse_collection(raw, base_dir))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed collection: {e!r}")
        return cls(nodes, collections, path=path, upload_dir=upload_dir, data=data)

    # Document API

    def list_nodes_with_background_image(self) -> list[ManifestNode]:
        return [n for n in self.nodes if n.background_image_address]

    def upload_image(self, data: bytes, filename: str, mime_type: str) -> str:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        target = self.upload_dir / sanitize_filename(filename)
        target.write_bytes(data)
        logger.debug(f"Uploaded {len(data)} bytes ({mime_type}) to {target}")
        return str(target)

    def replace_background_image(self, node_id: str, asset_handle: Any) -> None:
        for node in self.nodes:
            if node.id == node_id:
                address = str(asset_handle)
                node.background_image_address = address
                node.background_image_name = Path(address).name
                image = node.raw.get("backgroundImage")
                image = dict(image) if isinstance(image, Mapping) else {}
                image.update(url=address, name=node.background_image_name)
                node.raw["backgroundImage"] = image
                return
        raise KeyError(f"Unknown node: {node_id}")

    # Content repository API

    def list_collections(self) -> list[ManifestCollection]:
        return list(self.collections)

    def to_dict(self) -> dict[str, Any]:
        """Manifest contents, with untouched addresses exactly as they were read."""
        if self.data is not None:
            return copy.deepcopy(self.data)
        return {
            "nodes": [
                {
                    "id": n.id,
                    "name": n.name,
                    "backgroundImage": {
                        "url": n.background_image_address,
                        "name": n.background_image_name,
                    },
                }
                for n in self.nodes
            ],
            "collections": [
                {
                    "name": c.name,
                    "fields": [
                        {"id": f.id, "name": f.name, "type": f.type} for f in c.fields
                    ],
                    "items": [
                        {"id": r.id, "slug": r.slug, "fieldData": r.field_data}
                        for r in c.records
                    ],
                }
                for c in self.collections
            ],
        }

    def save(self, path: Path | None = None) -> Path:
        """Write the manifest, including replaced node images, back to disk."""
        target = path or self.path
        if target is None:
            raise ValueError("No manifest path to save to")
        target.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return target
