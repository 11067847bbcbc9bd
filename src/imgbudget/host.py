"""Interfaces of the host collaborators the optimizer talks to.

The host document editor, its content repository, the entitlement check and
the notification surface all live outside this package. They are described
here as Protocols; any method may be synchronous or return an awaitable.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Mapping, Sequence
from typing import Any, Literal, Protocol, TypeVar, Union, runtime_checkable

from loguru import logger

T = TypeVar("T")
MaybeAwaitable = Union[T, Awaitable[T]]

NotifyVariant = Literal["info", "success", "warning", "error"]


async def maybe_await(value: MaybeAwaitable[T]) -> T:
    """Await ``value`` if it is awaitable, otherwise return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value


@runtime_checkable
class CanvasNode(Protocol):
    """A document node carrying a background image."""

    id: str
    name: str | None
    background_image_address: str | None
    background_image_name: str | None


class DocumentAPI(Protocol):
    def list_nodes_with_background_image(
        self,
    ) -> MaybeAwaitable[Sequence[CanvasNode]]: ...

    def upload_image(
        self, data: bytes, filename: str, mime_type: str
    ) -> MaybeAwaitable[Any]: ...

    def replace_background_image(
        self, node_id: str, asset_handle: Any
    ) -> MaybeAwaitable[None]: ...


class ContentField(Protocol):
    id: str
    name: str
    type: str


class ContentRecord(Protocol):
    id: str
    slug: str | None
    field_data: Mapping[str, Any]


class ContentCollection(Protocol):
    name: str

    def list_records(self) -> MaybeAwaitable[Sequence[ContentRecord]]: ...

    def list_fields(self) -> MaybeAwaitable[Sequence[ContentField]]: ...


class ContentRepositoryAPI(Protocol):
    def list_collections(self) -> MaybeAwaitable[Sequence[ContentCollection]]: ...


class EntitlementGate(Protocol):
    def is_allowed_to_scan(self) -> MaybeAwaitable[bool]: ...

    def record_scan_used(self) -> MaybeAwaitable[None]: ...


class Notifier(Protocol):
    def notify(self, message: str, variant: NotifyVariant = "info") -> None: ...


class AllowAllEntitlement:
    """Entitlement gate that never refuses a scan."""

    def is_allowed_to_scan(self) -> bool:
        return True

    def record_scan_used(self) -> None:
        return None


class LogNotifier:
    """Notifier that writes user-facing messages to the log."""

    _LEVELS = {
        "info": "INFO",
        "success": "SUCCESS",
        "warning": "WARNING",
        "error": "ERROR",
    }

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, variant: NotifyVariant = "info") -> None:
        self.messages.append((variant, message))
        logger.log(self._LEVELS.get(variant, "INFO"), message)
