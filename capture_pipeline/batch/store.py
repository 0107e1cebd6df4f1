"""Bounded, selectable batch of compressed capture items."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from pathlib import PurePath
from typing import Callable, Optional

from capture_pipeline.config import BatchSettings
from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import CompressionError

from .compression import (
    DEFAULT_OPTIONS,
    VIDEO_FRAME_OPTIONS,
    CompressionOptions,
    compress_image,
    format_bytes,
    make_thumbnail,
    placeholder_thumbnail,
)
from .models import CaptureDraft, CaptureItem, ItemKind

DEFAULT_MAX_ITEMS = 15


class CaptureBatchStore:
    """Ordered collection of :class:`CaptureItem` with a hard size limit.

    Items are immutable; every mutation swaps in a new tuple, so a caller
    holding ``selected_items`` keeps a stable snapshot. Adds that are still
    compressing hold a reserved slot so concurrent adds cannot overshoot.
    """

    def __init__(
        self,
        *,
        max_items: int = DEFAULT_MAX_ITEMS,
        compression: CompressionOptions = DEFAULT_OPTIONS,
        video_frame_compression: CompressionOptions = VIDEO_FRAME_OPTIONS,
        thumbnail_size: int = 256,
        status_callback: Callable[[str, dict], None] | None = None,
        id_factory: Callable[[], str] | None = None,
        logger: LoggerLike = None,
    ) -> None:
        self._logger = ensure_structured_logger(logger, fallback_name="CaptureBatch")
        self._max_items = max(1, int(max_items))
        self._compression = compression
        self._video_frame_compression = video_frame_compression
        self._thumbnail_size = thumbnail_size
        self._status_callback = status_callback
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._items: tuple[CaptureItem, ...] = ()
        self._reserved = 0
        self._subscribers: list[Callable[[tuple[CaptureItem, ...]], None]] = []

    @classmethod
    def from_settings(cls, settings: BatchSettings, **kwargs) -> "CaptureBatchStore":
        compression = CompressionOptions(
            max_width=settings.max_dimension,
            max_height=settings.max_dimension,
            max_size_mb=settings.max_size_mb,
            quality=settings.quality,
        )
        return cls(
            max_items=settings.max_items,
            compression=compression,
            thumbnail_size=settings.thumbnail_size,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read side

    @property
    def items(self) -> tuple[CaptureItem, ...]:
        return self._items

    @property
    def selected_items(self) -> tuple[CaptureItem, ...]:
        return tuple(item for item in self._items if item.selected)

    @property
    def count(self) -> int:
        return len(self._items)

    @property
    def selected_count(self) -> int:
        return sum(1 for item in self._items if item.selected)

    @property
    def max_items(self) -> int:
        return self._max_items

    @property
    def is_full(self) -> bool:
        return len(self._items) + self._reserved >= self._max_items

    def get(self, item_id: str) -> Optional[CaptureItem]:
        for item in self._items:
            if item.item_id == item_id:
                return item
        return None

    def subscribe(self, callback: Callable[[tuple[CaptureItem, ...]], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        callback(self._items)
        return lambda: self._subscribers.remove(callback)

    def _commit(self, items: tuple[CaptureItem, ...]) -> None:
        self._items = items
        for subscriber in list(self._subscribers):
            subscriber(self._items)

    def _notify(self, status_type: str, payload: dict) -> None:
        if self._status_callback:
            self._status_callback(status_type, payload)

    # ------------------------------------------------------------------
    # Mutations

    async def add_item(self, draft: CaptureDraft) -> bool:
        """Compress ``draft`` and append it; returns False when rejected."""
        if self.is_full:
            message = f"Maximum {self._max_items} items allowed"
            self._logger.warning("Rejected %s: %s", draft.kind.value, message)
            self._notify("batch_full", {"message": message, "max_items": self._max_items})
            return False

        self._reserved += 1
        try:
            item = await asyncio.to_thread(self._build_item, draft)
        except CompressionError as exc:
            self._logger.warning("Could not store %s: %s", draft.display_name or draft.kind.value, exc)
            self._notify("capture_error", {"message": str(exc)})
            return False
        finally:
            self._reserved -= 1

        self._commit(self._items + (item,))
        self._logger.debug(
            "Stored %s %s (%s -> %s)",
            item.kind.value,
            item.item_id,
            format_bytes(item.metadata.original_byte_size or 0),
            format_bytes(item.byte_size),
        )
        return True

    def remove_item(self, item_id: str) -> bool:
        remaining = tuple(item for item in self._items if item.item_id != item_id)
        if len(remaining) == len(self._items):
            return False
        self._commit(remaining)
        return True

    def toggle_selection(self, item_id: str) -> bool:
        found = False
        updated = []
        for item in self._items:
            if item.item_id == item_id:
                item = replace(item, selected=not item.selected)
                found = True
            updated.append(item)
        if found:
            self._commit(tuple(updated))
        return found

    def select_all(self) -> None:
        self._set_all(True)

    def deselect_all(self) -> None:
        self._set_all(False)

    def _set_all(self, selected: bool) -> None:
        if all(item.selected == selected for item in self._items):
            return
        self._commit(tuple(replace(item, selected=selected) for item in self._items))

    def clear(self) -> None:
        if self._items:
            self._commit(())

    # ------------------------------------------------------------------
    # Compression (runs in a worker thread)

    def _build_item(self, draft: CaptureDraft) -> CaptureItem:
        match draft.kind:
            case ItemKind.VIDEO:
                return self._build_video(draft)
            case ItemKind.DOCUMENT if not draft.mime_type.startswith("image/"):
                return self._build_passthrough(draft)
            case _:
                return self._build_image(draft)

    def _build_image(self, draft: CaptureDraft) -> CaptureItem:
        result = compress_image(draft.data, self._compression)
        return CaptureItem(
            item_id=self._id_factory(),
            kind=draft.kind,
            raw_data=result.data,
            original_data=draft.data,
            thumbnail=make_thumbnail(result.data, self._thumbnail_size),
            display_name=draft.display_name,
            mime_type="image/jpeg" if not result.skipped else draft.mime_type,
            metadata=replace(
                draft.metadata,
                original_byte_size=result.original_size,
                compressed_byte_size=result.compressed_size,
            ),
        )

    def _build_passthrough(self, draft: CaptureDraft) -> CaptureItem:
        extension = PurePath(draft.display_name).suffix.lstrip(".") or "doc"
        return CaptureItem(
            item_id=self._id_factory(),
            kind=draft.kind,
            raw_data=draft.data,
            original_data=draft.data,
            thumbnail=placeholder_thumbnail(extension, self._thumbnail_size),
            display_name=draft.display_name,
            mime_type=draft.mime_type,
            metadata=replace(
                draft.metadata,
                original_byte_size=len(draft.data),
                compressed_byte_size=len(draft.data),
            ),
        )

    def _build_video(self, draft: CaptureDraft) -> CaptureItem:
        if not draft.frames:
            raise CompressionError(f"No frames extracted from {draft.display_name or 'video'}")
        frames = tuple(compress_image(frame, self._video_frame_compression).data for frame in draft.frames)
        return CaptureItem(
            item_id=self._id_factory(),
            kind=ItemKind.VIDEO,
            raw_data=frames[0],
            original_data=draft.data,
            thumbnail=make_thumbnail(frames[0], self._thumbnail_size),
            display_name=draft.display_name,
            mime_type="image/jpeg",
            metadata=replace(
                draft.metadata,
                video_frame_refs=frames,
                original_byte_size=len(draft.data),
                compressed_byte_size=sum(len(frame) for frame in frames),
            ),
        )


__all__ = ["CaptureBatchStore", "DEFAULT_MAX_ITEMS"]
