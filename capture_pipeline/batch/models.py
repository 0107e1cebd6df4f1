from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ItemKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    DOCUMENT = "document"


class DocumentKind(str, Enum):
    CERTIFICATE = "certificate"
    GRADING = "grading"
    APPRAISAL = "appraisal"
    RECEIPT = "receipt"
    AUTHENTICITY = "authenticity"
    OTHER = "other"


@dataclass(frozen=True)
class ItemMetadata:
    document_kind: DocumentKind | None = None
    extracted_text: str | None = None
    barcodes: tuple[str, ...] = ()
    video_frame_refs: tuple[bytes, ...] = field(default=(), repr=False)
    original_byte_size: int | None = None
    compressed_byte_size: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class CaptureDraft:
    """Raw capture handed to the batch store before compression.

    For videos ``data`` is the container bytes and ``frames`` the extracted
    key frames.
    """

    kind: ItemKind
    data: bytes = field(repr=False)
    display_name: str = ""
    mime_type: str = "image/jpeg"
    frames: tuple[bytes, ...] = field(default=(), repr=False)
    metadata: ItemMetadata = field(default_factory=ItemMetadata)


@dataclass(frozen=True)
class CaptureItem:
    item_id: str
    kind: ItemKind
    raw_data: bytes = field(repr=False)
    original_data: bytes | None = field(default=None, repr=False)
    thumbnail: bytes = field(default=b"", repr=False)
    display_name: str = ""
    mime_type: str = "image/jpeg"
    selected: bool = True
    metadata: ItemMetadata = field(default_factory=ItemMetadata)

    @property
    def byte_size(self) -> int:
        return len(self.raw_data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


__all__ = ["CaptureDraft", "CaptureItem", "DocumentKind", "ItemKind", "ItemMetadata"]
