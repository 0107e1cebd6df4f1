from .models import CaptureDraft, CaptureItem, DocumentKind, ItemKind, ItemMetadata
from .compression import (
    AGGRESSIVE_OPTIONS,
    DEFAULT_OPTIONS,
    CompressionOptions,
    CompressionResult,
    aggressive_compress,
    compress_image,
    detect_document_kind,
    format_bytes,
    needs_compression,
)
from .store import CaptureBatchStore
from .uploads import (
    document_draft_from_file,
    photo_draft_from_file,
    photo_draft_from_frame,
    video_draft_from_file,
)

__all__ = [
    "AGGRESSIVE_OPTIONS",
    "DEFAULT_OPTIONS",
    "CaptureBatchStore",
    "CaptureDraft",
    "CaptureItem",
    "CompressionOptions",
    "CompressionResult",
    "DocumentKind",
    "ItemKind",
    "ItemMetadata",
    "aggressive_compress",
    "compress_image",
    "detect_document_kind",
    "document_draft_from_file",
    "format_bytes",
    "needs_compression",
    "photo_draft_from_file",
    "photo_draft_from_frame",
    "video_draft_from_file",
]
