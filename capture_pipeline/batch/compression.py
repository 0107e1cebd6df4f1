"""On-device image compression with Pillow.

Images are fitted into a bounding box, then JPEG quality is stepped down
until the encoded size fits the byte budget or the quality floor is hit.
If that is still not enough, one final shrink pass runs at a fixed quality.
"""

from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass
from pathlib import PurePath

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from capture_pipeline.errors import CompressionError

from .models import DocumentKind

SKIP_RATIO = 0.8
QUALITY_STEP = 0.1
MIN_QUALITY = 0.1
FALLBACK_MIN_WIDTH = 800
FALLBACK_SCALE = 0.7
FALLBACK_QUALITY = 0.8
THUMBNAIL_QUALITY = 0.6
PLACEHOLDER_BACKGROUND = (55, 65, 81)
PLACEHOLDER_FOREGROUND = (229, 231, 235)


@dataclass(frozen=True)
class CompressionOptions:
    max_width: int = 1920
    max_height: int = 1920
    max_size_mb: float = 2.5
    quality: float = 0.85

    @property
    def max_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


DEFAULT_OPTIONS = CompressionOptions()
AGGRESSIVE_OPTIONS = CompressionOptions(max_width=1280, max_height=1280, max_size_mb=1.5, quality=0.75)
VIDEO_FRAME_OPTIONS = CompressionOptions(max_width=1280, max_height=1280, quality=0.8)
UPLOAD_OPTIONS = CompressionOptions(max_size_mb=2.0)


@dataclass(frozen=True)
class CompressionResult:
    data: bytes
    original_size: int
    compressed_size: int
    quality: float | None = None
    dimensions: tuple[int, int] | None = None
    skipped: bool = False

    @property
    def ratio(self) -> float:
        if not self.original_size:
            return 1.0
        return self.compressed_size / self.original_size


def needs_compression(data: bytes, options: CompressionOptions = DEFAULT_OPTIONS) -> bool:
    return len(data) >= options.max_bytes * SKIP_RATIO


def _load(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image = ImageOps.exif_transpose(image)
        return image.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise CompressionError(f"Cannot decode image: {exc}") from exc


def _encode(image: Image.Image, quality: float) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=max(1, int(round(quality * 100))), optimize=True)
    return buffer.getvalue()


def _fit(image: Image.Image, max_width: int, max_height: int) -> Image.Image:
    width, height = image.size
    scale = min(max_width / width, max_height / height, 1.0)
    if scale >= 1.0:
        return image
    size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return image.resize(size, Image.Resampling.LANCZOS)


def compress_image(data: bytes, options: CompressionOptions = DEFAULT_OPTIONS) -> CompressionResult:
    original_size = len(data)
    if not needs_compression(data, options):
        return CompressionResult(data=data, original_size=original_size, compressed_size=original_size, skipped=True)

    image = _fit(_load(data), options.max_width, options.max_height)
    quality = options.quality
    encoded = _encode(image, quality)

    while len(encoded) > options.max_bytes and quality > MIN_QUALITY:
        quality = round(quality - QUALITY_STEP, 2)
        encoded = _encode(image, quality)

    if len(encoded) > options.max_bytes and image.width > FALLBACK_MIN_WIDTH:
        size = (int(image.width * FALLBACK_SCALE), int(image.height * FALLBACK_SCALE))
        image = image.resize(size, Image.Resampling.LANCZOS)
        quality = FALLBACK_QUALITY
        encoded = _encode(image, quality)

    return CompressionResult(
        data=encoded,
        original_size=original_size,
        compressed_size=len(encoded),
        quality=quality,
        dimensions=image.size,
    )


def aggressive_compress(data: bytes) -> CompressionResult:
    return compress_image(data, AGGRESSIVE_OPTIONS)


def make_thumbnail(data: bytes, size: int = 256) -> bytes:
    image = _load(data)
    image.thumbnail((size, size), Image.Resampling.LANCZOS)
    return _encode(image, THUMBNAIL_QUALITY)


def placeholder_thumbnail(label: str, size: int = 256) -> bytes:
    """Flat tile with a short label, for documents that are not images."""
    image = Image.new("RGB", (size, size), PLACEHOLDER_BACKGROUND)
    draw = ImageDraw.Draw(image)
    text = (label or "FILE").upper()[:6]
    left, top, right, bottom = draw.textbbox((0, 0), text)
    draw.text(((size - (right - left)) / 2, (size - (bottom - top)) / 2), text, fill=PLACEHOLDER_FOREGROUND)
    return _encode(image, THUMBNAIL_QUALITY)


def guess_mime_type(name: str, default: str = "application/octet-stream") -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or default


def detect_document_kind(filename: str) -> DocumentKind:
    name = PurePath(filename).name.lower()
    if "cert" in name or "coa" in name:
        return DocumentKind.CERTIFICATE
    if "grade" in name or "psa" in name or "bgs" in name:
        return DocumentKind.GRADING
    if "apprais" in name:
        return DocumentKind.APPRAISAL
    if "receipt" in name or "invoice" in name:
        return DocumentKind.RECEIPT
    if "auth" in name:
        return DocumentKind.AUTHENTICITY
    return DocumentKind.OTHER


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB")
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


__all__ = [
    "AGGRESSIVE_OPTIONS",
    "DEFAULT_OPTIONS",
    "UPLOAD_OPTIONS",
    "VIDEO_FRAME_OPTIONS",
    "CompressionOptions",
    "CompressionResult",
    "aggressive_compress",
    "compress_image",
    "detect_document_kind",
    "format_bytes",
    "guess_mime_type",
    "make_thumbnail",
    "needs_compression",
    "placeholder_thumbnail",
]
