"""Turn files on disk and camera snapshots into capture drafts."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Union

import aiofiles
import cv2
import numpy as np

from capture_pipeline.errors import CompressionError

from .compression import detect_document_kind, guess_mime_type
from .models import CaptureDraft, ItemKind, ItemMetadata

PathLike = Union[str, Path]
KEY_FRAME_QUALITY = 95


async def _read_bytes(path: Path) -> bytes:
    async with aiofiles.open(path, "rb") as fh:
        return await fh.read()


async def photo_draft_from_file(path: PathLike, *, description: str | None = None) -> CaptureDraft:
    path = Path(path)
    return CaptureDraft(
        kind=ItemKind.PHOTO,
        data=await _read_bytes(path),
        display_name=path.name,
        mime_type=guess_mime_type(path.name, "image/jpeg"),
        metadata=ItemMetadata(description=description),
    )


def photo_draft_from_frame(frame: bytes, index: int = 1) -> CaptureDraft:
    return CaptureDraft(kind=ItemKind.PHOTO, data=frame, display_name=f"Capture {index}")


async def document_draft_from_file(
    path: PathLike,
    *,
    extracted_text: str | None = None,
    barcodes: tuple[str, ...] = (),
) -> CaptureDraft:
    path = Path(path)
    return CaptureDraft(
        kind=ItemKind.DOCUMENT,
        data=await _read_bytes(path),
        display_name=path.name,
        mime_type=guess_mime_type(path.name),
        metadata=ItemMetadata(
            document_kind=detect_document_kind(path.name),
            extracted_text=extracted_text,
            barcodes=tuple(barcodes),
        ),
    )


def frame_positions(total_frames: int, count: int) -> list[int]:
    """Evenly spaced frame indexes covering the whole clip."""
    if total_frames <= 0 or count <= 0:
        return []
    positions = np.linspace(0, total_frames - 1, num=min(count, total_frames))
    return sorted({int(round(position)) for position in positions})


def extract_key_frames(path: Path, count: int = 5) -> tuple[bytes, ...]:
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise CompressionError(f"Cannot open video {path.name}")
    try:
        total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        frames = []
        for position in frame_positions(total, count):
            cap.set(cv2.CAP_PROP_POS_FRAMES, position)
            ok, frame = cap.read()
            if not ok or frame is None:
                continue
            ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, KEY_FRAME_QUALITY])
            if ok:
                frames.append(buffer.tobytes())
        return tuple(frames)
    finally:
        cap.release()


async def video_draft_from_file(path: PathLike, *, frame_count: int = 5) -> CaptureDraft:
    path = Path(path)
    frames = await asyncio.to_thread(extract_key_frames, path, frame_count)
    if not frames:
        raise CompressionError(f"No frames could be read from {path.name}")
    return CaptureDraft(
        kind=ItemKind.VIDEO,
        data=await _read_bytes(path),
        display_name=path.name,
        mime_type=guess_mime_type(path.name, "video/mp4"),
        frames=frames,
    )


__all__ = [
    "document_draft_from_file",
    "extract_key_frames",
    "frame_positions",
    "photo_draft_from_file",
    "photo_draft_from_frame",
    "video_draft_from_file",
]
