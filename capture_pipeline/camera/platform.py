"""Platform seam for camera access, plus an OpenCV-backed implementation.

Only :class:`~capture_pipeline.camera.executor.EffectExecutor` talks to a
``MediaPlatform``; everything else goes through the stream manager.
"""

from __future__ import annotations

import asyncio
import os
import re
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol

import cv2

from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import DeviceError, DeviceOpenError, PermissionDeniedError

from .state import CaptureDevice, StreamCapabilities, ZoomRange, DEFAULT_MODE, SINGLE_SHOT

REAR_LABEL_HINTS = ("back", "rear", "environment")
# Zoom is exposed as a multiplier of the driver's baseline zoom value.
OPENCV_ZOOM_RANGE = ZoomRange(min=1.0, max=4.0, step=0.1)
_VIDEO4LINUX = Path("/sys/class/video4linux")


@dataclass(frozen=True)
class StreamConstraints:
    device_id: str | None
    width: int = 1920
    height: int = 1080
    facing_mode: str = "environment"
    audio: bool = False


class MediaTrack(Protocol):
    track_id: str
    device_id: str

    @property
    def is_live(self) -> bool: ...

    def get_capabilities(self) -> StreamCapabilities: ...

    async def apply_constraints(self, constraints: Mapping[str, Any]) -> None: ...

    async def grab_frame(self, quality: float) -> bytes | None: ...

    async def stop(self) -> None: ...


class MediaStream(Protocol):
    @property
    def video_track(self) -> MediaTrack: ...

    async def stop(self) -> None: ...


class OutputSurface(Protocol):
    @property
    def is_attached(self) -> bool: ...

    def attach(self, stream: MediaStream) -> None: ...

    def detach(self) -> None: ...

    async def play(self) -> None: ...


class MediaPlatform(Protocol):
    async def enumerate_devices(self) -> list[CaptureDevice]: ...

    async def request_permission(self) -> None: ...

    async def open_stream(self, constraints: StreamConstraints) -> MediaStream: ...


def is_rear_label(label: str, hints: Iterable[str] = REAR_LABEL_HINTS) -> bool:
    lowered = label.lower()
    return any(hint in lowered for hint in hints)


def choose_device(
    devices: Iterable[CaptureDevice],
    preferred_id: str | None = None,
    hints: Iterable[str] = REAR_LABEL_HINTS,
) -> CaptureDevice | None:
    """Pick the explicit device if present, else a rear-facing one, else the first."""
    candidates = list(devices)
    if not candidates:
        return None
    if preferred_id:
        for device in candidates:
            if device.device_id == preferred_id:
                return device
    hints = tuple(hints)
    for device in candidates:
        if device.is_rear_facing or is_rear_label(device.label, hints):
            return device
    return candidates[0]


class HeadlessSurface:
    """Output surface for environments without a display."""

    def __init__(self) -> None:
        self._stream: MediaStream | None = None
        self.playing = False

    @property
    def is_attached(self) -> bool:
        return self._stream is not None

    @property
    def stream(self) -> MediaStream | None:
        return self._stream

    def attach(self, stream: MediaStream) -> None:
        self._stream = stream
        self.playing = False

    def detach(self) -> None:
        self._stream = None
        self.playing = False

    async def play(self) -> None:
        if self._stream is None:
            raise DeviceError("No stream attached")
        if not self._stream.video_track.is_live:
            raise DeviceError("Track is not producing frames yet")
        self.playing = True


# ---------------------------------------------------------------------------
# OpenCV backend


class OpenCVTrack:
    def __init__(self, capture: "cv2.VideoCapture", device_id: str) -> None:
        self.track_id = uuid.uuid4().hex
        self.device_id = device_id
        self._cap: Optional["cv2.VideoCapture"] = capture
        self._zoom_base = 0.0

    @property
    def is_live(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def _supports(self, prop: int) -> bool:
        value = self._cap.get(prop)
        return value >= 0 and self._cap.set(prop, value)

    def get_capabilities(self) -> StreamCapabilities:
        if not self.is_live:
            return StreamCapabilities()

        self._zoom_base = self._cap.get(cv2.CAP_PROP_ZOOM)
        zoom_range = OPENCV_ZOOM_RANGE if self._zoom_base > 0 and self._supports(cv2.CAP_PROP_ZOOM) else None
        focus_modes = (
            frozenset({DEFAULT_MODE, "manual", SINGLE_SHOT})
            if self._supports(cv2.CAP_PROP_AUTOFOCUS) else frozenset()
        )
        exposure_modes = (
            frozenset({DEFAULT_MODE, "manual"})
            if self._supports(cv2.CAP_PROP_AUTO_EXPOSURE) else frozenset()
        )
        white_balance_modes = (
            frozenset({DEFAULT_MODE, "manual"})
            if self._supports(cv2.CAP_PROP_AUTO_WB) else frozenset()
        )
        # UVC devices expose no torch control through OpenCV.
        return StreamCapabilities(
            has_torch=False,
            zoom_range=zoom_range,
            focus_modes=focus_modes,
            exposure_modes=exposure_modes,
            white_balance_modes=white_balance_modes,
        )

    def _apply(self, constraints: Mapping[str, Any]) -> None:
        if not self.is_live:
            raise DeviceError(f"Track {self.track_id} is not live")
        for key, value in constraints.items():
            match key:
                case "zoom":
                    self._cap.set(cv2.CAP_PROP_ZOOM, self._zoom_base * float(value))
                case "focusMode":
                    if value == SINGLE_SHOT:
                        self._cap.set(cv2.CAP_PROP_AUTOFOCUS, 0)
                    self._cap.set(cv2.CAP_PROP_AUTOFOCUS, 0 if value == "manual" else 1)
                case "exposureMode":
                    # V4L2: 3 = aperture priority (auto), 1 = manual
                    self._cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, 1 if value == "manual" else 3)
                case "whiteBalanceMode":
                    self._cap.set(cv2.CAP_PROP_AUTO_WB, 0 if value == "manual" else 1)
                case _:
                    raise DeviceError(f"Unsupported constraint '{key}'")

    async def apply_constraints(self, constraints: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._apply, dict(constraints))

    def _grab(self, quality: float) -> bytes | None:
        if not self.is_live:
            return None
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality * 100)])
        return buffer.tobytes() if ok else None

    async def grab_frame(self, quality: float) -> bytes | None:
        return await asyncio.to_thread(self._grab, quality)

    async def stop(self) -> None:
        cap, self._cap = self._cap, None
        if cap is not None:
            await asyncio.to_thread(cap.release)


class OpenCVStream:
    def __init__(self, track: OpenCVTrack) -> None:
        self._track = track

    @property
    def video_track(self) -> OpenCVTrack:
        return self._track

    async def stop(self) -> None:
        await self._track.stop()


class OpenCVPlatform:
    """Cameras reachable through ``cv2.VideoCapture``.

    On Linux devices come from the V4L2 sysfs tree so labels are real
    product names; elsewhere indexes are probed up to ``probe_limit``.
    """

    def __init__(
        self,
        *,
        probe_limit: int = 4,
        rear_label_hints: Iterable[str] = REAR_LABEL_HINTS,
        logger: LoggerLike = None,
    ) -> None:
        self._probe_limit = probe_limit
        self._hints = tuple(rear_label_hints)
        self._logger = ensure_structured_logger(logger, fallback_name="OpenCVPlatform")

    @staticmethod
    def _device_index(device_id: str) -> int:
        match = re.search(r"(\d+)$", device_id)
        if match is None:
            raise DeviceOpenError(f"Unrecognised camera id '{device_id}'")
        return int(match.group(1))

    def _scan_video4linux(self) -> list[CaptureDevice]:
        devices = []
        for video_dev in sorted(_VIDEO4LINUX.iterdir()):
            if not video_dev.name.startswith("video"):
                continue
            # Metadata nodes share the device but report a non-zero index.
            index_path = video_dev / "index"
            try:
                if index_path.exists() and int(index_path.read_text().strip()) != 0:
                    continue
                label = (video_dev / "name").read_text().strip()
            except (OSError, ValueError):
                label = ""
            devices.append(
                CaptureDevice(
                    device_id=video_dev.name,
                    label=label,
                    is_rear_facing=is_rear_label(label, self._hints),
                )
            )
        return devices

    def _probe_indexes(self) -> list[CaptureDevice]:
        devices = []
        for index in range(self._probe_limit):
            cap = cv2.VideoCapture(index)
            try:
                if cap.isOpened():
                    devices.append(CaptureDevice(device_id=f"camera{index}", label=f"Camera {index}"))
            finally:
                cap.release()
        return devices

    async def enumerate_devices(self) -> list[CaptureDevice]:
        if sys.platform.startswith("linux") and _VIDEO4LINUX.exists():
            devices = await asyncio.to_thread(self._scan_video4linux)
        else:
            devices = await asyncio.to_thread(self._probe_indexes)
        self._logger.debug("Enumerated %d camera(s)", len(devices))
        return devices

    async def request_permission(self) -> None:
        if not sys.platform.startswith("linux"):
            return
        nodes = sorted(Path("/dev").glob("video*"))
        if nodes and not any(os.access(node, os.R_OK | os.W_OK) for node in nodes):
            raise PermissionDeniedError("Camera access denied")

    def _open(self, constraints: StreamConstraints) -> OpenCVStream:
        device_id = constraints.device_id or "camera0"
        cap = cv2.VideoCapture(self._device_index(device_id))
        if not cap.isOpened():
            cap.release()
            raise DeviceOpenError(f"Failed to open camera {device_id}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        actual = (int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))
        self._logger.info("Opened %s at %dx%d", device_id, *actual)
        return OpenCVStream(OpenCVTrack(cap, device_id))

    async def open_stream(self, constraints: StreamConstraints) -> OpenCVStream:
        if constraints.audio:
            self._logger.debug("Audio capture is not supported by the OpenCV backend; ignoring")
        return await asyncio.to_thread(self._open, constraints)


__all__ = [
    "HeadlessSurface",
    "MediaPlatform",
    "MediaStream",
    "MediaTrack",
    "OpenCVPlatform",
    "OutputSurface",
    "StreamConstraints",
    "choose_device",
    "is_rear_label",
]
