import asyncio
from typing import Callable, Awaitable

from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import DeviceError

from .actions import (
    Action, DevicesEnumerated, StreamAcquired, AcquisitionFailed,
    CapabilitiesDetected, ConstraintsApplied,
)
from .effects import (
    Effect, AcquireStream, CommitStream, ReleaseStream, EnsureAttached,
    DetectCapabilities, ApplyConstraints, SendStatus,
)
from .platform import (
    HeadlessSurface, MediaPlatform, MediaStream, MediaTrack, OutputSurface,
    StreamConstraints, REAR_LABEL_HINTS, choose_device,
)
from .state import CaptureDevice

Dispatch = Callable[[Action], Awaitable[None]]


class EffectExecutor:
    """Sole owner of the physical camera handle.

    Acquisitions run under one lock, and the stale-result release happens
    while that lock is still held, so a superseded stream is closed before
    the next one is opened.
    """

    def __init__(
        self,
        platform: MediaPlatform,
        surface: OutputSurface | None = None,
        *,
        is_current: Callable[[int], bool] = lambda generation: True,
        resolution: tuple[int, int] = (1920, 1080),
        audio: bool = False,
        rear_label_hints: tuple[str, ...] = REAR_LABEL_HINTS,
        status_callback: Callable[[str, dict], None] | None = None,
        logger: LoggerLike = None,
    ):
        self._logger = ensure_structured_logger(logger, fallback_name="DeviceStream")
        self._platform = platform
        self._surface = surface if surface is not None else HeadlessSurface()
        self._is_current = is_current
        self._resolution = resolution
        self._audio = audio
        self._hints = rear_label_hints
        self._status_callback = status_callback
        self._acquire_lock = asyncio.Lock()
        self._pending: dict[int, MediaStream] = {}
        self._stream: MediaStream | None = None
        self._processed_tracks: set[str] = set()

    @property
    def surface(self) -> OutputSurface:
        return self._surface

    @property
    def track(self) -> MediaTrack | None:
        return self._stream.video_track if self._stream is not None else None

    def has_live_track(self) -> bool:
        track = self.track
        return track is not None and track.is_live

    async def __call__(self, effect: Effect, dispatch: Dispatch) -> None:
        match effect:
            case AcquireStream(generation, device_id):
                await self._acquire(generation, device_id, dispatch)

            case CommitStream(generation):
                await self._commit(generation)

            case ReleaseStream(None):
                await self._release_committed()

            case ReleaseStream(generation):
                await self._release_pending(generation)

            case EnsureAttached():
                await self._ensure_attached()

            case DetectCapabilities(track_id):
                await self._detect_capabilities(track_id, dispatch)

            case ApplyConstraints(track_id, settings, constraints):
                await self._apply_constraints(track_id, settings, dict(constraints), dispatch)

            case SendStatus(status_type, payload):
                if self._status_callback:
                    self._status_callback(status_type, payload)

    # ------------------------------------------------------------------
    # Acquisition

    async def enumerate_devices(self, dispatch: Dispatch) -> list[CaptureDevice]:
        devices = await self._platform.enumerate_devices()
        if not devices or any(not device.label for device in devices):
            # Labels are withheld until access has been granted once.
            await self._platform.request_permission()
            devices = await self._platform.enumerate_devices()
        await dispatch(DevicesEnumerated(tuple(devices)))
        return devices

    async def _acquire(self, generation: int, device_id: str | None, dispatch: Dispatch) -> None:
        async with self._acquire_lock:
            if not self._is_current(generation):
                self._logger.debug("Skipping superseded acquisition (generation %d)", generation)
                return

            try:
                devices = await self.enumerate_devices(dispatch)
                target = choose_device(devices, device_id, self._hints)
                if target is None:
                    raise DeviceError("No camera found")
                width, height = self._resolution
                stream = await self._platform.open_stream(
                    StreamConstraints(device_id=target.device_id, width=width, height=height, audio=self._audio)
                )
            except DeviceError as exc:
                self._logger.warning("Camera acquisition failed: %s", exc)
                await dispatch(AcquisitionFailed(generation, str(exc)))
                return
            except Exception as exc:
                self._logger.error("Unexpected camera failure: %s", exc, exc_info=True)
                await dispatch(AcquisitionFailed(generation, f"Camera error: {exc}"))
                return

            track = stream.video_track
            self._pending[generation] = stream
            self._logger.info("Acquired %s (track %s)", target.label or target.device_id, track.track_id)
            await dispatch(StreamAcquired(generation, target.device_id, track.track_id))

    async def _commit(self, generation: int) -> None:
        stream = self._pending.pop(generation, None)
        if stream is None:
            return
        if self._stream is not None:
            self._logger.warning("Replacing a committed stream that was never released")
            await self._release_committed()

        self._stream = stream
        self._surface.attach(stream)
        await self._play()

    async def _play(self) -> None:
        try:
            await self._surface.play()
        except Exception as exc:
            # Some platforms refuse playback until a user gesture; the
            # stream stays attached and starts once allowed.
            self._logger.info("Playback deferred: %s", exc)

    async def _ensure_attached(self) -> None:
        if self._stream is None or self._surface.is_attached:
            return
        self._logger.debug("Re-attaching live stream to output surface")
        self._surface.attach(self._stream)
        await self._play()

    # ------------------------------------------------------------------
    # Teardown

    async def _release_committed(self) -> None:
        stream, self._stream = self._stream, None
        if self._surface.is_attached:
            self._surface.detach()
        if stream is not None:
            await self._stop(stream)

    async def _release_pending(self, generation: int) -> None:
        stream = self._pending.pop(generation, None)
        if stream is not None:
            self._logger.debug("Releasing superseded stream (generation %d)", generation)
            await self._stop(stream)

    async def _stop(self, stream: MediaStream) -> None:
        try:
            await stream.stop()
        except Exception as exc:
            self._logger.warning("Error stopping stream: %s", exc)

    async def shutdown(self) -> None:
        await self._release_committed()
        for generation in list(self._pending):
            await self._release_pending(generation)

    # ------------------------------------------------------------------
    # Capabilities and controls

    async def _detect_capabilities(self, track_id: str, dispatch: Dispatch) -> None:
        track = self.track
        if track is None or track.track_id != track_id or track_id in self._processed_tracks:
            return
        self._processed_tracks.add(track_id)

        capabilities = track.get_capabilities()
        self._logger.info(
            "Track %s capabilities: torch=%s zoom=%s focus=%s",
            track_id,
            capabilities.has_torch,
            capabilities.zoom_range,
            sorted(capabilities.focus_modes),
        )
        await dispatch(CapabilitiesDetected(track_id, capabilities))

    async def _apply_constraints(self, track_id, settings, constraints, dispatch: Dispatch) -> None:
        track = self.track
        if track is None or track.track_id != track_id:
            return
        try:
            await track.apply_constraints(constraints)
        except Exception as exc:
            self._logger.warning("Failed to apply %s: %s", constraints, exc)
            if self._status_callback:
                self._status_callback("camera_warning", {"message": f"Camera control failed: {exc}"})
            return
        await dispatch(ConstraintsApplied(track_id, settings))

    async def capture_frame(self, quality: float) -> bytes | None:
        track = self.track
        if track is None or not track.is_live:
            return None
        return await track.grab_frame(quality)
