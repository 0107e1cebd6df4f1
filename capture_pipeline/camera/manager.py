"""Declarative camera lifecycle: callers say whether the camera should be on."""

from __future__ import annotations

from typing import Callable, Optional

from capture_pipeline.config import CameraSettings
from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import DeviceError

from .actions import (
    SetActive, SelectDevice, SwitchCamera, StreamLost,
    SetTorch, SetZoom, TriggerAutoFocus,
)
from .effects import SendStatus
from .executor import EffectExecutor
from .platform import MediaPlatform, OpenCVPlatform, OutputSurface
from .state import CameraState, CaptureDevice, StreamCapabilities, StreamPhase, StreamSettings
from .store import Store, create_store


class DeviceStreamManager:
    """Owns the one physical camera stream.

    ``set_active(True)`` may be called any number of times; only an
    ``INACTIVE`` manager starts an acquisition. Raw start/stop is never
    exposed, and ``select_device`` is the only way to force a re-open.
    """

    def __init__(
        self,
        platform: MediaPlatform,
        surface: OutputSurface | None = None,
        *,
        settings: CameraSettings | None = None,
        status_callback: Callable[[str, dict], None] | None = None,
        logger: LoggerLike = None,
    ) -> None:
        self._logger = ensure_structured_logger(logger, fallback_name="DeviceStream")
        self._settings = settings
        self._store: Store = create_store()
        executor_options = {}
        if settings is not None:
            executor_options = {
                "resolution": settings.resolution,
                "audio": settings.audio,
                "rear_label_hints": settings.rear_label_hints,
            }
        self._executor = EffectExecutor(
            platform,
            surface,
            is_current=lambda generation: self._store.state.generation == generation,
            status_callback=status_callback,
            logger=self._logger,
            **executor_options,
        )
        self._store.set_effect_handler(self._executor)

    # ------------------------------------------------------------------
    # Read side

    @property
    def state(self) -> CameraState:
        return self._store.state

    @property
    def phase(self) -> StreamPhase:
        return self._store.state.phase

    @property
    def devices(self) -> tuple[CaptureDevice, ...]:
        return self._store.state.devices

    @property
    def capabilities(self) -> StreamCapabilities:
        return self._store.state.capabilities

    @property
    def stream_settings(self) -> StreamSettings:
        return self._store.state.settings

    @property
    def surface(self) -> OutputSurface:
        return self._executor.surface

    def subscribe(self, callback: Callable[[CameraState], None]) -> Callable[[], None]:
        return self._store.subscribe(callback)

    # ------------------------------------------------------------------
    # Lifecycle

    async def set_active(self, active: bool) -> None:
        state = self._store.state
        if active and state.is_live and not self._executor.has_live_track():
            self._logger.warning("Live track ended unexpectedly; re-acquiring")
            await self._store.dispatch(StreamLost())
        await self._store.dispatch(SetActive(bool(active)))

    async def select_device(self, device_id: str) -> None:
        await self._store.dispatch(SelectDevice(device_id))

    async def switch_camera(self) -> None:
        await self._store.dispatch(SwitchCamera())

    async def refresh_devices(self) -> tuple[CaptureDevice, ...]:
        try:
            await self._executor.enumerate_devices(self._store.dispatch)
        except DeviceError as exc:
            self._logger.warning("Device enumeration failed: %s", exc)
            await self._executor(SendStatus("camera_error", {"message": str(exc)}), self._store.dispatch)
        return self._store.state.devices

    async def shutdown(self) -> None:
        await self.set_active(False)
        await self._executor.shutdown()

    # ------------------------------------------------------------------
    # Controls

    async def set_torch(self, enabled: bool) -> None:
        await self._store.dispatch(SetTorch(bool(enabled)))

    async def set_zoom(self, level: float) -> None:
        await self._store.dispatch(SetZoom(float(level)))

    async def trigger_auto_focus(self) -> None:
        await self._store.dispatch(TriggerAutoFocus())

    async def capture_frame(self) -> bytes | None:
        """JPEG snapshot of the live track, or None when not live."""
        if not self._store.state.is_live:
            return None
        quality = self._settings.jpeg_quality if self._settings is not None else 0.92
        return await self._executor.capture_frame(quality)


_stream_manager: Optional[DeviceStreamManager] = None


def get_stream_manager(
    settings: CameraSettings | None = None,
    *,
    status_callback: Callable[[str, dict], None] | None = None,
    logger: LoggerLike = None,
) -> DeviceStreamManager:
    """Process-wide manager backed by OpenCV, created on first use."""
    global _stream_manager
    if _stream_manager is None:
        platform_options = {}
        if settings is not None:
            platform_options = {
                "probe_limit": settings.probe_limit,
                "rear_label_hints": settings.rear_label_hints,
            }
        _stream_manager = DeviceStreamManager(
            OpenCVPlatform(logger=logger, **platform_options),
            settings=settings,
            status_callback=status_callback,
            logger=logger,
        )
    return _stream_manager


__all__ = ["DeviceStreamManager", "get_stream_manager"]
