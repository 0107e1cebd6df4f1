from dataclasses import replace

from .state import CameraState, StreamPhase, StreamCapabilities, StreamSettings, SINGLE_SHOT
from .actions import (
    Action, SetActive, SelectDevice, SwitchCamera, DevicesEnumerated,
    StreamAcquired, AcquisitionFailed, StreamLost, CapabilitiesDetected,
    SetTorch, SetZoom, TriggerAutoFocus, ConstraintsApplied,
)
from .effects import (
    Effect, AcquireStream, CommitStream, ReleaseStream, EnsureAttached,
    DetectCapabilities, ApplyConstraints, SendStatus,
)


def _torn_down(state: CameraState, phase: StreamPhase) -> CameraState:
    return replace(
        state,
        phase=phase,
        generation=state.generation + 1,
        device_id=None,
        track_id=None,
        capabilities=StreamCapabilities(),
        settings=StreamSettings(),
    )


def _notice(message: str) -> SendStatus:
    return SendStatus("info", {"message": message})


def update(state: CameraState, action: Action) -> tuple[CameraState, list[Effect]]:
    match action:
        case SetActive(True):
            if state.phase == StreamPhase.INACTIVE:
                generation = state.generation + 1
                return (
                    replace(state, phase=StreamPhase.ACQUIRING, generation=generation, error_message=None),
                    [AcquireStream(generation, state.preferred_device_id)]
                )
            if state.phase == StreamPhase.LIVE:
                return state, [EnsureAttached()]
            return state, []

        case SetActive(False):
            if state.phase == StreamPhase.INACTIVE:
                return state, []
            return (
                _torn_down(state, StreamPhase.INACTIVE),
                [ReleaseStream(), SendStatus("camera_inactive", {})]
            )

        case SelectDevice(device_id):
            if state.phase == StreamPhase.INACTIVE:
                return replace(state, preferred_device_id=device_id), []
            if state.phase != StreamPhase.LIVE or device_id == state.device_id:
                return state, []
            switching = replace(_torn_down(state, StreamPhase.SWITCHING), preferred_device_id=device_id)
            return (
                switching,
                [
                    ReleaseStream(),
                    SendStatus("camera_switching", {"device_id": device_id}),
                    AcquireStream(switching.generation, device_id),
                ]
            )

        case SwitchCamera():
            if len(state.devices) <= 1:
                return state, [_notice("No other camera available")]
            ids = [device.device_id for device in state.devices]
            current = state.device_id or state.preferred_device_id
            index = ids.index(current) if current in ids else -1
            return update(state, SelectDevice(ids[(index + 1) % len(ids)]))

        case DevicesEnumerated(devices):
            return replace(state, devices=tuple(devices)), []

        case StreamAcquired(generation, device_id, track_id):
            if generation != state.generation or not state.is_busy:
                return state, [ReleaseStream(generation)]
            return (
                replace(
                    state,
                    phase=StreamPhase.LIVE,
                    device_id=device_id,
                    track_id=track_id,
                    error_message=None,
                ),
                [
                    CommitStream(generation),
                    DetectCapabilities(track_id),
                    SendStatus("camera_live", {"device_id": device_id, "track_id": track_id}),
                ]
            )

        case AcquisitionFailed(generation, message):
            if generation != state.generation or not state.is_busy:
                return state, []
            return (
                replace(_torn_down(state, StreamPhase.INACTIVE), error_message=message),
                [SendStatus("camera_error", {"message": message})]
            )

        case StreamLost():
            if state.phase == StreamPhase.INACTIVE:
                return state, []
            return (
                _torn_down(state, StreamPhase.INACTIVE),
                [ReleaseStream(), SendStatus("camera_lost", {"device_id": state.device_id})]
            )

        case CapabilitiesDetected(track_id, capabilities):
            if track_id != state.track_id:
                return state, []
            settings = state.settings
            if capabilities.zoom_range is not None:
                settings = replace(settings, zoom_level=capabilities.zoom_range.clamp(settings.zoom_level))
            return replace(state, capabilities=capabilities, settings=settings), []

        case SetTorch(enabled):
            if not state.is_live or state.track_id is None:
                return state, []
            if not state.capabilities.has_torch:
                return state, [_notice("Flashlight not available")]
            settings = replace(state.settings, torch_on=enabled)
            return state, [ApplyConstraints(state.track_id, settings, (("torch", enabled),))]

        case SetZoom(level):
            zoom_range = state.capabilities.zoom_range
            if not state.is_live or state.track_id is None or zoom_range is None:
                return state, []
            clamped = zoom_range.clamp(level)
            settings = replace(state.settings, zoom_level=clamped)
            return state, [ApplyConstraints(state.track_id, settings, (("zoom", clamped),))]

        case TriggerAutoFocus():
            if not state.is_live or state.track_id is None:
                return state, []
            if SINGLE_SHOT not in state.capabilities.focus_modes:
                return state, [_notice("Auto-focus triggered")]
            settings = replace(state.settings, focus_mode=SINGLE_SHOT)
            return (
                state,
                [
                    ApplyConstraints(state.track_id, settings, (("focusMode", SINGLE_SHOT),)),
                    _notice("Focusing..."),
                ]
            )

        case ConstraintsApplied(track_id, settings):
            if track_id != state.track_id:
                return state, []
            return replace(state, settings=settings), []

        case _:
            return state, []
