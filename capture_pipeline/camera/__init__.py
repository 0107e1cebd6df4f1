from .state import (
    CameraState, StreamPhase, CaptureDevice, ZoomRange,
    StreamCapabilities, StreamSettings, initial_state,
)
from .actions import (
    Action, SetActive, SelectDevice, SwitchCamera, DevicesEnumerated,
    StreamAcquired, AcquisitionFailed, StreamLost, CapabilitiesDetected,
    SetTorch, SetZoom, TriggerAutoFocus, ConstraintsApplied,
)
from .effects import (
    Effect, AcquireStream, CommitStream, ReleaseStream, EnsureAttached,
    DetectCapabilities, ApplyConstraints, SendStatus,
)
from .update import update
from .store import Store, create_store
from .executor import EffectExecutor
from .platform import (
    HeadlessSurface, MediaPlatform, MediaStream, MediaTrack, OutputSurface,
    OpenCVPlatform, StreamConstraints, choose_device, is_rear_label,
)
from .manager import DeviceStreamManager, get_stream_manager

__all__ = [
    "CameraState", "StreamPhase", "CaptureDevice", "ZoomRange",
    "StreamCapabilities", "StreamSettings", "initial_state",
    "Action", "SetActive", "SelectDevice", "SwitchCamera", "DevicesEnumerated",
    "StreamAcquired", "AcquisitionFailed", "StreamLost", "CapabilitiesDetected",
    "SetTorch", "SetZoom", "TriggerAutoFocus", "ConstraintsApplied",
    "Effect", "AcquireStream", "CommitStream", "ReleaseStream", "EnsureAttached",
    "DetectCapabilities", "ApplyConstraints", "SendStatus",
    "update", "Store", "create_store", "EffectExecutor",
    "HeadlessSurface", "MediaPlatform", "MediaStream", "MediaTrack", "OutputSurface",
    "OpenCVPlatform", "StreamConstraints", "choose_device", "is_rear_label",
    "DeviceStreamManager", "get_stream_manager",
]
