from dataclasses import dataclass

from .state import CaptureDevice, StreamCapabilities, StreamSettings


@dataclass(frozen=True)
class SetActive:
    active: bool


@dataclass(frozen=True)
class SelectDevice:
    device_id: str


@dataclass(frozen=True)
class SwitchCamera:
    pass


@dataclass(frozen=True)
class DevicesEnumerated:
    devices: tuple[CaptureDevice, ...]


@dataclass(frozen=True)
class StreamAcquired:
    generation: int
    device_id: str
    track_id: str


@dataclass(frozen=True)
class AcquisitionFailed:
    generation: int
    message: str


@dataclass(frozen=True)
class StreamLost:
    pass


@dataclass(frozen=True)
class CapabilitiesDetected:
    track_id: str
    capabilities: StreamCapabilities


@dataclass(frozen=True)
class SetTorch:
    enabled: bool


@dataclass(frozen=True)
class SetZoom:
    level: float


@dataclass(frozen=True)
class TriggerAutoFocus:
    pass


@dataclass(frozen=True)
class ConstraintsApplied:
    track_id: str
    settings: StreamSettings


Action = (
    SetActive | SelectDevice | SwitchCamera | DevicesEnumerated |
    StreamAcquired | AcquisitionFailed | StreamLost | CapabilitiesDetected |
    SetTorch | SetZoom | TriggerAutoFocus | ConstraintsApplied
)
