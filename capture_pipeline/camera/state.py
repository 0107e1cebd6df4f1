from dataclasses import dataclass, field
from enum import Enum, auto

DEFAULT_MODE = "continuous"
SINGLE_SHOT = "single-shot"


class StreamPhase(Enum):
    INACTIVE = auto()
    ACQUIRING = auto()
    LIVE = auto()
    SWITCHING = auto()


@dataclass(frozen=True)
class CaptureDevice:
    device_id: str
    label: str = ""
    is_rear_facing: bool = False


@dataclass(frozen=True)
class ZoomRange:
    min: float = 1.0
    max: float = 1.0
    step: float = 0.1

    def clamp(self, level: float) -> float:
        return max(self.min, min(self.max, level))


@dataclass(frozen=True)
class StreamCapabilities:
    has_torch: bool = False
    zoom_range: ZoomRange | None = None
    focus_modes: frozenset[str] = frozenset()
    exposure_modes: frozenset[str] = frozenset()
    white_balance_modes: frozenset[str] = frozenset()


@dataclass(frozen=True)
class StreamSettings:
    torch_on: bool = False
    zoom_level: float = 1.0
    focus_mode: str = DEFAULT_MODE
    exposure_mode: str = DEFAULT_MODE
    white_balance_mode: str = DEFAULT_MODE


@dataclass(frozen=True)
class CameraState:
    phase: StreamPhase = StreamPhase.INACTIVE
    # Bumped on every acquisition request and teardown; results tagged
    # with an older generation are stale and get released.
    generation: int = 0
    devices: tuple[CaptureDevice, ...] = ()
    device_id: str | None = None
    preferred_device_id: str | None = None
    track_id: str | None = None
    capabilities: StreamCapabilities = field(default_factory=StreamCapabilities)
    settings: StreamSettings = field(default_factory=StreamSettings)
    error_message: str | None = None

    @property
    def is_live(self) -> bool:
        return self.phase == StreamPhase.LIVE

    @property
    def is_busy(self) -> bool:
        return self.phase in (StreamPhase.ACQUIRING, StreamPhase.SWITCHING)


def initial_state(preferred_device_id: str | None = None) -> CameraState:
    return CameraState(preferred_device_id=preferred_device_id)
