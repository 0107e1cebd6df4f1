from dataclasses import dataclass
from typing import Any

from .state import StreamSettings


@dataclass(frozen=True)
class AcquireStream:
    generation: int
    device_id: str | None


@dataclass(frozen=True)
class CommitStream:
    generation: int


@dataclass(frozen=True)
class ReleaseStream:
    """Release the committed stream, or the pending one for ``generation``."""
    generation: int | None = None


@dataclass(frozen=True)
class EnsureAttached:
    pass


@dataclass(frozen=True)
class DetectCapabilities:
    track_id: str


@dataclass(frozen=True)
class ApplyConstraints:
    track_id: str
    settings: StreamSettings
    constraints: tuple[tuple[str, Any], ...]


@dataclass(frozen=True)
class SendStatus:
    status_type: str
    payload: dict


Effect = (
    AcquireStream | CommitStream | ReleaseStream | EnsureAttached |
    DetectCapabilities | ApplyConstraints | SendStatus
)
