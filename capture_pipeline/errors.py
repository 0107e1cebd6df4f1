"""Exception hierarchy for the capture pipeline."""

from __future__ import annotations


class CapturePipelineError(RuntimeError):
    """Base class for errors raised by the pipeline."""


class DeviceError(CapturePipelineError):
    """Camera acquisition failed."""


class PermissionDeniedError(DeviceError):
    pass


class DeviceOpenError(DeviceError):
    pass


class CompressionError(CapturePipelineError):
    """Raised when an image cannot be decoded or re-encoded."""


class AnalysisError(CapturePipelineError):
    """A submission could not produce a result."""


class TransportError(AnalysisError):
    """The remote endpoint could not be reached or answered with a failure."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PayloadTooLargeError(AnalysisError):
    """The server rejected the request body as too large."""

    def __init__(self, message: str = "Image too large. Try fewer or smaller items.") -> None:
        super().__init__(message)


class StreamEventError(AnalysisError):
    """The event stream ended with an ``error`` event."""


__all__ = [
    "AnalysisError",
    "CapturePipelineError",
    "CompressionError",
    "DeviceError",
    "DeviceOpenError",
    "PayloadTooLargeError",
    "PermissionDeniedError",
    "StreamEventError",
    "TransportError",
]
