"""Typed configuration for the capture pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from capture_pipeline.core.config_manager import get_config_manager
from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.core.paths import DEFAULT_CONFIG_PATH, DEFAULT_LOG_FILE

Resolution = Tuple[int, int]

DEFAULT_CAMERA_RESOLUTION: Resolution = (1920, 1080)
DEFAULT_CAMERA_AUDIO = False
DEFAULT_REAR_LABEL_HINTS = ("back", "rear", "environment")
DEFAULT_CAMERA_PROBE_LIMIT = 4
DEFAULT_JPEG_QUALITY = 0.92

DEFAULT_BATCH_MAX_ITEMS = 15
DEFAULT_MAX_DIMENSION = 1920
DEFAULT_MAX_SIZE_MB = 2.5
DEFAULT_QUALITY = 0.85
DEFAULT_THUMBNAIL_SIZE = 256
DEFAULT_VIDEO_FRAME_COUNT = 5

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_STREAM_PATH = "/api/analyze-stream"
DEFAULT_FALLBACK_PATH = "/api/analyze"
DEFAULT_UPLOAD_CEILING_MB = 2.0
DEFAULT_PAYLOAD_WARNING_MB = 4.0
DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_STREAM_TIMEOUT_S = 90.0
DEFAULT_STREAM_IDLE_TIMEOUT_S = 30.0
DEFAULT_FALLBACK_TIMEOUT_S = 120.0
DEFAULT_MODELS_TOTAL = 7

DEFAULT_LOG_LEVEL = "INFO"


@dataclass(slots=True)
class CameraSettings:
    resolution: Resolution
    audio: bool
    rear_label_hints: Tuple[str, ...]
    probe_limit: int
    jpeg_quality: float


@dataclass(slots=True)
class BatchSettings:
    max_items: int
    max_dimension: int
    max_size_mb: float
    quality: float
    thumbnail_size: int
    video_frame_count: int


@dataclass(slots=True)
class AnalysisSettings:
    base_url: str
    stream_path: str
    fallback_path: str
    upload_ceiling_mb: float
    payload_warning_mb: float
    connect_timeout_s: float
    stream_timeout_s: float
    stream_idle_timeout_s: float
    fallback_timeout_s: float
    models_total: int

    @property
    def stream_url(self) -> str:
        return self.base_url.rstrip("/") + self.stream_path

    @property
    def fallback_url(self) -> str:
        return self.base_url.rstrip("/") + self.fallback_path


@dataclass(slots=True)
class LoggingSettings:
    level: str
    file: Optional[Path]


@dataclass(slots=True)
class PipelineConfig:
    camera: CameraSettings
    batch: BatchSettings
    analysis: AnalysisSettings
    logging: LoggingSettings


# ---------------------------------------------------------------------------
# Public API


def build_config(
    values: Optional[Dict[str, Any]] = None,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> PipelineConfig:
    """Build a typed config from raw ``key = value`` pairs plus overrides.

    Missing or malformed entries fall back to the module defaults.
    """

    log = ensure_structured_logger(logger, fallback_name=__name__)
    merged: Dict[str, Any] = dict(values or {})
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    camera = CameraSettings(
        resolution=_coerce_resolution(
            merged, ("camera.resolution", "resolution"), default=DEFAULT_CAMERA_RESOLUTION, logger=log
        ),
        audio=_coerce_bool(merged, ("camera.audio",), DEFAULT_CAMERA_AUDIO),
        rear_label_hints=_coerce_csv(merged, ("camera.rear_label_hints",), DEFAULT_REAR_LABEL_HINTS),
        probe_limit=_coerce_int(merged, ("camera.probe_limit",), DEFAULT_CAMERA_PROBE_LIMIT),
        jpeg_quality=_coerce_fraction(merged, ("camera.jpeg_quality",), DEFAULT_JPEG_QUALITY),
    )

    batch = BatchSettings(
        max_items=max(1, _coerce_int(merged, ("batch.max_items", "max_items"), DEFAULT_BATCH_MAX_ITEMS)),
        max_dimension=_coerce_int(merged, ("batch.max_dimension",), DEFAULT_MAX_DIMENSION),
        max_size_mb=_coerce_float(merged, ("batch.max_size_mb",), DEFAULT_MAX_SIZE_MB),
        quality=_coerce_fraction(merged, ("batch.quality",), DEFAULT_QUALITY),
        thumbnail_size=_coerce_int(merged, ("batch.thumbnail_size",), DEFAULT_THUMBNAIL_SIZE),
        video_frame_count=_coerce_int(merged, ("batch.video_frame_count",), DEFAULT_VIDEO_FRAME_COUNT),
    )

    analysis = AnalysisSettings(
        base_url=_coerce_str(merged, ("analysis.base_url", "base_url"), DEFAULT_BASE_URL),
        stream_path=_coerce_str(merged, ("analysis.stream_path",), DEFAULT_STREAM_PATH),
        fallback_path=_coerce_str(merged, ("analysis.fallback_path",), DEFAULT_FALLBACK_PATH),
        upload_ceiling_mb=_coerce_float(merged, ("analysis.upload_ceiling_mb",), DEFAULT_UPLOAD_CEILING_MB),
        payload_warning_mb=_coerce_float(merged, ("analysis.payload_warning_mb",), DEFAULT_PAYLOAD_WARNING_MB),
        connect_timeout_s=_coerce_float(merged, ("analysis.connect_timeout_s",), DEFAULT_CONNECT_TIMEOUT_S),
        stream_timeout_s=_coerce_float(merged, ("analysis.stream_timeout_s",), DEFAULT_STREAM_TIMEOUT_S),
        stream_idle_timeout_s=_coerce_float(
            merged, ("analysis.stream_idle_timeout_s",), DEFAULT_STREAM_IDLE_TIMEOUT_S
        ),
        fallback_timeout_s=_coerce_float(merged, ("analysis.fallback_timeout_s",), DEFAULT_FALLBACK_TIMEOUT_S),
        models_total=_coerce_int(merged, ("analysis.models_total",), DEFAULT_MODELS_TOTAL),
    )

    log_file = _first_present(merged, ("logging.file", "log_file"))
    logging_settings = LoggingSettings(
        level=_coerce_str(merged, ("logging.level", "log_level"), DEFAULT_LOG_LEVEL).upper(),
        file=Path(str(log_file)).expanduser() if log_file else DEFAULT_LOG_FILE,
    )

    return PipelineConfig(camera=camera, batch=batch, analysis=analysis, logging=logging_settings)


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> PipelineConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    values = get_config_manager().read_config(config_path)
    return build_config(values, overrides, logger=logger)


async def load_config_async(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> PipelineConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    values = await get_config_manager().read_config_async(config_path)
    return build_config(values, overrides, logger=logger)


# ---------------------------------------------------------------------------
# Internal helpers


def _first_present(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _coerce_bool(data: Dict[str, Any], keys: Tuple[str, ...], default: bool) -> bool:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _coerce_str(data: Dict[str, Any], keys: Tuple[str, ...], default: str) -> str:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    return str(raw).strip() or default


def _coerce_int(data: Dict[str, Any], keys: Tuple[str, ...], default: int) -> int:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _coerce_float(data: Dict[str, Any], keys: Tuple[str, ...], default: float) -> float:
    raw = _first_present(data, keys)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _coerce_fraction(data: Dict[str, Any], keys: Tuple[str, ...], default: float) -> float:
    value = _coerce_float(data, keys, default)
    return value if 0.0 < value <= 1.0 else default


def _coerce_csv(data: Dict[str, Any], keys: Tuple[str, ...], default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    if isinstance(raw, (list, tuple)):
        parts = [str(part) for part in raw]
    else:
        parts = str(raw).split(",")
    cleaned = tuple(part.strip().lower() for part in parts if part.strip())
    return cleaned or default


def _coerce_resolution(
    data: Dict[str, Any],
    keys: Tuple[str, ...],
    *,
    default: Resolution,
    logger,
) -> Resolution:
    raw = _first_present(data, keys)
    if raw is None:
        return default
    try:
        return _parse_resolution(raw)
    except (TypeError, ValueError):
        logger.debug("Failed to parse resolution from %r, using default %s", raw, default)
        return default


def _parse_resolution(raw: Any) -> Resolution:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return int(raw[0]), int(raw[1])
    text = str(raw).lower()
    for separator in ("x", ","):
        if separator in text:
            width, height = text.split(separator, 1)
            return int(width.strip()), int(height.strip())
    raise ValueError(f"Unrecognised resolution {raw!r}")


__all__ = [
    "AnalysisSettings",
    "BatchSettings",
    "CameraSettings",
    "LoggingSettings",
    "PipelineConfig",
    "build_config",
    "load_config",
    "load_config_async",
]
