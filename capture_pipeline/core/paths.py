"""Filesystem locations used by the pipeline."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PACKAGE_ROOT / "config.txt"

# User-specific state (allows running from a read-only install)
_USER_STATE_ENV = os.environ.get("CAPTURE_PIPELINE_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".capture_pipeline")
USER_CONFIG_OVERRIDES_DIR = USER_STATE_DIR / "config_overrides"
LOGS_DIR = USER_STATE_DIR / "logs"
DEFAULT_LOG_FILE = LOGS_DIR / "capture_pipeline.log"


__all__ = [
    "PACKAGE_ROOT",
    "DEFAULT_CONFIG_PATH",
    "USER_STATE_DIR",
    "USER_CONFIG_OVERRIDES_DIR",
    "LOGS_DIR",
    "DEFAULT_LOG_FILE",
]
