"""Camera capture to multi-model analysis pipeline."""

from __future__ import annotations

from importlib import metadata

try:
    __version__ = metadata.version("capture-pipeline")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


__all__ = ["__version__"]
