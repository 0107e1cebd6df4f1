"""Test helpers for the capture pipeline test suite.

Async:
    run_async - Run a coroutine to completion on a fresh event loop

Data Generators:
    make_jpeg - Encode a flat or noisy JPEG of a given size
    make_png - Encode a PNG of a given size
    make_item - Build a ready CaptureItem without going through the store
    scripted_events - Event sequence for a typical streamed analysis

Usage:
    from tests.infrastructure.helpers import make_jpeg, run_async
"""

from .async_helpers import run_async
from .generators import make_item, make_jpeg, make_png, scripted_events

__all__ = ["make_item", "make_jpeg", "make_png", "run_async", "scripted_events"]
