"""Server-sent event frames: ``data: {json}`` lines separated by blank lines."""

from __future__ import annotations

import codecs
import json
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

DATA_PREFIX = "data:"

EVENT_TYPES = (
    "init",
    "phase",
    "ai_start",
    "ai_complete",
    "ai_error",
    "price",
    "category",
    "api_start",
    "api_complete",
    "complete",
    "error",
)
TERMINAL_TYPES = ("complete", "error")


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_json(self) -> dict[str, Any]:
        timestamp = self.timestamp if self.timestamp is not None else time.time() * 1000
        return {"type": self.type, "timestamp": timestamp, "data": dict(self.data)}


def format_event(event: StreamEvent) -> bytes:
    return f"data: {json.dumps(event.to_json())}\n\n".encode("utf-8")


def parse_event_line(line: str) -> StreamEvent | None:
    """Decode one ``data:`` line; anything unparsable yields None."""
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if not payload:
        return None
    try:
        decoded = json.loads(payload)
    except ValueError:
        return None
    if not isinstance(decoded, dict) or not isinstance(decoded.get("type"), str):
        return None

    data = decoded.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        data = {"value": data}
    timestamp = decoded.get("timestamp")
    return StreamEvent(
        type=decoded["type"],
        data=data,
        timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else None,
    )


class SSEFrameParser:
    """Incremental line splitter for an event-stream body.

    Chunks may cut through lines or multi-byte characters; the trailing
    partial line is held back until more data arrives or ``close`` is
    called.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.skipped = 0

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._parse(lines)

    def close(self) -> list[StreamEvent]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._parse([tail]) if tail.strip() else []

    def _parse(self, lines: list[str]) -> list[StreamEvent]:
        events = []
        for line in lines:
            if not line.strip().startswith(DATA_PREFIX):
                continue
            event = parse_event_line(line)
            if event is None:
                self.skipped += 1
                continue
            events.append(event)
        return events


__all__ = [
    "EVENT_TYPES",
    "SSEFrameParser",
    "StreamEvent",
    "format_event",
    "parse_event_line",
]
