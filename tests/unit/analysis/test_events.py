import json

import pytest

from capture_pipeline.analysis import SSEFrameParser, StreamEvent, format_event, parse_event_line


class TestParseEventLine:
    def test_valid_line(self):
        event = parse_event_line('data: {"type": "price", "timestamp": 12, "data": {"estimate": 40}}')

        assert event == StreamEvent("price", {"estimate": 40}, 12.0)

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "event: ping",
            "data:",
            "data: {not json",
            'data: ["type", "init"]',
            'data: {"data": {}}',
            'data: {"type": 7}',
        ],
    )
    def test_malformed_lines_ignored(self, line):
        assert parse_event_line(line) is None

    def test_missing_data_becomes_empty(self):
        assert parse_event_line('data: {"type": "complete"}').data == {}

    def test_scalar_data_wrapped(self):
        assert parse_event_line('data: {"type": "phase", "data": "ai"}').data == {"value": "ai"}


class TestFormatEvent:
    def test_frame_shape(self):
        frame = format_event(StreamEvent("init", {"totalModels": 7}, 1.0))

        assert frame.startswith(b"data: ")
        assert frame.endswith(b"\n\n")
        assert json.loads(frame[6:]) == {"type": "init", "timestamp": 1.0, "data": {"totalModels": 7}}

    def test_terminal(self):
        assert StreamEvent("complete").is_terminal
        assert StreamEvent("error").is_terminal
        assert not StreamEvent("price").is_terminal


class TestFrameParser:
    def test_events_split_across_chunks(self):
        body = format_event(StreamEvent("init", {}, 1.0)) + format_event(StreamEvent("price", {"estimate": 5}, 2.0))
        parser = SSEFrameParser()

        events = []
        for start in range(0, len(body), 7):
            events.extend(parser.feed(body[start:start + 7]))
        events.extend(parser.close())

        assert [event.type for event in events] == ["init", "price"]

    def test_multibyte_character_split(self):
        body = format_event(StreamEvent("category", {"displayName": "Café Ware"}, 1.0))
        cut = body.index("é".encode("utf-8")) + 1
        parser = SSEFrameParser()

        events = parser.feed(body[:cut]) + parser.feed(body[cut:])

        assert events[0].data["displayName"] == "Café Ware"

    def test_trailing_line_without_newline(self):
        parser = SSEFrameParser()

        assert parser.feed(b'data: {"type": "complete", "data": {}}') == []
        assert [event.type for event in parser.close()] == ["complete"]

    def test_malformed_lines_counted(self):
        parser = SSEFrameParser()
        events = parser.feed(b'data: {broken\n\n: comment\n\ndata: {"type": "init"}\n\n')

        assert [event.type for event in events] == ["init"]
        assert parser.skipped == 1

    def test_crlf_lines(self):
        parser = SSEFrameParser()
        events = parser.feed(b'data: {"type": "init"}\r\n\r\n')

        assert [event.type for event in events] == ["init"]
