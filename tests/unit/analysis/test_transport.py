from __future__ import annotations

import aiohttp
import pytest

from capture_pipeline.analysis import AnalysisTransport, StreamEvent
from capture_pipeline.errors import PayloadTooLargeError, TransportError
from tests.infrastructure.helpers import run_async
from tests.infrastructure.mocks.analysis_server import FakeAnalysisService


def test_stream_events_in_order():
    events = [StreamEvent("init", {"models": ["A"]}, 1.0), b"data: {garbage\n\n", StreamEvent("complete", {"id": "x"}, 2.0)]

    async def scenario():
        async with FakeAnalysisService(events=events) as service:
            async with AnalysisTransport(service.settings()) as transport:
                return [event async for event in transport.stream_events({"items": []}, "tok")]

    received = run_async(scenario())

    assert [event.type for event in received] == ["init", "complete"]
    assert received[1].data == {"id": "x"}


def test_stream_error_status():
    async def scenario():
        async with FakeAnalysisService(stream_status=401) as service:
            async with AnalysisTransport(service.settings()) as transport:
                async for _ in transport.stream_events({}, "tok"):
                    pass

    with pytest.raises(TransportError) as excinfo:
        run_async(scenario())
    assert excinfo.value.status == 401


def test_stream_413_is_a_transport_error():
    async def scenario():
        async with FakeAnalysisService(stream_status=413) as service:
            async with AnalysisTransport(service.settings()) as transport:
                async for _ in transport.stream_events({}, "tok"):
                    pass

    with pytest.raises(TransportError) as excinfo:
        run_async(scenario())
    assert excinfo.value.status == 413


def test_fetch_result_json():
    async def scenario():
        async with FakeAnalysisService(fallback_body={"id": "r1"}) as service:
            async with AnalysisTransport(service.settings()) as transport:
                return await transport.fetch_result({"items": []}, "tok"), service

    result, service = run_async(scenario())

    assert result == {"id": "r1"}
    assert service.auth_headers == ["Bearer tok"]


def test_fetch_result_failure_status():
    async def scenario():
        async with FakeAnalysisService(fallback_status=500, fallback_body={"error": "boom"}) as service:
            async with AnalysisTransport(service.settings()) as transport:
                await transport.fetch_result({}, "tok")

    with pytest.raises(TransportError, match="Analysis failed: 500"):
        run_async(scenario())


def test_fetch_result_payload_too_large():
    async def scenario():
        async with FakeAnalysisService(fallback_status=413, fallback_body={"error": "too big"}) as service:
            async with AnalysisTransport(service.settings()) as transport:
                await transport.fetch_result({}, "tok")

    with pytest.raises(PayloadTooLargeError):
        run_async(scenario())


def test_fetch_result_invalid_utf8_decoded_leniently():
    async def scenario():
        async with FakeAnalysisService(fallback_body=b'{"itemName": "\xff"}') as service:
            async with AnalysisTransport(service.settings()) as transport:
                return await transport.fetch_result({}, "tok")

    assert run_async(scenario()) == {"itemName": "\ufffd"}


def test_borrowed_session_left_open():
    async def scenario():
        async with FakeAnalysisService(fallback_body={}) as service:
            async with aiohttp.ClientSession() as session:
                async with AnalysisTransport(service.settings(), session=session) as transport:
                    await transport.fetch_result({}, "tok")
                return session.closed

    assert run_async(scenario()) is False
