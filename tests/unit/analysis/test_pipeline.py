"""End-to-end submission tests against a local aiohttp analysis service.

Note: Async tests use run_async() since pytest-asyncio is not installed.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Optional

import pytest

from capture_pipeline.analysis import (
    AnalysisPipeline,
    AnalysisTransport,
    Enrichment,
    OutcomeStatus,
    PipelinePhase,
    ProgressStage,
    StreamEvent,
)
from capture_pipeline.config import build_config
from tests.infrastructure.helpers import make_item, make_jpeg, run_async, scripted_events
from tests.infrastructure.mocks.analysis_server import FakeAnalysisService

FALLBACK_RESULT = {
    "id": "fallback-1",
    "itemName": "Camera Lens",
    "estimatedValue": 65,
    "decision": "SELL",
    "confidence": 0.7,
    "votes": [{"providerName": "A"}, {"providerName": "B"}],
}

ENRICHMENT = Enrichment(location_coordinates=(1.0, 2.0), store_descriptor="Thrift Co", shelf_price=20.0)


class Recorder:
    def __init__(self) -> None:
        self.snapshots = []
        self.notices = []

    def progress(self, state) -> None:
        self.snapshots.append(state)

    def status(self, status_type: str, payload: dict) -> None:
        self.notices.append((status_type, payload))

    @property
    def stages(self):
        return [snapshot.stage for snapshot in self.snapshots]

    @property
    def notice_types(self):
        return [status_type for status_type, _ in self.notices]


def _pipeline(transport, settings, recorder, token: Any = "tok") -> AnalysisPipeline:
    return AnalysisPipeline(
        transport,
        settings=settings,
        auth_token=token,
        status_callback=recorder.status,
        progress_callback=recorder.progress,
    )


async def _run(service: FakeAnalysisService, items=None, *, settings: Optional[dict] = None, **submit):
    recorder = Recorder()
    analysis_settings = service.settings(**(settings or {}))
    async with AnalysisTransport(analysis_settings) as transport:
        pipeline = _pipeline(transport, analysis_settings, recorder)
        outcome = await pipeline.submit(items if items is not None else (make_item(),), **submit)
    return outcome, recorder, pipeline


class TestStreaming:
    def test_streamed_result(self):
        events = scripted_events(final_estimate=120.0)

        async def scenario():
            async with FakeAnalysisService(events=events) as service:
                outcome, recorder, pipeline = await _run(service, category_id="cameras")
                return outcome, recorder, pipeline, service

        outcome, recorder, pipeline, service = run_async(scenario())

        assert outcome.status == OutcomeStatus.COMPLETE
        assert not outcome.used_fallback
        assert outcome.result.result_id == "analysis-1"
        assert outcome.result.confidence == pytest.approx(0.82)
        assert len(outcome.result.votes) == 7
        assert outcome.progress.stage == ProgressStage.COMPLETE
        assert outcome.progress.models_complete == 7
        assert len(recorder.snapshots) == 1 + len(events)
        assert recorder.stages[0] == ProgressStage.PREPARING
        assert pipeline.phase == PipelinePhase.COMPLETE
        assert service.stream_calls == 1
        assert service.fallback_calls == 0
        assert service.auth_headers == ["Bearer tok"]
        assert service.stream_bodies[0]["categoryId"] == "cameras"

    def test_events_split_into_small_chunks(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, chunk_size=5) as service:
                outcome, recorder, _ = await _run(service)
                return outcome, recorder

        outcome, recorder = run_async(scenario())

        assert outcome.ok
        assert len(recorder.snapshots) == 1 + len(events)

    def test_running_estimate_published(self):
        events = scripted_events(models=("A", "B"), final_estimate=80.0)

        async def scenario():
            async with FakeAnalysisService(events=events) as service:
                _, recorder, _ = await _run(service)
                return recorder

        recorder = run_async(scenario())

        estimates = sorted({snapshot.running_estimate for snapshot in recorder.snapshots})
        assert estimates == [0.0, 40.0, 80.0]

    def test_error_event_fails_without_fallback(self):
        events = [StreamEvent("init", {"models": ["A"]}), StreamEvent("error", {"message": "Model quota exceeded"})]

        async def scenario():
            async with FakeAnalysisService(events=events, fallback_body=FALLBACK_RESULT) as service:
                outcome, recorder, pipeline = await _run(service)
                return outcome, recorder, pipeline, service

        outcome, recorder, pipeline, service = run_async(scenario())

        assert outcome.status == OutcomeStatus.ERRORED
        assert outcome.message == "Model quota exceeded"
        assert outcome.progress.stage == ProgressStage.ERROR
        assert service.fallback_calls == 0
        assert pipeline.phase == PipelinePhase.ERRORED
        assert ("analysis_error", {"message": "Model quota exceeded"}) in recorder.notices

    def test_stream_413_falls_back(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=413, fallback_body=FALLBACK_RESULT) as service:
                outcome, _, _ = await _run(service)
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.status == OutcomeStatus.COMPLETE
        assert outcome.used_fallback
        assert service.fallback_calls == 1

    def test_payload_too_large_on_both_endpoints(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=413, fallback_status=413) as service:
                outcome, _, _ = await _run(service)
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.status == OutcomeStatus.ERRORED
        assert outcome.message == "Image too large. Try fewer or smaller items."
        assert service.fallback_calls == 1


class TestFallback:
    def test_stream_failure_uses_fallback_once(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=500, fallback_body=FALLBACK_RESULT) as service:
                outcome, recorder, _ = await _run(service)
                return outcome, recorder, service

        outcome, recorder, service = run_async(scenario())

        assert outcome.status == OutcomeStatus.COMPLETE
        assert outcome.used_fallback
        assert outcome.result.result_id == "fallback-1"
        assert outcome.result.item_name == "Camera Lens"
        assert service.stream_calls == 1
        assert service.fallback_calls == 1
        assert service.fallback_bodies[0] == service.stream_bodies[0]
        assert recorder.stages == [ProgressStage.PREPARING, ProgressStage.ANALYZING, ProgressStage.COMPLETE]

    def test_stream_closed_without_result(self):
        events = [StreamEvent("init", {"models": ["A"]}), StreamEvent("price", {"estimate": 3})]

        async def scenario():
            async with FakeAnalysisService(events=events, fallback_body=FALLBACK_RESULT) as service:
                outcome, _, _ = await _run(service)
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.ok
        assert outcome.used_fallback
        assert service.fallback_calls == 1

    def test_idle_stream_times_out(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, hold_after=1, fallback_body=FALLBACK_RESULT) as service:
                outcome, _, _ = await _run(service, settings={"stream_idle_timeout_s": 0.2})
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.ok
        assert outcome.used_fallback
        assert outcome.result.result_id == "fallback-1"
        assert service.fallback_calls == 1

    def test_total_stream_timeout(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, hold_after=2, fallback_body=FALLBACK_RESULT) as service:
                outcome, _, _ = await _run(
                    service,
                    settings={"stream_timeout_s": 0.3, "stream_idle_timeout_s": 10},
                )
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.used_fallback
        assert service.fallback_calls == 1

    def test_fallback_failure_reports_status(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=500, fallback_status=503) as service:
                outcome, recorder, _ = await _run(service)
                return outcome, recorder

        outcome, recorder = run_async(scenario())

        assert outcome.status == OutcomeStatus.ERRORED
        assert outcome.message == "Analysis failed: 503"
        assert outcome.used_fallback
        assert "analysis_error" in recorder.notice_types

    @pytest.mark.parametrize(
        "status, body",
        [(413, {"error": "too big"}), (500, {"error": "PAYLOAD_TOO_LARGE"})],
    )
    def test_fallback_payload_too_large(self, status, body):
        async def scenario():
            async with FakeAnalysisService(stream_status=502, fallback_status=status, fallback_body=body) as service:
                outcome, _, _ = await _run(service)
                return outcome

        outcome = run_async(scenario())

        assert outcome.status == OutcomeStatus.ERRORED
        assert outcome.message == "Image too large. Try fewer or smaller items."

    def test_non_json_fallback_gives_placeholder(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=500, fallback_body="<html>ok</html>") as service:
                outcome, _, _ = await _run(service)
                return outcome

        outcome = run_async(scenario())

        assert outcome.ok
        assert outcome.result.item_name == "Unknown Item"
        assert outcome.result.reasoning_summary == "Analysis complete"

    def test_undecodable_fallback_body_still_completes(self):
        async def scenario():
            async with FakeAnalysisService(stream_status=503, fallback_body=b'{"itemName": "\xff"}') as service:
                outcome, _, _ = await _run(service)
                return outcome

        outcome = run_async(scenario())

        assert outcome.status == OutcomeStatus.COMPLETE
        assert outcome.used_fallback
        assert outcome.result.item_name == "\ufffd"


class TestCancellation:
    def test_cancel_discards_late_events(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, hold_after=3, fallback_body=FALLBACK_RESULT) as service:
                recorder = Recorder()
                settings = service.settings()
                async with AnalysisTransport(settings) as transport:
                    pipeline = _pipeline(transport, settings, recorder)
                    submission = asyncio.ensure_future(pipeline.submit((make_item(),)))
                    await asyncio.wait_for(service.holding.wait(), timeout=5)
                    await asyncio.sleep(0.05)

                    cancelled = await pipeline.cancel()
                    published = len(recorder.snapshots)
                    service.release.set()
                    outcome = await submission
                    await asyncio.sleep(0.05)
                    return cancelled, outcome, published, recorder, pipeline, service

        cancelled, outcome, published, recorder, pipeline, service = run_async(scenario())

        assert cancelled is True
        assert outcome.status == OutcomeStatus.CANCELLED
        assert len(recorder.snapshots) == published
        assert recorder.snapshots[-1].stage != ProgressStage.COMPLETE
        assert pipeline.phase == PipelinePhase.CANCELLED
        assert service.fallback_calls == 0

    def test_cancel_when_idle(self):
        async def scenario():
            settings = build_config().analysis
            async with AnalysisTransport(settings) as transport:
                return await _pipeline(transport, settings, Recorder()).cancel()

        assert run_async(scenario()) is False

    def test_new_submission_supersedes_previous(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, hold_after=1) as service:
                recorder = Recorder()
                settings = service.settings()
                async with AnalysisTransport(settings) as transport:
                    pipeline = _pipeline(transport, settings, recorder)
                    first = asyncio.ensure_future(pipeline.submit((make_item("first"),)))
                    await asyncio.wait_for(service.holding.wait(), timeout=5)

                    second = asyncio.ensure_future(pipeline.submit((make_item("second"),)))
                    await asyncio.sleep(0.05)
                    service.release.set()
                    return await first, await second, service

        first, second, service = run_async(scenario())

        assert first.status == OutcomeStatus.CANCELLED
        assert second.status == OutcomeStatus.COMPLETE
        assert service.stream_calls == 2

    def test_rapid_resubmission_runs_only_the_latest(self):
        events = scripted_events()

        async def scenario():
            async with FakeAnalysisService(events=events, hold_after=1) as service:
                recorder = Recorder()
                settings = service.settings()
                async with AnalysisTransport(settings) as transport:
                    pipeline = _pipeline(transport, settings, recorder)
                    first = asyncio.ensure_future(pipeline.submit((make_item("first"),)))
                    await asyncio.wait_for(service.holding.wait(), timeout=5)

                    second = asyncio.ensure_future(pipeline.submit((make_item("second"),)))
                    third = asyncio.ensure_future(pipeline.submit((make_item("third"),)))
                    await asyncio.sleep(0.05)
                    service.release.set()
                    outcomes = await asyncio.gather(first, second, third)
                    return outcomes, service, pipeline

        (first, second, third), service, pipeline = run_async(scenario())

        assert first.status == OutcomeStatus.CANCELLED
        assert second.status == OutcomeStatus.CANCELLED
        assert third.status == OutcomeStatus.COMPLETE
        assert service.stream_calls == 2
        assert [body["items"][0]["name"] for body in service.stream_bodies] == ["first.jpg", "third.jpg"]
        assert pipeline.phase == PipelinePhase.COMPLETE

    def test_cancel_after_completion_is_a_no_op(self):
        async def scenario():
            async with FakeAnalysisService(events=scripted_events()) as service:
                outcome, _, pipeline = await _run(service)
                return outcome, await pipeline.cancel(), pipeline

        outcome, cancelled, pipeline = run_async(scenario())

        assert outcome.status == OutcomeStatus.COMPLETE
        assert cancelled is False
        assert pipeline.phase == PipelinePhase.COMPLETE


class TestPreparation:
    def _reject(self, items, *, token: Any = "tok", **submit):
        recorder = Recorder()

        async def scenario():
            settings = build_config({"analysis.base_url": "http://127.0.0.1:9"}).analysis
            async with AnalysisTransport(settings) as transport:
                pipeline = _pipeline(transport, settings, recorder, token=token)
                return await pipeline.submit(items, **submit), pipeline

        outcome, pipeline = run_async(scenario())
        return outcome, recorder, pipeline

    def test_empty_batch_rejected(self):
        outcome, recorder, pipeline = self._reject(())

        assert outcome.status == OutcomeStatus.REJECTED
        assert outcome.message == "Select at least one item"
        assert recorder.snapshots == []
        assert pipeline.phase == PipelinePhase.IDLE

    def test_nothing_selected_rejected(self):
        outcome, _, _ = self._reject((make_item(selected=False),))

        assert outcome.message == "Select at least one item"

    def test_missing_token_rejected(self):
        outcome, recorder, _ = self._reject((make_item(),), token=None)

        assert outcome.status == OutcomeStatus.REJECTED
        assert outcome.message == "Please sign in"
        assert "analysis_rejected" in recorder.notice_types

    def test_token_provider_returning_nothing(self):
        outcome, _, _ = self._reject((make_item(),), token=lambda: "")

        assert outcome.message == "Please sign in"

    def test_incomplete_enrichment_rejected(self):
        outcome, _, _ = self._reject(
            (make_item(),),
            enrichment=Enrichment(store_descriptor="Shop"),
            require_enrichment=True,
        )

        assert outcome.status == OutcomeStatus.INCOMPLETE_ENRICHMENT

    def test_only_selected_items_sent(self):
        items = (make_item("a"), make_item("b", selected=False), make_item("c"))

        async def scenario():
            async with FakeAnalysisService(events=scripted_events()) as service:
                await _run(service, items)
                return service

        service = run_async(scenario())

        assert [entry["name"] for entry in service.stream_bodies[0]["items"]] == ["a.jpg", "c.jpg"]

    def test_oversized_image_recompressed(self):
        original = make_jpeg(1600, 1200, noisy=True, quality=95)

        async def scenario():
            async with FakeAnalysisService(events=scripted_events()) as service:
                await _run(service, (make_item("big", original),), settings={"upload_ceiling_mb": 0.1})
                return service

        service = run_async(scenario())

        sent = service.stream_bodies[0]["items"][0]["data"]
        encoded = sent.split(",", 1)[1]
        assert len(base64.b64decode(encoded)) < len(original)

    def test_large_payload_notice(self):
        async def scenario():
            async with FakeAnalysisService(events=scripted_events()) as service:
                _, recorder, _ = await _run(service, settings={"payload_warning_mb": 0.00001})
                return recorder

        recorder = run_async(scenario())

        assert "large_payload" in recorder.notice_types

    def test_callable_token(self):
        async def scenario():
            async with FakeAnalysisService(events=scripted_events()) as service:
                recorder = Recorder()
                settings = service.settings()
                async with AnalysisTransport(settings) as transport:
                    pipeline = _pipeline(transport, settings, recorder, token=lambda: "fresh")
                    await pipeline.submit((make_item(),))
                return service

        service = run_async(scenario())

        assert service.auth_headers == ["Bearer fresh"]

    def test_enrichment_summary_attached(self):
        async def scenario():
            async with FakeAnalysisService(events=scripted_events(final_estimate=120.0)) as service:
                outcome, _, _ = await _run(service, enrichment=ENRICHMENT, require_enrichment=True)
                return outcome, service

        outcome, service = run_async(scenario())

        assert outcome.ok
        assert outcome.result.enrichment.velocity == "high"
        assert outcome.result.enrichment.estimated_margin == 100.0
        assert service.stream_bodies[0]["enrichment"]["shelfPrice"] == 20.0
        assert outcome.progress.message == "Analysis complete"
