"""Submission, streaming, fallback and normalization of one analysis job."""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import replace
from typing import Any, Callable, Iterable, Optional

import aiohttp

from capture_pipeline.batch.compression import aggressive_compress, format_bytes
from capture_pipeline.batch.models import CaptureItem
from capture_pipeline.config import AnalysisSettings, build_config
from capture_pipeline.core.asyncio_utils import create_logged_task
from capture_pipeline.core.logging_utils import LoggerLike, ensure_structured_logger
from capture_pipeline.errors import (
    CompressionError,
    PayloadTooLargeError,
    StreamEventError,
    TransportError,
)

from .events import StreamEvent
from .models import (
    AnalysisJobRequest,
    AnalysisOutcome,
    Enrichment,
    OutcomeStatus,
    PipelinePhase,
)
from .normalize import normalize_result
from .progress import AnalysisProgressState, initial_progress, project
from .transport import AnalysisTransport

MB = 1024 * 1024
NETWORK_ERRORS = (TransportError, aiohttp.ClientError, asyncio.TimeoutError)


class CancelToken:
    """Checked at every suspension point of one submission."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()


class AnalysisPipeline:
    """Runs at most one submission at a time.

    Starting a new ``submit`` cancels the one in flight. Progress is
    published through ``progress_callback`` as immutable snapshots, and
    nothing belonging to a cancelled submission is published afterwards.
    """

    def __init__(
        self,
        transport: AnalysisTransport,
        *,
        settings: AnalysisSettings | None = None,
        auth_token: str | Callable[[], Optional[str]] | None = None,
        status_callback: Callable[[str, dict], None] | None = None,
        progress_callback: Callable[[AnalysisProgressState], None] | None = None,
        id_factory: Callable[[], str] | None = None,
        logger: LoggerLike = None,
    ) -> None:
        self._transport = transport
        self._settings = settings if settings is not None else build_config().analysis
        self._auth_token = auth_token
        self._status_callback = status_callback
        self._progress_callback = progress_callback
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._logger = ensure_structured_logger(logger, fallback_name="AnalysisPipeline")
        self._phase = PipelinePhase.IDLE
        self._progress: AnalysisProgressState | None = None
        self._token: CancelToken | None = None
        self._task: asyncio.Task | None = None
        self._task_token: CancelToken | None = None

    # ------------------------------------------------------------------
    # Read side

    @property
    def phase(self) -> PipelinePhase:
        return self._phase

    @property
    def progress(self) -> AnalysisProgressState | None:
        return self._progress

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Entry points

    async def submit(
        self,
        items: Iterable[CaptureItem],
        *,
        category_id: str = "general",
        subcategory_id: str | None = None,
        enrichment: Enrichment | None = None,
        require_enrichment: bool = False,
    ) -> AnalysisOutcome:
        """Run one job over a snapshot of ``items`` and return its outcome."""
        token = CancelToken()
        snapshot = tuple(items)
        previous_token, previous_task = self._token, self._task
        self._token = token
        await self._abort(previous_token, previous_task)
        if token is not self._token or token.cancelled:
            return AnalysisOutcome(OutcomeStatus.CANCELLED, message="Analysis cancelled")

        self._task = task = create_logged_task(
            self._run(snapshot, category_id, subcategory_id, enrichment, require_enrichment, token),
            logger=self._logger,
            context="analysis-submission",
        )
        self._task_token = token
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if token.cancelled:
                return AnalysisOutcome(OutcomeStatus.CANCELLED, message="Analysis cancelled")
            task.cancel()
            raise

    async def cancel(self) -> bool:
        """Abort the submission in flight; returns False when idle."""
        token, task = self._token, self._task
        if not self._pending(token, task):
            return False
        await self._abort(token, task)
        return True

    def _pending(self, token: CancelToken | None, task: asyncio.Task | None) -> bool:
        if token is None or token.cancelled:
            return False
        # A token whose task is not created yet is still in flight.
        return not (self._task_token is token and (task is None or task.done()))

    async def _abort(self, token: CancelToken | None, task: asyncio.Task | None) -> None:
        if self._pending(token, task):
            token.cancel()
            self._phase = PipelinePhase.CANCELLED
            self._logger.info("Cancelling analysis in flight")
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Internal helpers

    def _is_current(self, token: CancelToken) -> bool:
        return token is self._token and not token.cancelled

    def _set_phase(self, phase: PipelinePhase, token: CancelToken) -> None:
        if self._is_current(token):
            self._phase = phase

    def _apply(self, event: StreamEvent, token: CancelToken) -> None:
        if not self._is_current(token) or self._progress is None:
            return
        self._progress = project(self._progress, event)
        if self._progress_callback:
            self._progress_callback(self._progress)

    def _notify(self, status_type: str, payload: dict) -> None:
        if self._status_callback:
            self._status_callback(status_type, payload)

    def _resolve_token(self) -> Optional[str]:
        if callable(self._auth_token):
            return self._auth_token()
        return self._auth_token

    def _finish(self, status: OutcomeStatus, token: CancelToken, **fields: Any) -> AnalysisOutcome:
        phase = PipelinePhase.COMPLETE if status == OutcomeStatus.COMPLETE else PipelinePhase.ERRORED
        self._set_phase(phase, token)
        return AnalysisOutcome(status, progress=self._progress, **fields)

    def _reject(self, status: OutcomeStatus, message: str, token: CancelToken) -> AnalysisOutcome:
        self._logger.info("Submission rejected: %s", message)
        self._notify("analysis_rejected", {"message": message, "reason": status.value})
        self._set_phase(PipelinePhase.IDLE, token)
        return AnalysisOutcome(status, message=message)

    def _fail(self, message: str, token: CancelToken, *, used_fallback: bool) -> AnalysisOutcome:
        self._logger.error("Analysis failed: %s", message)
        if self._progress is not None and not self._progress.is_terminal:
            self._apply(StreamEvent("error", {"message": message}), token)
        self._notify("analysis_error", {"message": message})
        return self._finish(OutcomeStatus.ERRORED, token, message=message, used_fallback=used_fallback)

    # ------------------------------------------------------------------
    # Phases

    async def _run(self, items, category_id, subcategory_id, enrichment, require_enrichment, token):
        try:
            return await self._execute(items, category_id, subcategory_id, enrichment, require_enrichment, token)
        except asyncio.CancelledError:
            self._logger.debug("Submission cancelled")
            return AnalysisOutcome(OutcomeStatus.CANCELLED, message="Analysis cancelled")

    async def _execute(
        self,
        items: tuple[CaptureItem, ...],
        category_id: str,
        subcategory_id: str | None,
        enrichment: Enrichment | None,
        require_enrichment: bool,
        token: CancelToken,
    ) -> AnalysisOutcome:
        self._set_phase(PipelinePhase.PREPARING, token)
        selected = tuple(item for item in items if item.selected)
        if not selected:
            return self._reject(OutcomeStatus.REJECTED, "Select at least one item", token)
        auth_token = self._resolve_token()
        if not auth_token:
            return self._reject(OutcomeStatus.REJECTED, "Please sign in", token)
        if require_enrichment and (enrichment is None or not enrichment.is_complete):
            return self._reject(
                OutcomeStatus.INCOMPLETE_ENRICHMENT,
                "Complete listing details (location, store, shelf price)",
                token,
            )

        self._progress = initial_progress(
            len(selected),
            enriched=enrichment is not None,
            models_total=self._settings.models_total,
        )
        if self._progress_callback:
            self._progress_callback(self._progress)

        self._set_phase(PipelinePhase.COMPRESSING, token)
        request = AnalysisJobRequest(
            items=await self._prepare_items(selected, token),
            category_id=category_id,
            subcategory_id=subcategory_id,
            enrichment=enrichment,
        )
        payload_bytes = request.payload_bytes
        if payload_bytes > self._settings.payload_warning_mb * MB:
            self._logger.warning("Large payload: %s", format_bytes(payload_bytes))
            self._notify(
                "large_payload",
                {"message": f"Large upload ({format_bytes(payload_bytes)}) may be slow", "bytes": payload_bytes},
            )
        body = request.to_payload()

        token.raise_if_cancelled()
        self._set_phase(PipelinePhase.STREAMING, token)
        used_fallback = False
        try:
            raw = await asyncio.wait_for(
                self._consume_stream(body, auth_token, token),
                timeout=self._settings.stream_timeout_s,
            )
        except StreamEventError as exc:
            return self._fail(str(exc), token, used_fallback=False)
        except NETWORK_ERRORS as exc:
            self._logger.info("Streaming unavailable (%s); falling back", str(exc) or type(exc).__name__)
            raw = None
        else:
            if raw is None:
                self._logger.info("Stream ended without a result; falling back")

        if raw is None:
            token.raise_if_cancelled()
            used_fallback = True
            self._set_phase(PipelinePhase.FALLBACK, token)
            self._apply(StreamEvent("analyzing", {"message": "Analyzing..."}), token)
            try:
                raw = await self._transport.fetch_result(body, auth_token)
            except PayloadTooLargeError as exc:
                return self._fail(str(exc), token, used_fallback=True)
            except NETWORK_ERRORS as exc:
                message = str(exc) if isinstance(exc, TransportError) else f"Analysis failed: {str(exc) or type(exc).__name__}"
                return self._fail(message, token, used_fallback=True)

        token.raise_if_cancelled()
        self._set_phase(PipelinePhase.NORMALIZING, token)
        result = normalize_result(raw, id_factory=self._id_factory)
        if enrichment is not None and enrichment.is_complete:
            result = replace(result, enrichment=enrichment.summarize(result.estimated_value))

        token.raise_if_cancelled()
        if self._progress is not None and not self._progress.is_terminal:
            self._apply(StreamEvent("complete", {"decision": result.decision.value}), token)
        self._logger.info(
            "Analysis %s complete: %s %s (%d votes%s)",
            result.result_id,
            result.decision.value,
            result.estimated_value,
            len(result.votes),
            ", fallback" if used_fallback else "",
        )
        return self._finish(OutcomeStatus.COMPLETE, token, result=result, used_fallback=used_fallback)

    async def _prepare_items(self, items: tuple[CaptureItem, ...], token: CancelToken) -> tuple[CaptureItem, ...]:
        ceiling = self._settings.upload_ceiling_mb * MB
        prepared = []
        for item in items:
            token.raise_if_cancelled()
            if item.is_image and item.byte_size > ceiling:
                try:
                    result = await asyncio.to_thread(aggressive_compress, item.raw_data)
                except CompressionError as exc:
                    self._logger.warning("Could not re-compress %s: %s", item.item_id, exc)
                else:
                    self._logger.debug(
                        "Re-compressed %s: %s -> %s",
                        item.item_id,
                        format_bytes(item.byte_size),
                        format_bytes(result.compressed_size),
                    )
                    item = replace(
                        item,
                        raw_data=result.data,
                        mime_type="image/jpeg",
                        metadata=replace(item.metadata, compressed_byte_size=result.compressed_size),
                    )
            prepared.append(item)
        return tuple(prepared)

    async def _consume_stream(self, body: dict, auth_token: str, token: CancelToken) -> Any:
        """Apply events in order; return the raw result or None if no terminal event arrived."""
        async with contextlib.aclosing(self._transport.stream_events(body, auth_token)) as events:
            async for event in events:
                token.raise_if_cancelled()
                self._apply(event, token)
                if event.type == "complete":
                    return dict(event.data)
                if event.type == "error":
                    raise StreamEventError(str(event.data.get("message") or "Analysis failed"))
        return None


__all__ = ["AnalysisPipeline", "CancelToken"]
