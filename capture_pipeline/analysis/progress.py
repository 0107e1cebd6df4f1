"""Pure reducer from pipeline events to a renderable progress snapshot."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Iterable, Mapping

from .events import StreamEvent

DEFAULT_MODELS_TOTAL = 7


class ProgressStage(str, Enum):
    PREPARING = "preparing"
    IDENTIFYING = "identifying"
    AI_CONSENSUS = "ai_consensus"
    MARKET_DATA = "market_data"
    FINALIZING = "finalizing"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class ModelStatus(str, Enum):
    WAITING = "waiting"
    THINKING = "thinking"
    COMPLETE = "complete"
    ERROR = "error"


PHASE_STAGES = {
    "ai": ProgressStage.AI_CONSENSUS,
    "market": ProgressStage.MARKET_DATA,
    "finalizing": ProgressStage.FINALIZING,
}


@dataclass(frozen=True)
class ModelProgress:
    name: str
    icon: str = ""
    color: str = ""
    status: ModelStatus = ModelStatus.WAITING
    estimate: float | None = None
    decision: str | None = None
    response_time_ms: float | None = None
    weight: float | None = None

    @property
    def is_done(self) -> bool:
        return self.status in (ModelStatus.COMPLETE, ModelStatus.ERROR)


@dataclass(frozen=True)
class AnalysisProgressState:
    stage: ProgressStage = ProgressStage.PREPARING
    message: str = ""
    models: tuple[ModelProgress, ...] = ()
    models_complete: int = 0
    models_total: int = DEFAULT_MODELS_TOTAL
    running_estimate: float = 0.0
    running_confidence: float = 0.0
    detected_category: str | None = None
    market_apis: tuple[str, ...] = ()
    market_source_notes: tuple[str, ...] = ()
    error: str | None = None

    @property
    def model_statuses(self) -> dict[str, ModelStatus]:
        return {model.name: model.status for model in self.models}

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ProgressStage.COMPLETE, ProgressStage.ERROR)


def initial_progress(
    item_count: int = 1,
    *,
    enriched: bool = False,
    models_total: int = DEFAULT_MODELS_TOTAL,
) -> AnalysisProgressState:
    noun = "item" if item_count == 1 else "items"
    suffix = " with listing details" if enriched else ""
    return AnalysisProgressState(
        message=f"Preparing {item_count} {noun}{suffix}...",
        models_total=models_total,
    )


# ---------------------------------------------------------------------------
# Coercion helpers; upstream data is untrusted


def _number(value: Any, default: float | None = None) -> float | None:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _models_from(raw: Any) -> tuple[ModelProgress, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    models = []
    for entry in raw:
        if isinstance(entry, Mapping):
            name = _text(entry.get("name"))
            if name:
                models.append(
                    ModelProgress(
                        name=name,
                        icon=_text(entry.get("icon")) or "",
                        color=_text(entry.get("color")) or "",
                    )
                )
        elif _text(entry):
            models.append(ModelProgress(name=str(entry).strip()))
    return tuple(models)


def _update_model(state: AnalysisProgressState, name: str, **changes) -> AnalysisProgressState:
    found = False
    models = []
    for model in state.models:
        if model.name == name:
            model = replace(model, **changes)
            found = True
        models.append(model)
    if not found:
        # Models missing from the init roster still count once they report.
        models.append(replace(ModelProgress(name=name), **changes))
    models = tuple(models)
    return replace(
        state,
        models=models,
        models_complete=sum(1 for model in models if model.is_done),
        models_total=max(state.models_total, len(models)),
    )


# ---------------------------------------------------------------------------
# Reducer


def project(state: AnalysisProgressState, event: StreamEvent) -> AnalysisProgressState:
    data = event.data if isinstance(event.data, Mapping) else {}

    match event.type:
        case "init":
            models = _models_from(data.get("models"))
            total = _number(data.get("totalModels"))
            return replace(
                state,
                stage=ProgressStage.IDENTIFYING,
                message="Initializing analysis engine...",
                models=models,
                models_complete=0,
                models_total=int(total) if total and total > 0 else (len(models) or state.models_total),
                running_estimate=0.0,
                running_confidence=0.0,
                detected_category=None,
                market_apis=(),
                market_source_notes=(),
                error=None,
            )

        case "phase":
            apis = data.get("apis")
            return replace(
                state,
                stage=PHASE_STAGES.get(str(data.get("phase")), state.stage),
                message=_text(data.get("message")) or state.message,
                market_apis=tuple(str(api) for api in apis) if isinstance(apis, (list, tuple)) else state.market_apis,
            )

        case "ai_start":
            name = _text(data.get("model"))
            if name is None:
                return state
            return replace(_update_model(state, name, status=ModelStatus.THINKING), stage=ProgressStage.AI_CONSENSUS)

        case "ai_complete" | "ai_error":
            name = _text(data.get("model"))
            if name is None:
                return state
            success = event.type == "ai_complete" and data.get("success", True) is not False
            return _update_model(
                state,
                name,
                status=ModelStatus.COMPLETE if success else ModelStatus.ERROR,
                estimate=_number(data.get("estimate")),
                decision=_text(data.get("decision")),
                response_time_ms=_number(data.get("responseTime")),
                weight=_number(data.get("weight")),
            )

        case "price":
            return replace(
                state,
                running_estimate=_number(data.get("estimate"), state.running_estimate),
                running_confidence=_number(data.get("confidence"), state.running_confidence),
            )

        case "category":
            category = _text(data.get("displayName")) or _text(data.get("category"))
            return replace(state, detected_category=category or state.detected_category)

        case "api_start":
            api = _text(data.get("api")) or "market source"
            return replace(state, stage=ProgressStage.MARKET_DATA, message=f"Checking {api}...")

        case "api_complete":
            api = _text(data.get("api")) or "market source"
            if data.get("success"):
                listings = int(_number(data.get("listings"), 0) or 0)
                note = f"{api}: {listings} listings found"
            else:
                note = f"{api}: unavailable"
            return replace(state, message=note, market_source_notes=state.market_source_notes + (note,))

        case "analyzing":
            return replace(
                state,
                stage=ProgressStage.ANALYZING,
                message=_text(data.get("message")) or "Analyzing...",
            )

        case "complete":
            return replace(state, stage=ProgressStage.COMPLETE, message="Analysis complete")

        case "error":
            message = _text(data.get("message")) or "Analysis failed"
            return replace(state, stage=ProgressStage.ERROR, message=message, error=message)

        case _:
            return state


def replay(
    events: Iterable[StreamEvent],
    initial: AnalysisProgressState | None = None,
) -> AnalysisProgressState:
    state = initial if initial is not None else AnalysisProgressState()
    for event in events:
        state = project(state, event)
    return state


__all__ = [
    "AnalysisProgressState",
    "ModelProgress",
    "ModelStatus",
    "ProgressStage",
    "initial_progress",
    "project",
    "replay",
]
