from .events import SSEFrameParser, StreamEvent, format_event, parse_event_line
from .models import (
    AnalysisJobRequest,
    AnalysisOutcome,
    ConsensusResult,
    Decision,
    Enrichment,
    EnrichmentSummary,
    OutcomeStatus,
    PipelinePhase,
    Vote,
)
from .normalize import normalize_confidence, normalize_result, normalize_vote, placeholder_result
from .pipeline import AnalysisPipeline, CancelToken
from .progress import (
    AnalysisProgressState,
    ModelProgress,
    ModelStatus,
    ProgressStage,
    initial_progress,
    project,
    replay,
)
from .transport import AnalysisTransport

__all__ = [
    "AnalysisJobRequest",
    "AnalysisOutcome",
    "AnalysisPipeline",
    "AnalysisProgressState",
    "AnalysisTransport",
    "CancelToken",
    "ConsensusResult",
    "Decision",
    "Enrichment",
    "EnrichmentSummary",
    "ModelProgress",
    "ModelStatus",
    "OutcomeStatus",
    "PipelinePhase",
    "ProgressStage",
    "SSEFrameParser",
    "StreamEvent",
    "Vote",
    "format_event",
    "initial_progress",
    "normalize_confidence",
    "normalize_result",
    "normalize_vote",
    "parse_event_line",
    "placeholder_result",
    "project",
    "replay",
]
