"""Coerce whatever the analysis service returned into a ConsensusResult.

Upstream variants disagree on field names and on where the vote list
lives. Recognised shapes:

* ``hydraConsensus.votes`` or ``hydraConsensus.allVotes``
* top-level ``votes`` or ``allVotes``
* a raw engine result carrying its headline fields under ``consensus``

Nothing here raises: unusable input produces a placeholder result.
"""

from __future__ import annotations

import math
import uuid
from typing import Any, Callable, Mapping

from capture_pipeline.core.logging_utils import get_module_logger

from .models import ConsensusResult, Decision, Vote

PLACEHOLDER_REASONING = "Analysis complete"
DEFAULT_VOTE_ICON = "🤖"

logger = get_module_logger("Normalize")


def normalize_confidence(value: Any, default: float = 0.5) -> float:
    """Map a 0..1 fraction or a 0..100 percentage onto 0..1."""
    number = _number(value)
    if number is None:
        return default
    if number > 1:
        number = number / 100
    return min(1.0, max(0.0, number))


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _first(sources: tuple[Mapping[str, Any], ...], *keys: str) -> Any:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value is not None and value != "":
                return value
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _decision(value: Any, default: Decision = Decision.SELL) -> Decision:
    if isinstance(value, Decision):
        return value
    try:
        return Decision(str(value).strip().upper())
    except ValueError:
        return default


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _string_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(entry).strip() for entry in value if entry is not None and str(entry).strip())


def _raw_votes(raw: Mapping[str, Any]) -> list[Any]:
    hydra = _mapping(raw.get("hydraConsensus"))
    for candidate in (hydra.get("votes"), hydra.get("allVotes"), raw.get("votes"), raw.get("allVotes")):
        if isinstance(candidate, (list, tuple)) and candidate:
            return list(candidate)
    return []


def normalize_vote(raw: Any) -> Vote:
    vote = _mapping(raw)
    response = _mapping(vote.get("rawResponse"))
    sources = (vote, response)

    weight = _number(vote.get("weight"))
    success = vote.get("success")
    return Vote(
        provider_name=_text(_first((vote,), "providerName", "model", "name")) or "Unknown",
        icon=_text(vote.get("icon")) or DEFAULT_VOTE_ICON,
        weight=weight if weight is not None and weight >= 0 else 1.0,
        success=success if isinstance(success, bool) else True,
        estimated_value=_number(_first(sources, "estimatedValue", "estimate")) or 0.0,
        decision=_decision(_first(sources, "decision")),
        confidence=normalize_confidence(_first(sources, "confidence")),
        response_time_ms=_number(_first((vote,), "responseTime", "responseTimeMs")) or 0.0,
    )


def placeholder_result(result_id: str | None = None) -> ConsensusResult:
    return ConsensusResult(result_id=result_id or uuid.uuid4().hex)


def normalize_result(
    raw: Any,
    *,
    id_factory: Callable[[], str] | None = None,
) -> ConsensusResult:
    make_id = id_factory or (lambda: uuid.uuid4().hex)
    try:
        return _normalize(raw, make_id)
    except Exception as exc:  # pragma: no cover - last-resort guard
        logger.error("Normalization failed, using placeholder: %s", exc, exc_info=True)
        return placeholder_result(make_id())


def _normalize(raw: Any, make_id: Callable[[], str]) -> ConsensusResult:
    if not isinstance(raw, Mapping):
        logger.warning("Result is not an object (%s); using placeholder", type(raw).__name__)
        return placeholder_result(make_id())

    consensus = _mapping(raw.get("consensus"))
    hydra_consensus = _mapping(_mapping(raw.get("hydraConsensus")).get("consensus"))
    sources = (raw, consensus, hydra_consensus)

    votes = tuple(normalize_vote(vote) for vote in _raw_votes(raw))
    comps = raw.get("marketComps")

    return ConsensusResult(
        result_id=_text(_first((raw,), "id", "analysisId")) or make_id(),
        item_name=_text(_first(sources, "itemName", "item_name", "name")) or "Unknown Item",
        estimated_value=_number(_first(sources, "estimatedValue", "estimated_value")) or 0.0,
        decision=_decision(_first(sources, "decision")),
        confidence=normalize_confidence(_first(sources, "confidence", "confidenceScore")),
        reasoning_summary=(
            _text(_first(sources, "summary_reasoning", "summaryReasoning", "reasoning"))
            or PLACEHOLDER_REASONING
        ),
        contributing_factors=_string_list(_first(sources, "valuation_factors", "valuationFactors")),
        votes=votes,
        category=_text(_first(sources, "category")),
        market_comps=tuple(dict(comp) for comp in comps if isinstance(comp, Mapping))
        if isinstance(comps, (list, tuple)) else (),
    )


__all__ = [
    "PLACEHOLDER_REASONING",
    "normalize_confidence",
    "normalize_result",
    "normalize_vote",
    "placeholder_result",
]
