from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from typing import Any

from capture_pipeline.batch.models import CaptureItem

from .progress import AnalysisProgressState

DEFAULT_HANDLING_HOURS = 24
HIGH_VELOCITY_MARGIN = 500.0
MEDIUM_VELOCITY_MARGIN = 200.0


class Decision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    PASS = "PASS"


class PipelinePhase(Enum):
    IDLE = auto()
    PREPARING = auto()
    COMPRESSING = auto()
    STREAMING = auto()
    FALLBACK = auto()
    NORMALIZING = auto()
    COMPLETE = auto()
    CANCELLED = auto()
    ERRORED = auto()


class OutcomeStatus(str, Enum):
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERRORED = "errored"
    REJECTED = "rejected"
    INCOMPLETE_ENRICHMENT = "incomplete_enrichment"


@dataclass(frozen=True)
class EnrichmentSummary:
    created_at: datetime
    expires_at: datetime
    handling_time_hours: int
    shelf_price: float
    estimated_margin: float
    margin_percent: float
    velocity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "handlingTimeHours": self.handling_time_hours,
            "shelfPrice": self.shelf_price,
            "estimatedMargin": self.estimated_margin,
            "marginPercent": self.margin_percent,
            "velocity": self.velocity,
        }


@dataclass(frozen=True)
class Enrichment:
    """Shelf-listing context for an item that has not been bought yet."""

    location_coordinates: tuple[float, float] | None = None
    store_descriptor: str | None = None
    shelf_price: float | None = None
    handling_time_hours: int = DEFAULT_HANDLING_HOURS
    store_type: str | None = None

    @property
    def is_complete(self) -> bool:
        return (
            self.location_coordinates is not None
            and bool(self.store_descriptor and self.store_descriptor.strip())
            and self.shelf_price is not None
            and self.shelf_price > 0
        )

    def to_payload(self) -> dict[str, Any]:
        coordinates = None
        if self.location_coordinates is not None:
            lat, lng = self.location_coordinates
            coordinates = {"lat": lat, "lng": lng}
        return {
            "locationCoordinates": coordinates,
            "storeDescriptor": {"name": self.store_descriptor, "type": self.store_type},
            "shelfPrice": self.shelf_price,
            "handlingTimeHours": self.handling_time_hours,
        }

    def summarize(self, estimated_value: float, now: datetime | None = None) -> EnrichmentSummary:
        created = now or datetime.now(timezone.utc)
        shelf_price = self.shelf_price or 0.0
        margin = estimated_value - shelf_price
        margin_percent = (margin / shelf_price * 100) if shelf_price > 0 else 0.0
        if margin_percent >= HIGH_VELOCITY_MARGIN:
            velocity = "high"
        elif margin_percent >= MEDIUM_VELOCITY_MARGIN:
            velocity = "medium"
        else:
            velocity = "low"
        return EnrichmentSummary(
            created_at=created,
            expires_at=created + timedelta(hours=self.handling_time_hours),
            handling_time_hours=self.handling_time_hours,
            shelf_price=shelf_price,
            estimated_margin=round(margin, 2),
            margin_percent=round(margin_percent, 1),
            velocity=velocity,
        )


@dataclass(frozen=True)
class Vote:
    provider_name: str = "Unknown"
    icon: str = "🤖"
    weight: float = 1.0
    success: bool = True
    estimated_value: float = 0.0
    decision: Decision = Decision.SELL
    confidence: float = 0.5
    response_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerName": self.provider_name,
            "icon": self.icon,
            "weight": self.weight,
            "success": self.success,
            "estimatedValue": self.estimated_value,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "responseTimeMs": self.response_time_ms,
        }


@dataclass(frozen=True)
class ConsensusResult:
    result_id: str
    item_name: str = "Unknown Item"
    estimated_value: float = 0.0
    decision: Decision = Decision.SELL
    confidence: float = 0.5
    reasoning_summary: str = "Analysis complete"
    contributing_factors: tuple[str, ...] = ()
    votes: tuple[Vote, ...] = ()
    category: str | None = None
    market_comps: tuple[dict[str, Any], ...] = ()
    enrichment: EnrichmentSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.result_id,
            "itemName": self.item_name,
            "estimatedValue": self.estimated_value,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "reasoningSummary": self.reasoning_summary,
            "contributingFactors": list(self.contributing_factors),
            "votes": [vote.to_dict() for vote in self.votes],
            "category": self.category,
            "marketComps": list(self.market_comps),
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
        }


def _data_url(item: CaptureItem) -> str:
    return f"data:{item.mime_type};base64,{base64.b64encode(item.raw_data).decode('ascii')}"


def _frame_url(frame: bytes) -> str:
    return f"data:image/jpeg;base64,{base64.b64encode(frame).decode('ascii')}"


@dataclass(frozen=True)
class AnalysisJobRequest:
    items: tuple[CaptureItem, ...]
    category_id: str = "general"
    subcategory_id: str | None = None
    enrichment: Enrichment | None = None

    @property
    def payload_bytes(self) -> int:
        return sum(item.byte_size for item in self.items)

    def to_payload(self) -> dict[str, Any]:
        items = []
        for item in self.items:
            metadata: dict[str, Any] = {}
            if item.metadata.document_kind is not None:
                metadata["documentType"] = item.metadata.document_kind.value
            if item.metadata.extracted_text:
                metadata["extractedText"] = item.metadata.extracted_text
            if item.metadata.barcodes:
                metadata["barcodes"] = list(item.metadata.barcodes)
            if item.metadata.description:
                metadata["description"] = item.metadata.description
            if item.metadata.video_frame_refs:
                metadata["videoFrames"] = [_frame_url(frame) for frame in item.metadata.video_frame_refs]
            items.append(
                {
                    "type": item.kind.value,
                    "name": item.display_name,
                    "data": _data_url(item),
                    "metadata": metadata,
                }
            )
        payload: dict[str, Any] = {
            "items": items,
            "categoryId": self.category_id,
            "subcategoryId": self.subcategory_id,
        }
        if self.enrichment is not None:
            payload["enrichment"] = self.enrichment.to_payload()
        return payload


@dataclass(frozen=True)
class AnalysisOutcome:
    status: OutcomeStatus
    result: ConsensusResult | None = None
    message: str | None = None
    progress: AnalysisProgressState | None = field(default=None, repr=False)
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.COMPLETE


__all__ = [
    "AnalysisJobRequest",
    "AnalysisOutcome",
    "ConsensusResult",
    "Decision",
    "Enrichment",
    "EnrichmentSummary",
    "OutcomeStatus",
    "PipelinePhase",
    "Vote",
]
