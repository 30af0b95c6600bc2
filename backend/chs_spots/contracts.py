from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ACTIVITY_TYPE = "Happy Hour"

ValidationAction = Literal["keep", "flag", "reject"]
LLMDecision = Literal["approve", "reject"]


class CamelModel(BaseModel):
    """Accepts the camelCase JSON the extractor writes, exposes snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


# --- Extraction input ---
class PromotionEntry(CamelModel):
    activity_type: str = DEFAULT_ACTIVITY_TYPE
    label: str | None = None
    days: str | None = None
    times: str | None = None
    specials: list[str] = Field(default_factory=list)
    source: str | None = None
    confidence: float | None = None

    # venue context attached when an entry leaves its gold record for review
    venue: str | None = None
    venue_id: str | None = None
    source_hash: str | None = None

    # heuristic validation
    effective_confidence: float | None = None
    confidence_flags: list[str] = Field(default_factory=list)

    # LLM review
    llm_decision: LLMDecision | None = None
    llm_review_confidence: float | None = None
    llm_reasoning: str | None = None

    @field_validator("activity_type", mode="before")
    @classmethod
    def _default_type(cls, v: Any) -> str:
        if not v or not isinstance(v, str) or not v.strip():
            return DEFAULT_ACTIVITY_TYPE
        return v.strip()

    @field_validator("specials", mode="before")
    @classmethod
    def _coerce_specials(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]

    @field_validator("days", "times", "label", "source", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any) -> str | None:
        if v is None:
            return None
        return v if isinstance(v, str) else str(v)


class ValidationResult(BaseModel):
    confidence: float
    flags: list[str] = Field(default_factory=list)
    action: ValidationAction


@dataclass
class ValidationPartition:
    """Flagged entries are members of both `kept` and `flagged`."""

    kept: list[PromotionEntry] = field(default_factory=list)
    flagged: list[PromotionEntry] = field(default_factory=list)
    rejected: list[PromotionEntry] = field(default_factory=list)


# --- LLM review ---
class ReviewDecision(BaseModel):
    index: int
    decision: LLMDecision
    confidence: float
    reasoning: str = ""


@dataclass
class ReviewOutcome:
    auto_applied: list[PromotionEntry] = field(default_factory=list)
    needs_human_review: list[PromotionEntry] = field(default_factory=list)
    errors: int = 0


# --- Venues ---
class VenueRecord(CamelModel):
    id: str
    name: str
    lat: float | None = None
    lng: float | None = None
    area: str | None = None
    address: str | None = None
    website: str | None = None
    photo_url: str | None = None


class VenueMatch(BaseModel):
    venue_id: str
    venue_name: str
    distance_meters: int
    score: float


# --- Gold extractions ---
class GoldRecord(CamelModel):
    venue_id: str | None = None
    venue_name: str | None = None
    promotions: dict[str, Any] = Field(default_factory=dict)
    source_hash: str | None = None
    normalized_source_hash: str | None = None
    processed_at: str | None = None

    @property
    def content_hash(self) -> str | None:
        return self.source_hash or self.normalized_source_hash


def resolve_promotion_entries(promotions: dict[str, Any] | None) -> list[PromotionEntry]:
    """Collapse the legacy single-promotion shape and the `entries` shape into one list."""
    if not promotions or not promotions.get("found"):
        return []
    entries = promotions.get("entries")
    if isinstance(entries, list) and entries:
        return [PromotionEntry.model_validate(item) for item in entries if isinstance(item, dict)]
    if promotions.get("times") or promotions.get("days") or promotions.get("specials"):
        return [
            PromotionEntry(
                activity_type=DEFAULT_ACTIVITY_TYPE,
                times=promotions.get("times"),
                days=promotions.get("days"),
                specials=promotions.get("specials") or [],
                source=promotions.get("source"),
            )
        ]
    return []


def gold_promotions(payload: dict[str, Any]) -> dict[str, Any]:
    """Gold rows written before the multi-activity rename keep data under `happyHour`."""
    return payload.get("promotions") or payload.get("happyHour") or {}


# --- Spots ---
class Spot(CamelModel):
    id: int | None = None
    venue_id: str | None = None
    title: str
    type: str = DEFAULT_ACTIVITY_TYPE
    source: Literal["automated", "manual"] = "automated"
    status: str = "approved"
    description: str | None = None
    promotion_time: str | None = None
    promotion_list: list[str] = Field(default_factory=list)
    source_url: str | None = None
    area: str = "Unknown"
    lat: float | None = None
    lng: float | None = None
    photo_url: str | None = None
    last_update_date: str | None = None
    manual_override: bool = False

    @property
    def key(self) -> str:
        return f"{self.venue_id}::{self.type}"


@dataclass
class SpotBuildResult:
    spots: list[Spot] = field(default_factory=list)
    flagged: list[PromotionEntry] = field(default_factory=list)
    rejected: list[PromotionEntry] = field(default_factory=list)


# --- Review decisions ---
class ConfidenceReview(CamelModel):
    """A persisted verdict on a flagged/rejected activity type for one venue."""

    venue_id: str
    activity_type: str
    decision: Literal["approved", "rejected"]
    reason: str | None = None
    reviewed_source_hash: str | None = None
    effective_confidence: float | None = None
    flags: list[str] = Field(default_factory=list)
    source: Literal["llm", "human"] = "human"
    llm_confidence: float | None = None

    @property
    def key(self) -> str:
        return f"{self.venue_id}::{self.activity_type}"
