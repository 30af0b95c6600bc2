"""
Gold extractions -> validated, reviewed, persisted spots.

One run rebuilds every automated spot of the managed activity types. Manual
spots and automated spots a human edited (``manual_override``) are never
regenerated; flagged and rejected entries either resolve through a stored
review decision for the same source hash, through a confident LLM verdict,
or end up in the human review report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .contracts import (
    DEFAULT_ACTIVITY_TYPE,
    ConfidenceReview,
    GoldRecord,
    PromotionEntry,
    Spot,
    VenueRecord,
    resolve_promotion_entries,
)
from .llm_review import review_all
from .logging_config import get_logger
from .settings import LLMCredentials
from .spot_builder import build_spot_from_entry, create_spots_from_gold
from .storage import PipelineStore
from .venue_match import find_matching_venue

logger = get_logger(__name__)

DEFAULT_MANAGED_TYPES = ("Happy Hour", "Brunch")


def _key(venue_id: str | None, activity_type: str | None) -> str:
    return f"{venue_id}::{activity_type or DEFAULT_ACTIVITY_TYPE}"


@dataclass(frozen=True, slots=True)
class StaleOverride:
    spot: Spot
    reason: str


@dataclass
class CreateSpotsReport:
    created: int = 0
    skipped: int = 0
    missing_venue: int = 0
    no_promotions: int = 0
    incomplete: int = 0
    deleted: int = 0
    review_approved: int = 0
    review_rejected: int = 0
    llm_auto_applied: int = 0
    llm_errors: int = 0
    reviews_in_db: int = 0
    linked_manual: int = 0
    managed_types: list[str] = field(default_factory=list)
    flagged: list[PromotionEntry] = field(default_factory=list)
    rejected: list[PromotionEntry] = field(default_factory=list)
    stale_overrides: list[StaleOverride] = field(default_factory=list)

    def review_file(self) -> dict[str, Any]:
        """JSON document listing what still needs a human decision."""

        def _entry(entry: PromotionEntry) -> dict[str, Any]:
            return {
                "venue": entry.venue,
                "venueId": entry.venue_id,
                "type": entry.activity_type,
                "label": entry.label,
                "times": entry.times,
                "days": entry.days,
                "llmConfidence": entry.confidence,
                "effectiveConfidence": entry.effective_confidence,
                "flags": entry.confidence_flags,
                "llmDecision": entry.llm_decision,
                "llmReviewConfidence": entry.llm_review_confidence or None,
                "llmReasoning": entry.llm_reasoning or None,
            }

        return {
            "generatedAt": datetime.now(UTC).isoformat(),
            "flagged": [_entry(entry) for entry in self.flagged],
            "rejected": [_entry(entry) for entry in self.rejected],
            "staleOverrides": [
                {
                    "venue": stale.spot.title,
                    "venueId": stale.spot.venue_id,
                    "type": stale.spot.type,
                    "reason": stale.reason,
                }
                for stale in self.stale_overrides
            ],
            "llmAutoApplied": self.llm_auto_applied,
            "reviewsInDb": self.reviews_in_db,
        }


@dataclass
class _RunState:
    """Per-run working set shared by the build and review phases."""

    candidates: dict[str, Spot] = field(default_factory=dict)
    contexts: dict[str, tuple[GoldRecord, VenueRecord]] = field(default_factory=dict)
    unreviewed_flagged: list[PromotionEntry] = field(default_factory=list)
    unreviewed_rejected: list[PromotionEntry] = field(default_factory=list)

    @property
    def flagged_keys(self) -> set[str]:
        return {_key(entry.venue_id, entry.activity_type) for entry in self.unreviewed_flagged}


def find_stale_overrides(overridden: list[Spot], gold_rows: list[GoldRecord]) -> list[StaleOverride]:
    by_venue = {gold.venue_id: gold for gold in gold_rows if gold.venue_id}
    stale: list[StaleOverride] = []
    for spot in overridden:
        if not spot.venue_id:
            continue
        gold = by_venue.get(spot.venue_id)
        if gold is None:
            stale.append(StaleOverride(spot, "upstream gold extraction no longer exists"))
            continue
        if not gold.promotions.get("found"):
            stale.append(StaleOverride(spot, "upstream venue no longer reports promotions"))
            continue
        types = {entry.activity_type for entry in resolve_promotion_entries(gold.promotions)}
        if spot.type not in types:
            stale.append(StaleOverride(spot, f"upstream no longer has {spot.type} data"))
    return stale


def _apply_prior_reviews(
    state: _RunState,
    report: CreateSpotsReport,
    gold: GoldRecord,
    venue: VenueRecord,
    result_spots: list[Spot],
    flagged: list[PromotionEntry],
    rejected: list[PromotionEntry],
    reviews: dict[str, ConfidenceReview],
    public_dir: Path | None,
    log: Any,
) -> list[Spot]:
    source_hash = gold.content_hash
    context = {"venue": gold.venue_name or venue.name, "venue_id": venue.id, "source_hash": source_hash}

    for entry in rejected:
        review = reviews.get(_key(venue.id, entry.activity_type))
        if review and review.reviewed_source_hash == source_hash:
            if review.decision == "approved":
                log.info("review_resurrected", venue_id=venue.id, type=entry.activity_type)
                result_spots.append(build_spot_from_entry(entry, gold, venue, public_dir=public_dir))
                report.review_approved += 1
            else:
                report.review_rejected += 1
            continue
        log.info(
            "entry_rejected",
            venue_id=venue.id,
            type=entry.activity_type,
            confidence=entry.effective_confidence,
            flags=entry.confidence_flags,
        )
        state.unreviewed_rejected.append(entry.model_copy(update=context))

    for entry in flagged:
        review = reviews.get(_key(venue.id, entry.activity_type))
        if review and review.reviewed_source_hash == source_hash:
            if review.decision == "approved":
                report.review_approved += 1
            else:
                report.review_rejected += 1
                result_spots = [spot for spot in result_spots if spot.type != entry.activity_type]
            continue
        log.info(
            "entry_flagged",
            venue_id=venue.id,
            type=entry.activity_type,
            confidence=entry.effective_confidence,
            flags=entry.confidence_flags,
        )
        state.unreviewed_flagged.append(entry.model_copy(update=context))

    return result_spots


async def _run_llm_review(
    store: PipelineStore,
    state: _RunState,
    report: CreateSpotsReport,
    credentials: LLMCredentials | None,
    public_dir: Path | None,
    log: Any,
) -> None:
    unreviewed = [*state.unreviewed_flagged, *state.unreviewed_rejected]
    if not unreviewed:
        return
    if credentials is None:
        log.warning("llm_review_skipped", reason="no credentials", entries=len(unreviewed))
        report.flagged = list(state.unreviewed_flagged)
        report.rejected = list(state.unreviewed_rejected)
        return

    flagged_keys = state.flagged_keys
    outcome = await review_all(unreviewed, credentials, log)
    report.llm_errors = outcome.errors

    for item in outcome.auto_applied:
        key = _key(item.venue_id, item.activity_type)
        await store.reviews.upsert(
            ConfidenceReview(
                venue_id=item.venue_id,
                activity_type=item.activity_type,
                decision="approved" if item.llm_decision == "approve" else "rejected",
                reason=item.llm_reasoning,
                reviewed_source_hash=item.source_hash,
                effective_confidence=item.effective_confidence,
                flags=item.confidence_flags,
                source="llm",
                llm_confidence=item.llm_review_confidence,
            )
        )
        report.llm_auto_applied += 1
        log.info(
            "llm_auto_applied",
            venue_id=item.venue_id,
            type=item.activity_type,
            decision=item.llm_decision,
            confidence=item.llm_review_confidence,
        )

        if item.llm_decision == "approve" and key not in state.candidates:
            gold, venue = state.contexts[item.venue_id]
            state.candidates[key] = build_spot_from_entry(item, gold, venue, public_dir=public_dir)
        elif item.llm_decision == "reject" and key in flagged_keys:
            state.candidates.pop(key, None)

    for item in outcome.needs_human_review:
        if _key(item.venue_id, item.activity_type) in flagged_keys:
            report.flagged.append(item)
        else:
            report.rejected.append(item)


async def _link_manual_spots(
    store: PipelineStore, manual: list[Spot], report: CreateSpotsReport, log: Any
) -> None:
    for spot in manual:
        if spot.venue_id or spot.id is None:
            continue
        match = await find_matching_venue(store.venues, spot.title, spot.lat, spot.lng, log)
        if match is None:
            continue
        await store.spots.update(spot.id, venue_id=match.venue_id)
        report.linked_manual += 1
        log.info(
            "manual_spot_linked",
            spot_id=spot.id,
            venue_id=match.venue_id,
            distance_meters=match.distance_meters,
        )


async def run_create_spots(
    store: PipelineStore,
    *,
    credentials: LLMCredentials | None = None,
    public_dir: Path | None = None,
    log: Any = None,
) -> CreateSpotsReport:
    log = log or logger
    report = CreateSpotsReport()
    state = _RunState()

    venues = {venue.id: venue for venue in await store.venues.get_all()}
    gold_rows = await store.gold.get_all()
    existing = await store.spots.get_all()
    reviews = await store.reviews.get_decision_map()
    log.info(
        "create_spots_loaded",
        venues=len(venues),
        gold=len(gold_rows),
        spots=len(existing),
        reviews=len(reviews),
    )

    manual = [spot for spot in existing if spot.source == "manual"]
    overridden = [spot for spot in existing if spot.source == "automated" and spot.manual_override]
    preserved_keys = {spot.key for spot in overridden}

    for gold in gold_rows:
        if not gold.venue_id:
            report.skipped += 1
            continue
        venue = venues.get(gold.venue_id)
        if venue is None:
            report.missing_venue += 1
            log.warning("gold_venue_missing", venue_id=gold.venue_id)
            continue
        if not gold.promotions.get("found"):
            report.no_promotions += 1
            continue

        try:
            result = create_spots_from_gold(gold, venue, 0, public_dir=public_dir)
        except ValueError as exc:
            report.skipped += 1
            log.warning("gold_row_invalid", venue_id=gold.venue_id, error=str(exc))
            continue

        state.contexts[venue.id] = (gold, venue)
        spots = _apply_prior_reviews(
            state,
            report,
            gold,
            venue,
            result.spots,
            result.flagged,
            result.rejected,
            reviews,
            public_dir,
            log,
        )
        if not spots:
            report.incomplete += 1
        for spot in spots:
            state.candidates.setdefault(spot.key, spot)

    await _run_llm_review(store, state, report, credentials, public_dir, log)

    new_spots: list[Spot] = []
    next_id = max((spot.id or 0 for spot in existing), default=0) + 1
    for key, spot in state.candidates.items():
        if key in preserved_keys:
            report.skipped += 1
            log.info("override_preserved", key=key)
            continue
        if spot.lat is None or spot.lng is None:
            report.skipped += 1
            log.warning("spot_missing_coordinates", venue_id=spot.venue_id, type=spot.type)
            continue
        new_spots.append(spot.model_copy(update={"id": next_id}))
        next_id += 1

    managed = list(dict.fromkeys(spot.type for spot in new_spots)) or list(DEFAULT_MANAGED_TYPES)
    report.managed_types = managed
    report.deleted, report.created = await store.spots.replace_automated(managed, new_spots)

    await _link_manual_spots(store, manual, report, log)
    report.stale_overrides = find_stale_overrides(overridden, gold_rows)
    for stale in report.stale_overrides:
        log.warning("override_stale", key=stale.spot.key, reason=stale.reason)
    report.reviews_in_db = len(reviews) + report.llm_auto_applied

    log.info(
        "create_spots_complete",
        created=report.created,
        deleted=report.deleted,
        skipped=report.skipped,
        flagged=len(report.flagged),
        rejected=len(report.rejected),
        llm_auto_applied=report.llm_auto_applied,
    )
    return report


__all__ = ["CreateSpotsReport", "StaleOverride", "find_stale_overrides", "run_create_spots"]
