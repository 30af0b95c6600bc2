"""
LLM review of heuristically flagged / rejected promotion entries.

Auto-apply threshold:
    confidence >= 85  -> applied without a human (approve or reject)
    confidence <  85  -> queued for human review
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from .contracts import PromotionEntry, ReviewDecision, ReviewOutcome
from .json_utils import extract_json_array
from .llm_client import chat, close_client
from .logging_config import get_logger
from .settings import LLMCredentials, settings

logger = get_logger(__name__)

BATCH_SIZE = 10
AUTO_APPLY_THRESHOLD = 85
BATCH_DELAY_SECONDS = 0.5
REVIEW_RETRIES = 2
REVIEW_RETRY_DELAY_SECONDS = 2.0
NO_DECISION_REASONING = "LLM did not return a decision for this entry"

SYSTEM_PROMPT = """You are a data quality reviewer for a Charleston, SC restaurant deals app.

You will receive flagged entries that were extracted from restaurant websites and classified as "Happy Hour" or "Brunch" promotions. Each entry was flagged by heuristic rules because something looked suspicious.

For each entry, decide whether it is a LEGITIMATE promotion or a MISCLASSIFICATION.

Rules for Happy Hour:
- Must involve discounted drinks or food specials during a specific time window
- Regular operating hours are NOT happy hour
- Food-only specials (wing night, taco tuesday) count IF they are time-limited promotions
- All-day specials with no drink component are borderline - use judgment
- Market/cafe/bakery hours are never happy hour

Rules for Brunch:
- Must be a dedicated brunch service, not just regular breakfast/lunch hours
- Weekend brunch is most common but weekday brunch exists

Return ONLY a JSON array. Each element must have:
{
  "index": <0-based position in the input array>,
  "decision": "approve" | "reject",
  "confidence": <0-100>,
  "reasoning": "<one sentence>"
}"""


def build_user_prompt(entries: Sequence[PromotionEntry]) -> str:
    items = [
        {
            "index": index,
            "venue": entry.venue,
            "type": entry.activity_type,
            "label": entry.label,
            "times": entry.times or "N/A",
            "days": entry.days or "N/A",
            "flags": entry.confidence_flags,
            "heuristicScore": entry.effective_confidence,
            "llmOriginalScore": entry.confidence,
        }
        for index, entry in enumerate(entries)
    ]
    return f"Review these {len(items)} flagged entries:\n\n{json.dumps(items, indent=2)}"


def _well_formed(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("index"), int)
        and not isinstance(item.get("index"), bool)
        and item.get("decision") in ("approve", "reject")
        and isinstance(item.get("confidence"), (int, float))
        and not isinstance(item.get("confidence"), bool)
    )


def parse_review_response(text: str | None) -> list[ReviewDecision] | None:
    """Decode the model's JSON array; malformed elements are dropped, not fatal."""
    extracted = extract_json_array(text)
    if not extracted.ok:
        return None
    decisions: list[ReviewDecision] = []
    for item in extracted.value:
        if not _well_formed(item):
            continue
        reasoning = item.get("reasoning")
        try:
            decisions.append(
                ReviewDecision(
                    index=item["index"],
                    decision=item["decision"],
                    confidence=item["confidence"],
                    reasoning=reasoning if isinstance(reasoning, str) else "",
                )
            )
        except ValidationError:
            continue
    return decisions


async def review_batch(
    entries: Sequence[PromotionEntry],
    credentials: LLMCredentials,
    log: Any = None,
) -> list[ReviewDecision]:
    log = log or logger
    result = await chat(
        [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(entries)},
        ],
        credentials,
        timeout=settings.LLM_REVIEW_TIMEOUT_SECONDS,
        retries=REVIEW_RETRIES,
        retry_delay=REVIEW_RETRY_DELAY_SECONDS,
        log=log,
    )
    if result is None:
        return []
    decisions = parse_review_response(result.content)
    if not decisions:
        log.warning("llm_review_unparseable", preview=result.content[:200])
        return []
    return decisions


def _merge(entry: PromotionEntry, decision: ReviewDecision | None) -> PromotionEntry:
    if decision is None:
        return entry.model_copy(
            update={
                "llm_decision": None,
                "llm_review_confidence": 0,
                "llm_reasoning": NO_DECISION_REASONING,
            }
        )
    return entry.model_copy(
        update={
            "llm_decision": decision.decision,
            "llm_review_confidence": decision.confidence,
            "llm_reasoning": decision.reasoning,
        }
    )


async def review_all(
    entries: Sequence[PromotionEntry],
    credentials: LLMCredentials,
    log: Any = None,
    *,
    batch_size: int = BATCH_SIZE,
    batch_delay: float = BATCH_DELAY_SECONDS,
) -> ReviewOutcome:
    """
    Review every entry in sequential batches and partition the merged results.

    Every input entry lands in exactly one of ``auto_applied`` or
    ``needs_human_review``; entries the model skipped are counted in ``errors``.
    Batches run one at a time so a shared per-key rate limit is respected.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    log = log or logger

    # (original index, merged entry, auto-apply?)
    merged: list[tuple[int, PromotionEntry, bool]] = []
    errors = 0
    total_batches = (len(entries) + batch_size - 1) // batch_size

    for start in range(0, len(entries), batch_size):
        batch = list(entries[start : start + batch_size])
        log.info(
            "llm_review_batch",
            batch=start // batch_size + 1,
            total_batches=total_batches,
            size=len(batch),
        )
        decisions = await review_batch(batch, credentials, log)

        by_index: dict[int, ReviewDecision] = {}
        for decision in decisions:
            if 0 <= decision.index < len(batch):
                by_index.setdefault(decision.index, decision)

        for offset, entry in enumerate(batch):
            decision = by_index.get(offset)
            if decision is None:
                errors += 1
            auto = decision is not None and decision.confidence >= AUTO_APPLY_THRESHOLD
            merged.append((start + offset, _merge(entry, decision), auto))

        if start + batch_size < len(entries) and batch_delay > 0:
            await asyncio.sleep(batch_delay)

    outcome = ReviewOutcome(errors=errors)
    for _index, entry, auto in sorted(merged, key=lambda item: item[0]):
        if auto:
            outcome.auto_applied.append(entry)
        else:
            outcome.needs_human_review.append(entry)
    log.info(
        "llm_review_complete",
        auto_applied=len(outcome.auto_applied),
        needs_human_review=len(outcome.needs_human_review),
        errors=errors,
    )
    return outcome


def review_all_sync(
    entries: Sequence[PromotionEntry], credentials: LLMCredentials, log: Any = None
) -> ReviewOutcome:
    """Blocking wrapper; the shared HTTP client is closed before its loop ends."""

    async def _run() -> ReviewOutcome:
        try:
            return await review_all(entries, credentials, log)
        finally:
            await close_client()

    return asyncio.run(_run())


__all__ = [
    "AUTO_APPLY_THRESHOLD",
    "BATCH_SIZE",
    "build_user_prompt",
    "parse_review_response",
    "review_all",
    "review_all_sync",
    "review_batch",
]
