"""
Post-extraction confidence validation for promotion entries.

Each rule in ``RULES`` inspects one entry and, when it fires, returns a
human-readable flag and lowers the score by its penalty. Scores are clamped to
0..100 and classified keep / flag / reject. Pure functions, no I/O.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .contracts import (
    DEFAULT_ACTIVITY_TYPE,
    PromotionEntry,
    ValidationAction,
    ValidationPartition,
    ValidationResult,
)

BASE_CONFIDENCE = 75.0
EFFECTIVE_THRESHOLD = 50
FLAG_THRESHOLD = 70
EARLIEST_HAPPY_HOUR = 11
LONG_SPAN_HOURS = 8

ALCOHOL_KEYWORDS = re.compile(
    r"\b(beer|wine|cocktail|drink|pint|well|margarita|mimosa|sangria|spritz|mule|martini|"
    r"bourbon|whiskey|vodka|tequila|rum|gin|draft|tap|pour|seltzer|highball|negroni|aperol|"
    r"bellini|prosecco|champagne|cider|ale|lager|ipa|stout|pilsner)s?\b",
    re.IGNORECASE,
)
NON_HH_LABEL_KEYWORDS = re.compile(
    r"\b(market|mercato|cafe|café|coffee|bakery|breakfast|pastry|pastries|deli|"
    r"lunch combo|lunch special)\b",
    re.IGNORECASE,
)
VAGUE_SPECIAL = re.compile(r"^(weekly|daily|rotating)\s+(drink|food|menu)\s+special$", re.IGNORECASE)
PRICE = re.compile(r"\$\d")
CLOSE = re.compile(r"close", re.IGNORECASE)
BRUNCH = re.compile(r"brunch", re.IGNORECASE)
BRUNCH_DRINKS = re.compile(r"\b(mimosa|bloody mary|bellini|benedic)", re.IGNORECASE)

_START_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.IGNORECASE)
_END_RE = re.compile(r"[-–—to]+\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)", re.IGNORECASE)


def _to_24h(hour: int, meridiem: str) -> int:
    meridiem = meridiem.lower()
    if meridiem == "pm" and hour < 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def parse_start_hour(times: str | None) -> int | None:
    if not times:
        return None
    match = _START_RE.search(times)
    if not match:
        return None
    return _to_24h(int(match.group(1)), match.group(3))


def parse_end_hour(times: str | None) -> int | None:
    if not times:
        return None
    match = _END_RE.search(times)
    if not match:
        return None
    return _to_24h(int(match.group(1)), match.group(3))


def time_span_hours(times: str | None) -> int | None:
    start = parse_start_hour(times)
    end = parse_end_hour(times)
    if start is None or end is None:
        return None
    span = end - start
    if span < 0:
        span += 24
    return span


def _joined(*parts: str | None) -> str:
    return " ".join(part for part in parts if part)


# --- rule checks: return a flag when the rule fires ---
def _starts_too_early(entry: PromotionEntry) -> str | None:
    start = parse_start_hour(entry.times)
    if start is not None and start < EARLIEST_HAPPY_HOUR:
        return f"starts-before-11am ({entry.times})"
    return None


def _no_alcohol(entry: PromotionEntry) -> str | None:
    text = f"{entry.label or ''} {' '.join(entry.specials)}"
    if ALCOHOL_KEYWORDS.search(text):
        return None
    return "no-alcohol-keywords"


def _non_happy_hour_label(entry: PromotionEntry) -> str | None:
    label = entry.label or ""
    if NON_HH_LABEL_KEYWORDS.search(label):
        return f'non-hh-label: "{label}"'
    return None


def _long_span(entry: PromotionEntry) -> str | None:
    span = time_span_hours(entry.times)
    if span is not None and span >= LONG_SPAN_HOURS:
        return f"long-span: {span}h"
    return None


def _bar_hours_only(entry: PromotionEntry) -> str | None:
    if entry.times and CLOSE.search(entry.times) and not entry.specials:
        return "bar-hours-only (no specials)"
    return None


def _vague_specials(entry: PromotionEntry) -> str | None:
    if not entry.specials:
        return None
    has_price = any(PRICE.search(special) for special in entry.specials)
    all_vague = all(VAGUE_SPECIAL.match(special.strip()) for special in entry.specials)
    if all_vague and not has_price:
        return "vague-specials-no-prices"
    return None


def _no_brunch_signal(entry: PromotionEntry) -> str | None:
    text = _joined(entry.label, " ".join(entry.specials), entry.days)
    if BRUNCH.search(text) or BRUNCH_DRINKS.search(text):
        return None
    return "no-brunch-keywords"


@dataclass(frozen=True, slots=True)
class ConfidenceRule:
    code: str
    activity_type: str
    penalty: int
    check: Callable[[PromotionEntry], str | None]


RULES: tuple[ConfidenceRule, ...] = (
    ConfidenceRule("starts-early", DEFAULT_ACTIVITY_TYPE, 40, _starts_too_early),
    ConfidenceRule("no-alcohol", DEFAULT_ACTIVITY_TYPE, 20, _no_alcohol),
    ConfidenceRule("non-hh-label", DEFAULT_ACTIVITY_TYPE, 30, _non_happy_hour_label),
    ConfidenceRule("long-span", DEFAULT_ACTIVITY_TYPE, 15, _long_span),
    ConfidenceRule("bar-hours-only", DEFAULT_ACTIVITY_TYPE, 25, _bar_hours_only),
    ConfidenceRule("vague-specials", DEFAULT_ACTIVITY_TYPE, 15, _vague_specials),
    ConfidenceRule("no-brunch-signal", "Brunch", 10, _no_brunch_signal),
)


def classify(score: float) -> ValidationAction:
    if score < EFFECTIVE_THRESHOLD:
        return "reject"
    if score < FLAG_THRESHOLD:
        return "flag"
    return "keep"


def validate_entry(
    entry: PromotionEntry, rules: Iterable[ConfidenceRule] = RULES
) -> ValidationResult:
    score = entry.confidence if entry.confidence is not None else BASE_CONFIDENCE
    flags: list[str] = []
    for rule in rules:
        if rule.activity_type != entry.activity_type:
            continue
        flag = rule.check(entry)
        if flag:
            flags.append(flag)
            score -= rule.penalty

    score = max(0.0, min(100.0, score))
    return ValidationResult(confidence=score, flags=flags, action=classify(score))


def validate_gold_entries(entries: Iterable[PromotionEntry]) -> ValidationPartition:
    """
    Validate every entry and partition the enriched copies.

    Flagged entries stay displayed while awaiting review, so they are placed in
    both ``kept`` and ``flagged``; rejected entries only land in ``rejected``.
    """
    partition = ValidationPartition()
    for entry in entries:
        result = validate_entry(entry)
        enriched = entry.model_copy(
            update={
                "effective_confidence": result.confidence,
                "confidence_flags": result.flags,
            }
        )
        if result.action == "reject":
            partition.rejected.append(enriched)
        elif result.action == "flag":
            partition.flagged.append(enriched)
            partition.kept.append(enriched)
        else:
            partition.kept.append(enriched)
    return partition


__all__ = [
    "EFFECTIVE_THRESHOLD",
    "FLAG_THRESHOLD",
    "RULES",
    "ConfidenceRule",
    "classify",
    "parse_end_hour",
    "parse_start_hour",
    "time_span_hours",
    "validate_entry",
    "validate_gold_entries",
]
