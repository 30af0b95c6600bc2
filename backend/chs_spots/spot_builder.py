"""Assemble display spots from validated gold extraction entries."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .confidence import validate_gold_entries
from .contracts import (
    DEFAULT_ACTIVITY_TYPE,
    GoldRecord,
    PromotionEntry,
    Spot,
    SpotBuildResult,
    VenueRecord,
    resolve_promotion_entries,
)
from .settings import settings

PLACEHOLDER_VALUES = frozenset({"", "not specified", "unknown", "n/a"})
FIELD_SEPARATOR = " • "
DESCRIPTION_SEPARATOR = "\n\n---\n\n"
UNKNOWN_VENUE = "Unknown Venue"


@dataclass(slots=True)
class SpotFields:
    promotion_time: str | None = None
    promotion_list: list[str] = field(default_factory=list)
    source_url: str | None = None


def normalize_field(value: object) -> str | None:
    """Map extractor placeholders ("Not specified", "n/a", ...) to None."""
    if not value or not isinstance(value, str):
        return None
    stripped = value.strip()
    if stripped.lower() in PLACEHOLDER_VALUES:
        return None
    return stripped


def has_signal(entry: PromotionEntry) -> bool:
    return bool(
        normalize_field(entry.times) or normalize_field(entry.days) or entry.specials
    )


def _schedule(times: str | None, days: str | None) -> str | None:
    parts = [part for part in (times, days) if part]
    return FIELD_SEPARATOR.join(parts) if parts else None


def format_description(entry: PromotionEntry) -> str | None:
    """
    Render an entry for display: a schedule line, then one line per special.

    A bare time with no days and no specials says nothing the promotion time
    does not already say, so it yields None.
    """
    lines: list[str] = []
    times = entry.times.strip() if entry.times else ""
    days = entry.days.strip() if entry.days else ""
    schedule = _schedule(times, days)
    if schedule:
        lines.append(schedule)
    lines.extend(special.strip() for special in entry.specials if special and special.strip())

    if len(lines) == 1 and times and not days and not entry.specials:
        return None
    if not lines:
        return "Happy Hour details available" if entry.source else "Happy Hour available"
    return "\n".join(lines)


def build_spot_fields(entries: Sequence[PromotionEntry]) -> SpotFields:
    if not entries:
        return SpotFields()

    if len(entries) == 1:
        entry = entries[0]
        return SpotFields(
            promotion_time=_schedule(normalize_field(entry.times), normalize_field(entry.days)),
            promotion_list=list(entry.specials),
            source_url=entry.source or None,
        )

    time_parts: list[str] = []
    specials: list[str] = []
    source_url: str | None = None
    for entry in entries:
        schedule = _schedule(normalize_field(entry.times), normalize_field(entry.days))
        if schedule:
            fragment = f"{entry.label}: {schedule}" if entry.label else schedule
            if fragment not in time_parts:
                time_parts.append(fragment)
        prefix = f"[{entry.label}] " if entry.label else ""
        specials.extend(f"{prefix}{special}" for special in entry.specials)
        if source_url is None and entry.source:
            source_url = entry.source

    return SpotFields(
        promotion_time=", ".join(time_parts) if time_parts else None,
        promotion_list=specials,
        source_url=source_url,
    )


def resolve_photo_url(venue: VenueRecord, public_dir: Path | None = None) -> str | None:
    """Site-relative photos must exist under the public dir; absolute urls pass through."""
    photo_url = venue.photo_url
    if not photo_url:
        return None
    if photo_url.startswith("/"):
        root = public_dir if public_dir is not None else settings.PUBLIC_DIR
        return photo_url if (root / photo_url.lstrip("/")).is_file() else None
    return photo_url


def _spot(
    spot_id: int,
    activity_type: str,
    fields: SpotFields,
    description: str | None,
    gold: GoldRecord,
    venue: VenueRecord,
    photo_url: str | None,
) -> Spot:
    return Spot(
        id=spot_id,
        venue_id=gold.venue_id or venue.id,
        title=gold.venue_name or venue.name or UNKNOWN_VENUE,
        type=activity_type,
        source="automated",
        description=description,
        promotion_time=fields.promotion_time,
        promotion_list=fields.promotion_list,
        source_url=fields.source_url or venue.website or None,
        area=venue.area or "Unknown",
        lat=venue.lat,
        lng=venue.lng,
        photo_url=photo_url,
        last_update_date=gold.processed_at,
    )


def create_spots_from_gold(
    gold: GoldRecord,
    venue: VenueRecord,
    start_id: int,
    *,
    public_dir: Path | None = None,
) -> SpotBuildResult:
    """
    Build one spot per activity type found in a gold record.

    Ids are allocated sequentially from ``start_id`` in first-seen type order.
    Entries that fail validation come back in ``rejected``; flagged entries
    are still displayed and also come back in ``flagged`` for review.
    """
    if start_id < 0:
        raise ValueError(f"start_id must be non-negative, got {start_id}")

    entries = [entry for entry in resolve_promotion_entries(gold.promotions) if has_signal(entry)]
    if not entries:
        return SpotBuildResult()

    validation = validate_gold_entries(entries)
    result = SpotBuildResult(flagged=validation.flagged, rejected=validation.rejected)
    if not validation.kept:
        return result

    grouped: dict[str, list[PromotionEntry]] = {}
    for entry in validation.kept:
        grouped.setdefault(entry.activity_type or DEFAULT_ACTIVITY_TYPE, []).append(entry)

    photo_url = resolve_photo_url(venue, public_dir)
    next_id = start_id
    for activity_type, group in grouped.items():
        fields = build_spot_fields(group)
        if not fields.promotion_time and not fields.promotion_list:
            continue

        if len(group) == 1:
            description = format_description(group[0])
        else:
            rendered = [text for text in (format_description(entry) for entry in group) if text]
            description = DESCRIPTION_SEPARATOR.join(rendered) if rendered else None

        result.spots.append(
            _spot(next_id, activity_type, fields, description, gold, venue, photo_url)
        )
        next_id += 1

    return result


def build_spot_from_entry(
    entry: PromotionEntry,
    gold: GoldRecord,
    venue: VenueRecord,
    *,
    public_dir: Path | None = None,
) -> Spot:
    """One spot for a single entry a reviewer approved; the caller assigns the id."""
    return _spot(
        0,
        entry.activity_type or DEFAULT_ACTIVITY_TYPE,
        build_spot_fields([entry]),
        format_description(entry),
        gold,
        venue,
        resolve_photo_url(venue, public_dir),
    )


__all__ = [
    "build_spot_fields",
    "build_spot_from_entry",
    "create_spots_from_gold",
    "format_description",
    "normalize_field",
    "resolve_photo_url",
]
