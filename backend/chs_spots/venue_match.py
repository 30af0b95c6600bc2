"""Link a free-text spot (title + coordinates) to a canonical venue."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from typing import Any, Protocol

from .contracts import VenueMatch, VenueRecord
from .logging_config import get_logger

logger = get_logger(__name__)

# ~550m at Charleston's latitude
SEARCH_RADIUS_DEGREES = 0.005
MAX_CANDIDATES = 5
MAX_DISTANCE_METERS = 50
MIN_NAME_SCORE = 0.5
METERS_PER_DEGREE = 111_000

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_STOPWORDS_RE = re.compile(r"\b(the|a|an|at|in|of|and|or|on)\b")
_WHITESPACE_RE = re.compile(r"\s+")


class VenueSource(Protocol):
    async def query_bbox(
        self, lat: float, lng: float, radius: float, limit: int
    ) -> list[VenueRecord]: ...


def normalize_for_match(name: str | None) -> str:
    if not name:
        return ""
    text = _NON_ALNUM_RE.sub(" ", name.lower())
    text = _STOPWORDS_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def name_score(a: str | None, b: str | None) -> float:
    """Similarity in [0, 1]: exact 1.0, containment 0.9, else token overlap / smaller set."""
    na = normalize_for_match(a)
    nb = normalize_for_match(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    if na in nb or nb in na:
        return 0.9

    tokens_a = {token for token in na.split(" ") if len(token) > 1}
    tokens_b = {token for token in nb.split(" ") if len(token) > 1}
    if not tokens_a or not tokens_b:
        return 0.0
    overlap = len(tokens_a & tokens_b)
    return overlap / min(len(tokens_a), len(tokens_b))


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> int:
    """Flat-earth approximation; accurate enough inside the 50m acceptance window."""
    dlat = lat1 - lat2
    dlng = lng1 - lng2
    return round(math.sqrt(dlat * dlat + dlng * dlng) * METERS_PER_DEGREE)


def _squared_distance(venue: VenueRecord, lat: float, lng: float) -> float:
    return (venue.lat - lat) ** 2 + (venue.lng - lng) ** 2


def pick_best_match(
    candidates: Iterable[VenueRecord], title: str, lat: float, lng: float
) -> VenueMatch | None:
    """
    Scan candidates nearest first (venue id breaks distance ties) and keep the
    highest name score. A later candidate only wins with a strictly higher
    score, so equal scores resolve to the nearer / lower-id venue.
    """
    located = [venue for venue in candidates if venue.lat is not None and venue.lng is not None]
    located.sort(key=lambda venue: (_squared_distance(venue, lat, lng), venue.id))

    best: VenueMatch | None = None
    for venue in located:
        dist = distance_meters(lat, lng, venue.lat, venue.lng)
        if dist > MAX_DISTANCE_METERS:
            continue
        score = name_score(title, venue.name)
        if score >= MIN_NAME_SCORE and (best is None or score > best.score):
            best = VenueMatch(
                venue_id=venue.id,
                venue_name=venue.name,
                distance_meters=dist,
                score=score,
            )
    return best


async def find_matching_venue(
    venues: VenueSource,
    title: str | None,
    lat: float | None,
    lng: float | None,
    log: Any = None,
) -> VenueMatch | None:
    if not title or lat is None or lng is None:
        return None
    log = log or logger

    candidates = await venues.query_bbox(lat, lng, SEARCH_RADIUS_DEGREES, MAX_CANDIDATES)
    match = pick_best_match(candidates, title, lat, lng)
    if match is None:
        log.debug("venue_match_none", title=title, candidates=len(candidates))
    else:
        log.debug(
            "venue_match_found",
            title=title,
            venue_id=match.venue_id,
            distance_meters=match.distance_meters,
            score=match.score,
        )
    return match


__all__ = [
    "distance_meters",
    "find_matching_venue",
    "name_score",
    "normalize_for_match",
    "pick_best_match",
]
