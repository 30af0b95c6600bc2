"""
SQL persistence for the spots pipeline.

``PipelineStore`` owns one async engine and exposes a repository per table.
The venue table is read-only from the pipeline's point of view; the spot table
is rewritten per run through ``spots.replace_automated`` (delete then insert
inside one transaction, manually overridden rows exempt).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .contracts import ConfidenceReview, GoldRecord, Spot, VenueRecord
from .db.core import build_engine, build_sessionmaker, init_db
from .db.models import ConfidenceReviewRow, GoldExtractionRow, SpotRow, VenueRow
from .logging_config import get_logger
from .settings import settings

logger = get_logger(__name__)

_SPOT_COLUMNS = (
    "venue_id",
    "title",
    "type",
    "source",
    "status",
    "description",
    "promotion_time",
    "promotion_list",
    "source_url",
    "manual_override",
    "photo_url",
    "last_update_date",
    "lat",
    "lng",
    "area",
)


def _venue_from_row(row: VenueRow) -> VenueRecord:
    return VenueRecord(
        id=row.id,
        name=row.name,
        lat=row.lat,
        lng=row.lng,
        area=row.area,
        address=row.address,
        website=row.website,
        photo_url=row.photo_url,
    )


def _spot_from_row(row: SpotRow) -> Spot:
    payload = {column: getattr(row, column) for column in _SPOT_COLUMNS}
    payload["promotion_list"] = list(row.promotion_list or [])
    payload["manual_override"] = bool(row.manual_override)
    return Spot(id=row.id, **payload)


def _spot_to_row(spot: Spot) -> SpotRow:
    payload: dict[str, Any] = {column: getattr(spot, column) for column in _SPOT_COLUMNS}
    # 0 and None both mean "let the database allocate"
    return SpotRow(id=spot.id or None, **payload)


def _gold_from_row(row: GoldExtractionRow) -> GoldRecord:
    return GoldRecord(
        venue_id=row.venue_id,
        venue_name=row.venue_name,
        promotions=dict(row.promotions or {}),
        source_hash=row.source_hash,
        normalized_source_hash=row.normalized_source_hash,
        processed_at=row.processed_at,
    )


def _review_from_row(row: ConfidenceReviewRow) -> ConfidenceReview:
    return ConfidenceReview(
        venue_id=row.venue_id,
        activity_type=row.activity_type,
        decision=row.decision,
        reason=row.reason,
        reviewed_source_hash=row.reviewed_source_hash,
        effective_confidence=row.effective_confidence,
        flags=list(row.flags or []),
        source=row.source,
        llm_confidence=row.llm_confidence,
    )


class _Repository:
    def __init__(self, sessions: async_sessionmaker) -> None:
        self._sessions = sessions

    @asynccontextmanager
    async def session(self) -> AsyncSession:
        async with self._sessions() as session:
            yield session


class VenueRepository(_Repository):
    async def get_all(self) -> list[VenueRecord]:
        async with self.session() as session:
            result = await session.execute(select(VenueRow).order_by(VenueRow.id))
            return [_venue_from_row(row) for row in result.scalars().all()]

    async def get_by_id(self, venue_id: str) -> VenueRecord | None:
        async with self.session() as session:
            row = await session.get(VenueRow, venue_id)
            return _venue_from_row(row) if row else None

    async def query_bbox(
        self, lat: float, lng: float, radius: float, limit: int
    ) -> list[VenueRecord]:
        """Venues inside the box, nearest first (venue id breaks distance ties)."""
        sq_distance = (VenueRow.lat - lat) * (VenueRow.lat - lat) + (VenueRow.lng - lng) * (
            VenueRow.lng - lng
        )
        stmt = (
            select(VenueRow)
            .where(
                VenueRow.lat.between(lat - radius, lat + radius),
                VenueRow.lng.between(lng - radius, lng + radius),
            )
            .order_by(sq_distance, VenueRow.id)
            .limit(limit)
        )
        async with self.session() as session:
            result = await session.execute(stmt)
            return [_venue_from_row(row) for row in result.scalars().all()]

    async def upsert_many(self, venues: Iterable[VenueRecord]) -> int:
        count = 0
        async with self.session() as session:
            for venue in venues:
                await session.merge(
                    VenueRow(
                        id=venue.id,
                        name=venue.name,
                        address=venue.address,
                        lat=venue.lat,
                        lng=venue.lng,
                        area=venue.area,
                        website=venue.website,
                        photo_url=venue.photo_url,
                    )
                )
                count += 1
            await session.commit()
        return count


class SpotRepository(_Repository):
    async def get_all(self) -> list[Spot]:
        async with self.session() as session:
            result = await session.execute(select(SpotRow).order_by(SpotRow.id))
            return [_spot_from_row(row) for row in result.scalars().all()]

    async def max_id(self) -> int:
        async with self.session() as session:
            value = await session.scalar(select(func.max(SpotRow.id)))
            return int(value or 0)

    async def insert(self, spot: Spot) -> Spot:
        async with self.session() as session:
            row = _spot_to_row(spot)
            session.add(row)
            await session.commit()
            return _spot_from_row(row)

    async def update(self, spot_id: int, **fields: Any) -> Spot | None:
        unknown = set(fields) - set(_SPOT_COLUMNS)
        if unknown:
            raise ValueError(f"unknown spot fields: {sorted(unknown)}")
        async with self.session() as session:
            row = await session.get(SpotRow, spot_id)
            if row is None:
                return None
            for key, value in fields.items():
                setattr(row, key, value)
            await session.commit()
            return _spot_from_row(row)

    async def delete(self, spot_id: int) -> bool:
        async with self.session() as session:
            result = await session.execute(delete(SpotRow).where(SpotRow.id == spot_id))
            await session.commit()
            return bool(result.rowcount)

    @staticmethod
    def _automated(types: Sequence[str]):
        return delete(SpotRow).where(
            SpotRow.source == "automated",
            SpotRow.manual_override.is_(False),
            SpotRow.type.in_(list(types)),
        )

    async def delete_automated(self, types: Sequence[str]) -> int:
        async with self.session() as session:
            result = await session.execute(self._automated(types))
            await session.commit()
            return int(result.rowcount or 0)

    async def replace_automated(
        self, types: Sequence[str], spots: Iterable[Spot]
    ) -> tuple[int, int]:
        """Delete automated, non-overridden spots of ``types`` and insert ``spots`` atomically."""
        async with self.session() as session:
            async with session.begin():
                result = await session.execute(self._automated(types))
                deleted = int(result.rowcount or 0)
                rows = [_spot_to_row(spot) for spot in spots]
                session.add_all(rows)
        logger.info("spots_replaced", types=list(types), deleted=deleted, inserted=len(rows))
        return deleted, len(rows)


class GoldRepository(_Repository):
    async def upsert(self, gold: GoldRecord) -> None:
        if not gold.venue_id:
            raise ValueError("gold record requires a venue_id")
        async with self.session() as session:
            await session.merge(
                GoldExtractionRow(
                    venue_id=gold.venue_id,
                    venue_name=gold.venue_name,
                    promotions=gold.promotions,
                    source_hash=gold.source_hash,
                    normalized_source_hash=gold.normalized_source_hash,
                    processed_at=gold.processed_at,
                )
            )
            await session.commit()

    async def get_all(self) -> list[GoldRecord]:
        async with self.session() as session:
            result = await session.execute(
                select(GoldExtractionRow).order_by(GoldExtractionRow.venue_id)
            )
            return [_gold_from_row(row) for row in result.scalars().all()]


class ReviewRepository(_Repository):
    async def upsert(self, review: ConfidenceReview) -> None:
        async with self.session() as session:
            row = await session.scalar(
                select(ConfidenceReviewRow).where(
                    ConfidenceReviewRow.venue_id == review.venue_id,
                    ConfidenceReviewRow.activity_type == review.activity_type,
                )
            )
            if row is None:
                row = ConfidenceReviewRow(
                    venue_id=review.venue_id, activity_type=review.activity_type
                )
                session.add(row)
            row.decision = review.decision
            row.reason = review.reason
            row.reviewed_source_hash = review.reviewed_source_hash
            row.effective_confidence = review.effective_confidence
            row.flags = list(review.flags)
            row.source = review.source
            row.llm_confidence = review.llm_confidence
            await session.commit()

    async def get_decision_map(self) -> dict[str, ConfidenceReview]:
        """Latest decision per ``venue_id::activity_type``."""
        async with self.session() as session:
            result = await session.execute(select(ConfidenceReviewRow))
            reviews = [_review_from_row(row) for row in result.scalars().all()]
        return {review.key: review for review in reviews}


class PipelineStore:
    def __init__(self, url: str | None = None) -> None:
        self.url = url or settings.database_url
        self.engine = build_engine(self.url)
        sessions = build_sessionmaker(self.engine)
        self.venues = VenueRepository(sessions)
        self.spots = SpotRepository(sessions)
        self.gold = GoldRepository(sessions)
        self.reviews = ReviewRepository(sessions)

    async def init(self) -> None:
        await init_db(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()


__all__ = [
    "GoldRepository",
    "PipelineStore",
    "ReviewRepository",
    "SpotRepository",
    "VenueRepository",
]
