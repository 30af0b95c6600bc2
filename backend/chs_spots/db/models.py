from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    false,
    Text,
    UniqueConstraint,
    func,
    text,
)

from .core import Base


class VenueRow(Base):
    __tablename__ = "venues"

    id = Column(String(128), primary_key=True)
    name = Column(String(255), nullable=False)
    address = Column(String(512), nullable=True)
    lat = Column(Float, nullable=True, index=True)
    lng = Column(Float, nullable=True, index=True)
    area = Column(String(128), nullable=True)
    website = Column(String(1024), nullable=True)
    photo_url = Column(String(1024), nullable=True)


class SpotRow(Base):
    __tablename__ = "spots"
    __table_args__ = (
        CheckConstraint("source IN ('automated', 'manual')", name="ck_spot_source"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(128), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    type = Column(String(64), nullable=False, server_default=text("'Happy Hour'"))
    source = Column(String(16), nullable=False, server_default=text("'automated'"))
    status = Column(String(20), nullable=False, server_default=text("'approved'"))
    description = Column(Text, nullable=True)
    promotion_time = Column(String(512), nullable=True)
    promotion_list = Column(JSON, nullable=False, default=list, server_default=text("'[]'"))
    source_url = Column(String(1024), nullable=True)
    manual_override = Column(Boolean, nullable=False, default=False, server_default=false())
    photo_url = Column(String(1024), nullable=True)
    last_update_date = Column(String(64), nullable=True)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    area = Column(String(128), nullable=False, server_default=text("'Unknown'"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class GoldExtractionRow(Base):
    __tablename__ = "gold_extractions"

    venue_id = Column(String(128), primary_key=True)
    venue_name = Column(String(255), nullable=True)
    promotions = Column(JSON, nullable=False, default=dict, server_default=text("'{}'"))
    source_hash = Column(String(64), nullable=True)
    normalized_source_hash = Column(String(64), nullable=True)
    processed_at = Column(String(64), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class ConfidenceReviewRow(Base):
    __tablename__ = "confidence_reviews"
    __table_args__ = (
        UniqueConstraint("venue_id", "activity_type", name="uq_review_venue_type"),
        CheckConstraint("decision IN ('approved', 'rejected')", name="ck_review_decision"),
        CheckConstraint("source IN ('llm', 'human')", name="ck_review_source"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    venue_id = Column(String(128), nullable=False, index=True)
    activity_type = Column(String(64), nullable=False)
    decision = Column(String(16), nullable=False)
    reason = Column(Text, nullable=True)
    reviewed_source_hash = Column(String(64), nullable=True)
    effective_confidence = Column(Float, nullable=True)
    flags = Column(JSON, nullable=True)
    source = Column(String(16), nullable=False, server_default=text("'human'"))
    llm_confidence = Column(Float, nullable=True)
    reviewed_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
