"""Domain models for PropScout.

This module defines the SQLAlchemy ORM models for property sessions, their
per-stage artifacts, user preferences, and usage accounting.
"""

import enum
import hashlib
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def url_hash(url: str) -> str:
    """sha256 hex digest of a listing URL, used as its unique lookup key."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


class UTCDateTime(TypeDecorator):
    """DateTime stored as naive UTC and loaded as timezone-aware UTC.

    Naive values passed in are taken to be UTC already.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# =============================================================================
# ENUMS
# =============================================================================


class SessionStatus(str, enum.Enum):
    """Property session lifecycle states."""

    CREATED = "CREATED"
    FETCHED_HTML = "FETCHED_HTML"
    EXTRACTED_BASE = "EXTRACTED_BASE"
    AI_PARSED = "AI_PARSED"
    NEEDS_CONFIRMATION = "NEEDS_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    STATS_RUNNING = "STATS_RUNNING"
    STATS_NEEDS_CONFIRMATION = "STATS_NEEDS_CONFIRMATION"
    STATS_READY = "STATS_READY"
    STATS_FAILED = "STATS_FAILED"
    EVAL_RUNNING = "EVAL_RUNNING"
    AI_READY = "AI_READY"
    EVAL_FAILED = "EVAL_FAILED"
    VIDEO_REQUESTED = "VIDEO_REQUESTED"
    VIDEO_READY = "VIDEO_READY"


class UsageAction(str, enum.Enum):
    """Metered actions."""

    EXTRACT = "extract"
    STATS = "stats"
    EVALUATE = "evaluate"
    VIDEO = "video"


class LedgerReason(str, enum.Enum):
    """Why a ledger row was written."""

    FREE_GRANT = "free_grant"
    PURCHASE = "purchase"
    USAGE = "usage"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    REFUND = "refund"


class LedgerDirection(str, enum.Enum):
    """Ledger row direction."""

    DEBIT = "debit"
    CREDIT = "credit"


SESSION_STATUS_VALUES = [s.value for s in SessionStatus]
USAGE_ACTION_VALUES = [a.value for a in UsageAction]


# =============================================================================
# SESSIONS
# =============================================================================


class PropertySession(Base):
    """One tracked listing reference for one user."""

    __tablename__ = "property_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)  # UUID
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rightmove_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    # Full URLs are too long for a composite unique index
    rightmove_url_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    rightmove_listing_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(
        Enum(*SESSION_STATUS_VALUES, name="session_status_enum"),
        nullable=False,
        default=SessionStatus.CREATED.value,
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    last_extracted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "rightmove_listing_id", name="uq_session_user_listing"),
        UniqueConstraint("user_id", "rightmove_url_hash", name="uq_session_user_url"),
        Index("idx_session_user_created", "user_id", "created_at"),
    )

    # Relationships
    facts_raw: Mapped[Optional["ListingFactsRaw"]] = relationship(
        back_populates="session", uselist=False
    )
    facts_confirmed: Mapped[Optional["ListingFactsConfirmed"]] = relationship(
        back_populates="session", uselist=False
    )
    stats_raw: Mapped[Optional["ListingStatsRaw"]] = relationship(
        back_populates="session", uselist=False
    )
    stats_confirmed: Mapped[Optional["ListingStatsConfirmed"]] = relationship(
        back_populates="session", uselist=False
    )
    evaluation: Mapped[Optional["ListingEvaluationRaw"]] = relationship(
        back_populates="session", uselist=False
    )


# =============================================================================
# ARTIFACTS
# =============================================================================


class ListingFactsRaw(Base):
    """Facts extracted by the AI model, before user confirmation."""

    __tablename__ = "listing_facts_raw"

    property_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), primary_key=True
    )
    price: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    property_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tenure: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lease_years_remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    postcode: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estate_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ai_confidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ai_warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    extracted_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    session: Mapped["PropertySession"] = relationship(back_populates="facts_raw")


class ListingFactsConfirmed(Base):
    """Facts accepted by the user; input to the stats stage."""

    __tablename__ = "listing_facts_confirmed"

    property_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), primary_key=True
    )
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    bedrooms: Mapped[int] = mapped_column(Integer, nullable=False)
    bathrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    property_type: Mapped[str] = mapped_column(String(64), nullable=False)
    tenure: Mapped[str] = mapped_column(String(64), nullable=False)
    lease_years_remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    postcode: Mapped[str] = mapped_column(String(16), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    estate_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    session: Mapped["PropertySession"] = relationship(back_populates="facts_confirmed")


class ListingStatsRaw(Base):
    """All statistics produced by the AI model, required and optional."""

    __tablename__ = "listing_stats_raw"

    property_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), primary_key=True
    )
    stats_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    computed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    commute_total_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    commute_walk_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    commute_mode: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    commute_confidence: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    commute_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    nearest_station_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    nearest_station_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    supermarket_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    supermarket_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gym_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gym_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    school_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    school_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    religious_building_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    religious_building_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    green_space_distance_m: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    green_space_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    safety_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cleanliness_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    transport_convenience_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    service_charge_estimate_annual: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ground_rent_estimate_annual: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    running_costs_confidence: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    running_costs_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    required_confidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    required_source: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    optional_confidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    optional_source: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    fields_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    session: Mapped["PropertySession"] = relationship(back_populates="stats_raw")


class ListingStatsConfirmed(Base):
    """The required statistics, confirmed by the gate or by the user."""

    __tablename__ = "listing_stats_confirmed"

    property_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), primary_key=True
    )
    commute_total_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    commute_walk_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    commute_mode: Mapped[str] = mapped_column(String(32), nullable=False)
    nearest_station_distance_m: Mapped[int] = mapped_column(Integer, nullable=False)
    nearest_station_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supermarket_distance_m: Mapped[int] = mapped_column(Integer, nullable=False)
    supermarket_name: Mapped[str] = mapped_column(String(255), nullable=False)
    green_space_distance_m: Mapped[int] = mapped_column(Integer, nullable=False)
    green_space_name: Mapped[str] = mapped_column(String(255), nullable=False)
    safety_score: Mapped[int] = mapped_column(Integer, nullable=False)

    required_confidence: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    required_source: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_by_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    session: Mapped["PropertySession"] = relationship(back_populates="stats_confirmed")


class ListingEvaluationRaw(Base):
    """AI evaluation of a listing against the user's preferences."""

    __tablename__ = "listing_evaluation_raw"

    property_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), primary_key=True
    )
    rank_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    overall_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    executive_summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    estate_agent_snippet: Mapped[str] = mapped_column(Text, nullable=False, default="")
    per_preference: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    assumptions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    model_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    evaluated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    session: Mapped["PropertySession"] = relationship(back_populates="evaluation")


# =============================================================================
# PREFERENCES
# =============================================================================


class Preferences(Base):
    """Per-user home search preferences."""

    __tablename__ = "preferences"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    budget_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    budget_flex: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_budget: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    min_bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_bathrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    property_type_rank: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    property_type_reject_below_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_property_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    tenure_rank: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    tenure_reject_below_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_lease_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_tenure: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    work_postcode: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    transport_mode: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    max_commute_minutes_total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_walk_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    car_owner: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    bike_owner: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    transport_convenience_weight: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_commute: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    religion_required: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    school_priority: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    gym_priority: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    has_children: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    quiet_area_priority: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    green_space_priority: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    safety_weight: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cleanliness_weight: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_lifestyle: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    max_service_charge: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_ground_rent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_running_costs: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    parking_required: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    parking_type_rank: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    parking_reject_below_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    storage_required: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    notes_parking: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    condition_tolerance: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    notes_condition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    affordability_weight: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


# =============================================================================
# USAGE ACCOUNTING
# =============================================================================


class UsageCounters(Base):
    """Per-user (used, limit) pairs for each metered action."""

    __tablename__ = "usage_counters"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    extract_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extract_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluate_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


class UsagePurchase(Base):
    """A purchase of extra credits."""

    __tablename__ = "usage_purchases"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    extract_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stats_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    evaluate_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    provider: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount_pence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (Index("idx_purchase_user_created", "user_id", "created_at"),)


class UsageLedgerEntry(Base):
    """Append-only quota accounting log."""

    __tablename__ = "usage_ledger"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(
        Enum(*USAGE_ACTION_VALUES, name="usage_action_enum"), nullable=False
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(
        Enum(
            "free_grant", "purchase", "usage", "admin_adjustment", "refund",
            name="ledger_reason_enum",
        ),
        nullable=False,
    )
    direction: Mapped[Optional[str]] = mapped_column(
        Enum("debit", "credit", name="ledger_direction_enum"), nullable=True
    )
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    related_purchase_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("usage_purchases.id"), nullable=True
    )
    related_session_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("property_sessions.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_ledger_user_created", "user_id", "created_at"),
        Index("idx_ledger_user_action", "user_id", "action_type", "reason"),
    )


def row_to_dict(row: Base, exclude: tuple[str, ...] = ()) -> dict:
    """Column values of a mapped row, keyed by attribute name."""
    return {
        attr.key: getattr(row, attr.key)
        for attr in inspect(type(row)).column_attrs
        if attr.key not in exclude
    }
