"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates all tables for PropScout:
- property_sessions
- listing_facts_raw
- listing_facts_confirmed
- listing_stats_raw
- listing_stats_confirmed
- listing_evaluation_raw
- preferences
- usage_counters
- usage_purchases
- usage_ledger
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SESSION_STATUSES = (
    "CREATED",
    "FETCHED_HTML",
    "EXTRACTED_BASE",
    "AI_PARSED",
    "NEEDS_CONFIRMATION",
    "CONFIRMED",
    "STATS_RUNNING",
    "STATS_NEEDS_CONFIRMATION",
    "STATS_READY",
    "STATS_FAILED",
    "EVAL_RUNNING",
    "AI_READY",
    "EVAL_FAILED",
    "VIDEO_REQUESTED",
    "VIDEO_READY",
)


def _session_pk() -> sa.Column:
    return sa.Column("property_session_id", sa.String(36), primary_key=True)


def _session_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["property_session_id"], ["property_sessions.id"], name=f"fk_{table}_session"
    )


def upgrade() -> None:
    # Property sessions table
    op.create_table(
        "property_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("rightmove_url", sa.String(1024), nullable=False),
        sa.Column("rightmove_url_hash", sa.String(64), nullable=False),
        sa.Column("rightmove_listing_id", sa.String(32), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*SESSION_STATUSES, name="session_status_enum"),
            nullable=False,
            server_default="CREATED",
        ),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column("last_extracted_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint(
            "user_id", "rightmove_listing_id", name="uq_session_user_listing"
        ),
        sa.UniqueConstraint(
            "user_id", "rightmove_url_hash", name="uq_session_user_url"
        ),
    )
    op.create_index(
        "idx_session_user_created", "property_sessions", ["user_id", "created_at"]
    )

    # Extracted facts
    op.create_table(
        "listing_facts_raw",
        _session_pk(),
        sa.Column("price", sa.Integer, nullable=True),
        sa.Column("bedrooms", sa.Integer, nullable=True),
        sa.Column("bathrooms", sa.Integer, nullable=True),
        sa.Column("property_type", sa.String(64), nullable=True),
        sa.Column("tenure", sa.String(64), nullable=True),
        sa.Column("lease_years_remaining", sa.Integer, nullable=True),
        sa.Column("postcode", sa.String(16), nullable=True),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("estate_agent", sa.String(255), nullable=True),
        sa.Column("ai_confidence", sa.JSON, nullable=True),
        sa.Column("ai_warnings", sa.JSON, nullable=True),
        sa.Column(
            "extracted_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        _session_fk("facts_raw"),
    )

    # Confirmed facts
    op.create_table(
        "listing_facts_confirmed",
        _session_pk(),
        sa.Column("price", sa.Integer, nullable=False),
        sa.Column("bedrooms", sa.Integer, nullable=False),
        sa.Column("bathrooms", sa.Integer, nullable=True),
        sa.Column("property_type", sa.String(64), nullable=False),
        sa.Column("tenure", sa.String(64), nullable=False),
        sa.Column("lease_years_remaining", sa.Integer, nullable=True),
        sa.Column("postcode", sa.String(16), nullable=False),
        sa.Column("address", sa.String(512), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("estate_agent", sa.String(255), nullable=True),
        sa.Column(
            "confirmed_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        _session_fk("facts_confirmed"),
    )

    # Raw statistics
    op.create_table(
        "listing_stats_raw",
        _session_pk(),
        sa.Column("stats_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "computed_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column("commute_total_minutes", sa.Integer, nullable=True),
        sa.Column("commute_walk_minutes", sa.Integer, nullable=True),
        sa.Column("commute_mode", sa.String(32), nullable=True),
        sa.Column("commute_confidence", sa.String(8), nullable=True),
        sa.Column("commute_notes", sa.Text, nullable=True),
        sa.Column("nearest_station_distance_m", sa.Integer, nullable=True),
        sa.Column("nearest_station_name", sa.String(255), nullable=True),
        sa.Column("supermarket_distance_m", sa.Integer, nullable=True),
        sa.Column("supermarket_name", sa.String(255), nullable=True),
        sa.Column("gym_distance_m", sa.Integer, nullable=True),
        sa.Column("gym_name", sa.String(255), nullable=True),
        sa.Column("school_distance_m", sa.Integer, nullable=True),
        sa.Column("school_name", sa.String(255), nullable=True),
        sa.Column("religious_building_distance_m", sa.Integer, nullable=True),
        sa.Column("religious_building_name", sa.String(255), nullable=True),
        sa.Column("green_space_distance_m", sa.Integer, nullable=True),
        sa.Column("green_space_name", sa.String(255), nullable=True),
        sa.Column("safety_score", sa.Integer, nullable=True),
        sa.Column("cleanliness_score", sa.Integer, nullable=True),
        sa.Column("transport_convenience_score", sa.Integer, nullable=True),
        sa.Column("service_charge_estimate_annual", sa.Integer, nullable=True),
        sa.Column("ground_rent_estimate_annual", sa.Integer, nullable=True),
        sa.Column("running_costs_confidence", sa.String(8), nullable=True),
        sa.Column("running_costs_notes", sa.Text, nullable=True),
        sa.Column("required_confidence", sa.JSON, nullable=True),
        sa.Column("required_source", sa.JSON, nullable=True),
        sa.Column("optional_confidence", sa.JSON, nullable=True),
        sa.Column("optional_source", sa.JSON, nullable=True),
        sa.Column("fields_json", sa.JSON, nullable=True),
        _session_fk("stats_raw"),
    )

    # Confirmed statistics
    op.create_table(
        "listing_stats_confirmed",
        _session_pk(),
        sa.Column("commute_total_minutes", sa.Integer, nullable=False),
        sa.Column("commute_walk_minutes", sa.Integer, nullable=False),
        sa.Column("commute_mode", sa.String(32), nullable=False),
        sa.Column("nearest_station_distance_m", sa.Integer, nullable=False),
        sa.Column("nearest_station_name", sa.String(255), nullable=False),
        sa.Column("supermarket_distance_m", sa.Integer, nullable=False),
        sa.Column("supermarket_name", sa.String(255), nullable=False),
        sa.Column("green_space_distance_m", sa.Integer, nullable=False),
        sa.Column("green_space_name", sa.String(255), nullable=False),
        sa.Column("safety_score", sa.Integer, nullable=False),
        sa.Column("required_confidence", sa.JSON, nullable=True),
        sa.Column("required_source", sa.JSON, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "confirmed_by_user", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "confirmed_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        _session_fk("stats_confirmed"),
    )

    # Evaluation
    op.create_table(
        "listing_evaluation_raw",
        _session_pk(),
        sa.Column("rank_score", sa.Float, nullable=True),
        sa.Column("overall_score", sa.Float, nullable=True),
        sa.Column("executive_summary", sa.Text, nullable=False),
        sa.Column("estate_agent_snippet", sa.Text, nullable=False),
        sa.Column("per_preference", sa.JSON, nullable=False),
        sa.Column("warnings", sa.JSON, nullable=True),
        sa.Column("assumptions", sa.JSON, nullable=True),
        sa.Column("model_info", sa.JSON, nullable=True),
        sa.Column(
            "evaluated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        _session_fk("evaluation"),
    )

    # Preferences
    op.create_table(
        "preferences",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column("budget_max", sa.Integer, nullable=True),
        sa.Column("budget_flex", sa.Integer, nullable=True),
        sa.Column("notes_budget", sa.Text, nullable=True),
        sa.Column("min_bedrooms", sa.Integer, nullable=True),
        sa.Column("min_bathrooms", sa.Integer, nullable=True),
        sa.Column("property_type_rank", sa.JSON, nullable=True),
        sa.Column("property_type_reject_below_index", sa.Integer, nullable=True),
        sa.Column("notes_property_type", sa.Text, nullable=True),
        sa.Column("tenure_rank", sa.JSON, nullable=True),
        sa.Column("tenure_reject_below_index", sa.Integer, nullable=True),
        sa.Column("min_lease_years", sa.Integer, nullable=True),
        sa.Column("notes_tenure", sa.Text, nullable=True),
        sa.Column("work_postcode", sa.String(16), nullable=True),
        sa.Column("transport_mode", sa.String(32), nullable=True),
        sa.Column("max_commute_minutes_total", sa.Integer, nullable=True),
        sa.Column("max_walk_minutes", sa.Integer, nullable=True),
        sa.Column("car_owner", sa.Boolean, nullable=True),
        sa.Column("bike_owner", sa.Boolean, nullable=True),
        sa.Column("transport_convenience_weight", sa.Integer, nullable=True),
        sa.Column("notes_commute", sa.Text, nullable=True),
        sa.Column("religion_required", sa.Boolean, nullable=True),
        sa.Column("school_priority", sa.Boolean, nullable=True),
        sa.Column("gym_priority", sa.Boolean, nullable=True),
        sa.Column("has_children", sa.Boolean, nullable=True),
        sa.Column("quiet_area_priority", sa.Boolean, nullable=True),
        sa.Column("green_space_priority", sa.Boolean, nullable=True),
        sa.Column("safety_weight", sa.Integer, nullable=True),
        sa.Column("cleanliness_weight", sa.Integer, nullable=True),
        sa.Column("notes_lifestyle", sa.Text, nullable=True),
        sa.Column("max_service_charge", sa.Integer, nullable=True),
        sa.Column("max_ground_rent", sa.Integer, nullable=True),
        sa.Column("notes_running_costs", sa.Text, nullable=True),
        sa.Column("parking_required", sa.String(32), nullable=True),
        sa.Column("parking_type_rank", sa.JSON, nullable=True),
        sa.Column("parking_reject_below_index", sa.Integer, nullable=True),
        sa.Column("storage_required", sa.Boolean, nullable=True),
        sa.Column("notes_parking", sa.Text, nullable=True),
        sa.Column("condition_tolerance", sa.String(32), nullable=True),
        sa.Column("notes_condition", sa.Text, nullable=True),
        sa.Column("affordability_weight", sa.Integer, nullable=True),
        sa.Column("notes_value", sa.Text, nullable=True),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # Usage counters
    op.create_table(
        "usage_counters",
        sa.Column("user_id", sa.String(64), primary_key=True),
        *[
            sa.Column(f"{action}_{kind}", sa.Integer, nullable=False, server_default="0")
            for action in ("extract", "stats", "evaluate", "video")
            for kind in ("used", "limit")
        ],
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # Purchases
    op.create_table(
        "usage_purchases",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("extract_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("stats_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("evaluate_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("video_credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("provider", sa.String(32), nullable=True),
        sa.Column("provider_ref", sa.String(255), nullable=True),
        sa.Column("amount_pence", sa.Integer, nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_purchase_user_created", "usage_purchases", ["user_id", "created_at"]
    )

    # Ledger (append-only)
    op.create_table(
        "usage_ledger",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "action_type",
            sa.Enum("extract", "stats", "evaluate", "video", name="usage_action_enum"),
            nullable=False,
        ),
        sa.Column("delta", sa.Integer, nullable=False),
        sa.Column(
            "reason",
            sa.Enum(
                "free_grant", "purchase", "usage", "admin_adjustment", "refund",
                name="ledger_reason_enum",
            ),
            nullable=False,
        ),
        sa.Column(
            "direction",
            sa.Enum("debit", "credit", name="ledger_direction_enum"),
            nullable=True,
        ),
        sa.Column("amount", sa.Integer, nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("related_purchase_id", sa.BigInteger, nullable=True),
        sa.Column("related_session_id", sa.String(36), nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(
            ["related_purchase_id"], ["usage_purchases.id"], name="fk_ledger_purchase"
        ),
        sa.ForeignKeyConstraint(
            ["related_session_id"], ["property_sessions.id"], name="fk_ledger_session"
        ),
    )
    op.create_index(
        "idx_ledger_user_created", "usage_ledger", ["user_id", "created_at"]
    )
    op.create_index(
        "idx_ledger_user_action", "usage_ledger", ["user_id", "action_type", "reason"]
    )


def downgrade() -> None:
    op.drop_table("usage_ledger")
    op.drop_table("usage_purchases")
    op.drop_table("usage_counters")
    op.drop_table("preferences")
    op.drop_table("listing_evaluation_raw")
    op.drop_table("listing_stats_confirmed")
    op.drop_table("listing_stats_raw")
    op.drop_table("listing_facts_confirmed")
    op.drop_table("listing_facts_raw")
    op.drop_table("property_sessions")
