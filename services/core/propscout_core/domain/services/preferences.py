"""User preferences service.

A user's preferences row is seeded with defaults on first read. The stats
stage requires a minimum set of preferences to be filled in.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import inspect
from sqlalchemy.orm import Session as DBSession

from propscout_core.domain.models import Preferences
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

# Must be non-null before stats can be computed
MINIMUM_PREFERENCE_FIELDS: tuple[str, ...] = (
    "budget_max",
    "budget_flex",
    "min_bedrooms",
    "property_type_rank",
    "property_type_reject_below_index",
    "tenure_rank",
    "tenure_reject_below_index",
    "work_postcode",
    "transport_mode",
    "car_owner",
    "bike_owner",
    "transport_convenience_weight",
    "religion_required",
    "school_priority",
    "gym_priority",
    "has_children",
    "quiet_area_priority",
    "green_space_priority",
    "safety_weight",
    "cleanliness_weight",
    "storage_required",
    "affordability_weight",
)

# Columns the caller may never set
PROTECTED_FIELDS = frozenset({"user_id", "updated_at"})


def default_preferences() -> dict[str, Any]:
    """Preference values for a newly seeded row."""
    return {
        "budget_max": 450000,
        "budget_flex": 0,
        "min_bedrooms": 2,
        "property_type_rank": [
            "detached",
            "semi_detached",
            "terraced",
            "flat",
            "maisonette",
            "bungalow",
            "studio",
        ],
        "property_type_reject_below_index": 0,
        "tenure_rank": ["freehold", "share_of_freehold", "leasehold", "commonhold", "other"],
        "tenure_reject_below_index": 0,
        "work_postcode": "",
        "transport_mode": "public_transport",
        "car_owner": False,
        "bike_owner": False,
        "transport_convenience_weight": 5,
        "religion_required": False,
        "school_priority": False,
        "gym_priority": False,
        "has_children": False,
        "quiet_area_priority": False,
        "green_space_priority": False,
        "safety_weight": 5,
        "cleanliness_weight": 5,
        "parking_required": "not_required",
        "parking_type_rank": ["driveway", "garage", "allocated", "permit", "street", "none"],
        "parking_reject_below_index": 0,
        "storage_required": False,
        "condition_tolerance": "light_cosmetic",
        "affordability_weight": 5,
    }


def check_minimum_preferences(prefs: Optional[Mapping[str, Any]]) -> list[str]:
    """Return the minimum preference fields that are missing.

    ``work_postcode`` must also be a non-empty string, and both rank lists must
    be non-empty lists.
    """
    prefs = prefs or {}
    missing = [name for name in MINIMUM_PREFERENCE_FIELDS if prefs.get(name) is None]

    work_postcode = prefs.get("work_postcode")
    if not isinstance(work_postcode, str) or not work_postcode.strip():
        if "work_postcode" not in missing:
            missing.append("work_postcode")

    for rank_field in ("property_type_rank", "tenure_rank"):
        value = prefs.get(rank_field)
        if not isinstance(value, list) or len(value) == 0:
            if rank_field not in missing:
                missing.append(rank_field)

    return missing


class PreferencesService:
    """Service for reading and updating user preferences."""

    def __init__(self, db: DBSession):
        """Initialize the preferences service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    def get(self, user_id: str) -> Optional[Preferences]:
        """Get a user's preferences without seeding."""
        return self.db.query(Preferences).filter(Preferences.user_id == user_id).first()

    def get_or_seed(self, user_id: str) -> Preferences:
        """Get a user's preferences, creating a default row if absent."""
        prefs = self.get(user_id)
        if prefs is not None:
            return prefs

        prefs = Preferences(
            user_id=user_id,
            updated_at=datetime.now(timezone.utc),
            **default_preferences(),
        )
        self.db.add(prefs)
        self.db.flush()
        logger.info("Preferences seeded", user_id=user_id)
        return prefs

    def upsert(self, user_id: str, values: Mapping[str, Any]) -> Preferences:
        """Create or update a user's preferences.

        The owner always comes from the caller's identity; unknown and
        protected keys are ignored.
        """
        columns = {attr.key for attr in inspect(Preferences).column_attrs}
        updates = {
            k: v for k, v in values.items() if k in columns and k not in PROTECTED_FIELDS
        }

        prefs = self.get(user_id)
        if prefs is None:
            prefs = Preferences(user_id=user_id)
            self.db.add(prefs)

        for key, value in updates.items():
            setattr(prefs, key, value)
        prefs.updated_at = datetime.now(timezone.utc)

        self.db.flush()
        logger.info("Preferences updated", user_id=user_id, fields=sorted(updates))
        return prefs
