"""Preferences schemas for request/response validation."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PreferencesFields(BaseModel):
    """Every user-settable preference."""

    budget_max: Optional[int] = Field(None, ge=0)
    budget_flex: Optional[int] = Field(None, ge=0)
    notes_budget: Optional[str] = None

    min_bedrooms: Optional[int] = Field(None, ge=0)
    min_bathrooms: Optional[int] = Field(None, ge=0)

    property_type_rank: Optional[list[str]] = None
    property_type_reject_below_index: Optional[int] = Field(None, ge=0)
    notes_property_type: Optional[str] = None

    tenure_rank: Optional[list[str]] = None
    tenure_reject_below_index: Optional[int] = Field(None, ge=0)
    min_lease_years: Optional[int] = Field(None, ge=0)
    notes_tenure: Optional[str] = None

    work_postcode: Optional[str] = Field(None, max_length=16)
    transport_mode: Optional[str] = Field(None, max_length=32)
    max_commute_minutes_total: Optional[int] = Field(None, ge=0)
    max_walk_minutes: Optional[int] = Field(None, ge=0)
    car_owner: Optional[bool] = None
    bike_owner: Optional[bool] = None
    transport_convenience_weight: Optional[int] = Field(None, ge=1, le=10)
    notes_commute: Optional[str] = None

    religion_required: Optional[bool] = None
    school_priority: Optional[bool] = None
    gym_priority: Optional[bool] = None
    has_children: Optional[bool] = None
    quiet_area_priority: Optional[bool] = None
    green_space_priority: Optional[bool] = None
    safety_weight: Optional[int] = Field(None, ge=1, le=10)
    cleanliness_weight: Optional[int] = Field(None, ge=1, le=10)
    notes_lifestyle: Optional[str] = None

    max_service_charge: Optional[int] = Field(None, ge=0)
    max_ground_rent: Optional[int] = Field(None, ge=0)
    notes_running_costs: Optional[str] = None

    parking_required: Optional[str] = Field(None, max_length=32)
    parking_type_rank: Optional[list[str]] = None
    parking_reject_below_index: Optional[int] = Field(None, ge=0)
    storage_required: Optional[bool] = None
    notes_parking: Optional[str] = None

    condition_tolerance: Optional[str] = Field(None, max_length=32)
    notes_condition: Optional[str] = None

    affordability_weight: Optional[int] = Field(None, ge=1, le=10)
    notes_value: Optional[str] = None


class PreferencesUpdate(PreferencesFields):
    """Request body for updating preferences.

    Only keys present in the body are written; ``user_id`` always comes from
    the caller's token.
    """

    model_config = ConfigDict(extra="ignore")


class PreferencesResponse(PreferencesFields):
    """A user's stored preferences."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    updated_at: Optional[datetime] = None


class PreferencesEnvelope(BaseModel):
    """Response body for preferences endpoints."""

    ok: bool = True
    preferences: PreferencesResponse
