"""Session listing schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from propscout_core.domain.services.sessions import evaluation_state


class FactsResponse(BaseModel):
    """Listing facts, raw or confirmed."""

    model_config = ConfigDict(from_attributes=True)

    price: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    property_type: Optional[str] = None
    tenure: Optional[str] = None
    lease_years_remaining: Optional[int] = None
    postcode: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    estate_agent: Optional[str] = None
    ai_confidence: Optional[dict[str, Any]] = None
    ai_warnings: Optional[list[Any]] = None
    extracted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None


class StatsRawResponse(BaseModel):
    """All AI-produced stats for a session."""

    model_config = ConfigDict(from_attributes=True)

    stats_version: int
    computed_at: datetime
    commute_total_minutes: Optional[int] = None
    commute_walk_minutes: Optional[int] = None
    commute_mode: Optional[str] = None
    commute_confidence: Optional[str] = None
    commute_notes: Optional[str] = None
    nearest_station_distance_m: Optional[int] = None
    nearest_station_name: Optional[str] = None
    supermarket_distance_m: Optional[int] = None
    supermarket_name: Optional[str] = None
    gym_distance_m: Optional[int] = None
    gym_name: Optional[str] = None
    school_distance_m: Optional[int] = None
    school_name: Optional[str] = None
    religious_building_distance_m: Optional[int] = None
    religious_building_name: Optional[str] = None
    green_space_distance_m: Optional[int] = None
    green_space_name: Optional[str] = None
    safety_score: Optional[int] = None
    cleanliness_score: Optional[int] = None
    transport_convenience_score: Optional[int] = None
    service_charge_estimate_annual: Optional[int] = None
    ground_rent_estimate_annual: Optional[int] = None
    running_costs_confidence: Optional[str] = None
    running_costs_notes: Optional[str] = None
    required_confidence: Optional[dict[str, Any]] = None
    required_source: Optional[dict[str, Any]] = None
    optional_confidence: Optional[dict[str, Any]] = None
    optional_source: Optional[dict[str, Any]] = None


class StatsConfirmedResponse(BaseModel):
    """The confirmed required stats for a session."""

    model_config = ConfigDict(from_attributes=True)

    commute_total_minutes: int
    commute_walk_minutes: int
    commute_mode: str
    nearest_station_distance_m: int
    nearest_station_name: str
    supermarket_distance_m: int
    supermarket_name: str
    green_space_distance_m: int
    green_space_name: str
    safety_score: int
    required_confidence: Optional[dict[str, Any]] = None
    required_source: Optional[dict[str, Any]] = None
    notes: Optional[str] = None
    confirmed_by_user: bool
    confirmed_at: datetime


class EvaluationResponse(BaseModel):
    """The AI evaluation for a session."""

    model_config = ConfigDict(from_attributes=True)

    rank_score: Optional[float] = None
    overall_score: Optional[float] = None
    executive_summary: str
    estate_agent_snippet: str
    per_preference: dict[str, Any]
    warnings: Optional[list[Any]] = None
    assumptions: Optional[list[Any]] = None
    evaluated_at: datetime


class SessionResponse(BaseModel):
    """A property session with its artifacts."""

    id: str
    created_at: datetime
    last_extracted_at: Optional[datetime] = None
    rightmove_url: str
    rightmove_listing_id: Optional[str] = None
    status: str
    evaluation_state: str
    listing_facts_raw: Optional[FactsResponse] = None
    listing_facts_confirmed: Optional[FactsResponse] = None
    listing_stats_raw: Optional[StatsRawResponse] = None
    listing_stats_confirmed: Optional[StatsConfirmedResponse] = None
    listing_evaluation_raw: Optional[EvaluationResponse] = None

    @classmethod
    def from_model(cls, session) -> "SessionResponse":
        """Create response from PropertySession model."""

        def _dump(schema, artifact):
            return schema.model_validate(artifact) if artifact is not None else None

        return cls(
            id=session.id,
            created_at=session.created_at,
            last_extracted_at=session.last_extracted_at,
            rightmove_url=session.rightmove_url,
            rightmove_listing_id=session.rightmove_listing_id,
            status=session.status,
            evaluation_state=evaluation_state(session),
            listing_facts_raw=_dump(FactsResponse, session.facts_raw),
            listing_facts_confirmed=_dump(FactsResponse, session.facts_confirmed),
            listing_stats_raw=_dump(StatsRawResponse, session.stats_raw),
            listing_stats_confirmed=_dump(StatsConfirmedResponse, session.stats_confirmed),
            listing_evaluation_raw=_dump(EvaluationResponse, session.evaluation),
        )


class SessionListResponse(BaseModel):
    """Response body for listing sessions."""

    ok: bool = True
    sessions: list[SessionResponse]
