"""Stage schemas for request/response validation."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ExtractStage = Literal["auth", "quota", "fetch", "openai", "full"]


class ExtractRequest(BaseModel):
    """Request body for the extract stage."""

    rightmove_url: Optional[str] = Field(None, max_length=1024)
    stage: ExtractStage = "full"


class ExtractResponse(BaseModel):
    """Response body for the extract stage; fields depend on the stage reached."""

    ok: bool = True
    stage: ExtractStage
    user_id: str
    quota: Optional[dict[str, Any]] = None
    session_id: Optional[str] = None
    listing_id: Optional[str] = None
    snippets: Optional[list[str]] = None
    facts: Optional[dict[str, Any]] = None


class ConfirmFactsRequest(BaseModel):
    """Request body for confirming listing facts."""

    session_id: str = Field(..., min_length=1, max_length=36)
    facts: dict[str, Any]


class StatsRequest(BaseModel):
    """Request body for computing stats."""

    property_session_id: str = Field(..., min_length=1, max_length=36)
    force_recalc: bool = False


class ConfirmStatsRequest(BaseModel):
    """Request body for confirming stats manually."""

    property_session_id: str = Field(..., min_length=1, max_length=36)
    stats: dict[str, Any]


class EvaluateRequest(BaseModel):
    """Request body for the evaluate stage."""

    property_session_id: str = Field(..., min_length=1, max_length=36)


class OkResponse(BaseModel):
    """Response body for operations with no payload."""

    ok: bool = True


class StatusResponse(BaseModel):
    """Response body carrying the session's resulting status."""

    ok: bool = True
    status: str
