"""Preferences API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from propscout_core.api.deps import CurrentUserId, DBSession
from propscout_core.api.schemas.preferences import (
    PreferencesEnvelope,
    PreferencesResponse,
    PreferencesUpdate,
)
from propscout_core.domain.services.preferences import PreferencesService

router = APIRouter(prefix="/preferences", tags=["preferences"])


def get_preferences_service(db: DBSession) -> PreferencesService:
    """Get the preferences service."""
    return PreferencesService(db)


PreferencesServiceDep = Annotated[PreferencesService, Depends(get_preferences_service)]


@router.get("", response_model=PreferencesEnvelope)
async def get_preferences(
    user_id: CurrentUserId,
    preferences_service: PreferencesServiceDep,
):
    """Get the caller's preferences, seeding defaults on first read."""
    prefs = preferences_service.get_or_seed(user_id)
    return PreferencesEnvelope(preferences=PreferencesResponse.model_validate(prefs))


@router.post("", response_model=PreferencesEnvelope)
async def update_preferences(
    request: PreferencesUpdate,
    user_id: CurrentUserId,
    preferences_service: PreferencesServiceDep,
):
    """Create or update the caller's preferences."""
    prefs = preferences_service.upsert(user_id, request.model_dump(exclude_unset=True))
    return PreferencesEnvelope(preferences=PreferencesResponse.model_validate(prefs))
