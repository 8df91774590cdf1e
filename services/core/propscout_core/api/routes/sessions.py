"""Property session API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from propscout_core.api.deps import CurrentUserId, DBSession
from propscout_core.api.schemas.sessions import SessionListResponse, SessionResponse
from propscout_core.domain.services.sessions import PropertySessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_session_service(db: DBSession) -> PropertySessionService:
    """Get the property session service."""
    return PropertySessionService(db)


SessionServiceDep = Annotated[PropertySessionService, Depends(get_session_service)]


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    user_id: CurrentUserId,
    session_service: SessionServiceDep,
):
    """List the caller's sessions with their artifacts, newest first."""
    sessions = session_service.list_for_user(user_id)
    return SessionListResponse(sessions=[SessionResponse.from_model(s) for s in sessions])
