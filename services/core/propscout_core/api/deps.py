"""API dependencies for dependency injection."""

import re
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from propscout_core.api.errors import to_http_exception
from propscout_core.domain.errors import UnauthorizedError
from propscout_core.domain.services.identity import IdentityVerifier, get_identity_verifier
from propscout_core.domain.services.inference import InferenceClient, get_inference_client
from propscout_core.domain.services.listing_fetch import ListingFetcher, get_listing_fetcher
from propscout_core.infra.db import get_sync_session_factory
from propscout_core.observability.logging import bind_user

BEARER_PATTERN = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def get_db() -> Session:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_bearer_token(
    authorization: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """Get the bearer token from the Authorization header."""
    if not authorization:
        return None
    match = BEARER_PATTERN.match(authorization.strip())
    return match.group(1) if match else None


async def get_current_user_id(
    token: Annotated[Optional[str], Depends(get_bearer_token)],
    verifier: Annotated[IdentityVerifier, Depends(get_identity_verifier)],
) -> str:
    """Resolve the caller's user id.

    Raises:
        HTTPException: If the token is missing or invalid.
    """
    try:
        user_id = await verifier.verify(token)
    except UnauthorizedError as e:
        raise to_http_exception(e)
    bind_user(user_id)
    return user_id


async def get_inference() -> AsyncGenerator[InferenceClient, None]:
    """Get an AI model client for the duration of a request."""
    client = get_inference_client()
    try:
        yield client
    finally:
        await client.close()


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
InferenceDep = Annotated[InferenceClient, Depends(get_inference)]
ListingFetcherDep = Annotated[ListingFetcher, Depends(get_listing_fetcher)]
