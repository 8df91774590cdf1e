"""Property session service.

Sessions are found or created per (user, listing reference). A listing id
parsed from the URL is the preferred key; without one the raw URL is used.
Creation enforces a per-user cap.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import selectinload

from propscout_core.config import get_settings
from propscout_core.domain.errors import (
    ForbiddenError,
    MaxLinksReachedError,
    SessionNotFoundError,
)
from propscout_core.domain.models import PropertySession, SessionStatus, url_hash
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

LISTING_ID_PATTERN = re.compile(r"rightmove\.co\.uk/properties/(\d+)", re.IGNORECASE)

EVALUATION_MISSING = "missing"
EVALUATION_FRESH = "fresh"
EVALUATION_STALE = "stale"


def parse_listing_id(url: str) -> Optional[str]:
    """Extract the numeric listing id from a Rightmove URL.

    >>> parse_listing_id("https://www.rightmove.co.uk/properties/170645465#/?channel=RES_BUY")
    '170645465'
    """
    if not url:
        return None
    match = LISTING_ID_PATTERN.search(url)
    return match.group(1) if match else None


def _as_utc(value: datetime) -> datetime:
    # Naive values are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def evaluation_state(session: PropertySession) -> str:
    """Whether the session's evaluation predates its confirmed stats.

    Computed on read; never enforced.
    """
    evaluation = session.evaluation
    if evaluation is None:
        return EVALUATION_MISSING
    stats = session.stats_confirmed
    if stats is not None and _as_utc(evaluation.evaluated_at) < _as_utc(stats.confirmed_at):
        return EVALUATION_STALE
    return EVALUATION_FRESH


class PropertySessionService:
    """Service for property session lookup and creation."""

    def __init__(self, db: DBSession, max_sessions: Optional[int] = None):
        """Initialize the session service.

        Args:
            db: SQLAlchemy database session.
            max_sessions: Per-user cap (defaults from settings).
        """
        self.db = db
        self.max_sessions = (
            max_sessions if max_sessions is not None else get_settings().max_sessions_per_user
        )

    def _find(
        self, user_id: str, rightmove_url: str, listing_id: Optional[str]
    ) -> Optional[PropertySession]:
        query = self.db.query(PropertySession).filter(PropertySession.user_id == user_id)
        if listing_id:
            query = query.filter(PropertySession.rightmove_listing_id == listing_id)
        else:
            query = query.filter(
                PropertySession.rightmove_url_hash == url_hash(rightmove_url)
            )
        return query.first()

    def count_for_user(self, user_id: str) -> int:
        return self.db.query(PropertySession).filter(PropertySession.user_id == user_id).count()

    def find_or_create(
        self,
        user_id: str,
        rightmove_url: str,
        listing_id: Optional[str] = None,
    ) -> PropertySession:
        """Return the user's session for a listing, creating it if needed.

        Args:
            user_id: The owner.
            rightmove_url: The submitted listing URL.
            listing_id: Parsed listing id, if known.

        Returns:
            The existing or newly created PropertySession.

        Raises:
            MaxLinksReachedError: If a new session would exceed the cap.
        """
        existing = self._find(user_id, rightmove_url, listing_id)
        if existing is not None:
            return existing

        if self.count_for_user(user_id) >= self.max_sessions:
            logger.info(
                "Session cap reached", user_id=user_id, limit=self.max_sessions
            )
            raise MaxLinksReachedError(limit=self.max_sessions)

        session = PropertySession(
            id=str(uuid.uuid4()),
            user_id=user_id,
            rightmove_url=rightmove_url,
            rightmove_url_hash=url_hash(rightmove_url),
            rightmove_listing_id=listing_id,
            status=SessionStatus.CREATED.value,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent request created the same session first
            self.db.rollback()
            existing = self._find(user_id, rightmove_url, listing_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Session created",
            session_id=session.id,
            user_id=user_id,
            listing_id=listing_id,
        )
        return session

    def get_owned(self, session_id: str, user_id: str) -> PropertySession:
        """Load a session and check it belongs to the caller.

        Raises:
            SessionNotFoundError: If no such session exists.
            ForbiddenError: If the session belongs to another user.
        """
        session = self.db.query(PropertySession).filter(PropertySession.id == session_id).first()
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.user_id != user_id:
            logger.warning(
                "Session ownership mismatch", session_id=session_id, user_id=user_id
            )
            raise ForbiddenError()
        return session

    def list_for_user(self, user_id: str) -> list[PropertySession]:
        """All of a user's sessions with their artifacts, newest first."""
        return (
            self.db.query(PropertySession)
            .options(
                selectinload(PropertySession.facts_raw),
                selectinload(PropertySession.facts_confirmed),
                selectinload(PropertySession.stats_raw),
                selectinload(PropertySession.stats_confirmed),
                selectinload(PropertySession.evaluation),
            )
            .filter(PropertySession.user_id == user_id)
            .order_by(PropertySession.created_at.desc())
            .all()
        )
