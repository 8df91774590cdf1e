"""Manual confirmation of listing facts."""

from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy.orm import Session as DBSession

from propscout_core.domain.errors import ValidationFailedError
from propscout_core.domain.models import ListingFactsConfirmed, SessionStatus
from propscout_core.domain.services.lifecycle import CONFIRM_FACTS_FROM, SessionLifecycle
from propscout_core.domain.services.sessions import PropertySessionService
from propscout_core.domain.services.stages import to_int, to_str
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

REQUIRED_INT_FACTS = ("price", "bedrooms")
REQUIRED_STR_FACTS = ("property_type", "tenure", "postcode")
OPTIONAL_INT_FACTS = ("bathrooms", "lease_years_remaining")
OPTIONAL_STR_FACTS = ("address", "description", "estate_agent")


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_facts(facts: Mapping[str, Any]) -> list[str]:
    """Return the required fact fields that are missing or mistyped."""
    missing = [name for name in REQUIRED_INT_FACTS if not _is_whole_number(facts.get(name))]
    for name in REQUIRED_STR_FACTS:
        value = facts.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return missing


class FactsService:
    """Service for confirming extracted listing facts."""

    def __init__(self, db: DBSession):
        """Initialize the facts service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db
        self.lifecycle = SessionLifecycle(db)
        self.sessions = PropertySessionService(db)

    def confirm(self, user_id: str, session_id: str, facts: Mapping[str, Any]) -> None:
        """Store user-confirmed facts and mark the session CONFIRMED.

        Raises:
            ValidationFailedError: Required facts missing or mistyped.
            SessionNotFoundError: Unknown session.
            ForbiddenError: Session owned by someone else.
            ConflictError: Session is not awaiting (re)confirmation.
        """
        missing = validate_facts(facts)
        if missing:
            raise ValidationFailedError(missing)

        session = self.sessions.get_owned(session_id, user_id)
        current_status = session.status

        values = {name: int(facts[name]) for name in REQUIRED_INT_FACTS}
        values.update({name: facts[name].strip() for name in REQUIRED_STR_FACTS})
        values.update({name: to_int(facts.get(name), default=None) for name in OPTIONAL_INT_FACTS})
        values.update({name: to_str(facts.get(name), default=None) for name in OPTIONAL_STR_FACTS})

        self.db.merge(
            ListingFactsConfirmed(
                property_session_id=session_id,
                confirmed_at=datetime.now(timezone.utc),
                **values,
            )
        )
        self.lifecycle.require_transition(
            session_id,
            user_id,
            CONFIRM_FACTS_FROM,
            SessionStatus.CONFIRMED,
            current_status=current_status,
            reason="INVALID_STATE",
        )
        logger.info("Facts confirmed", session_id=session_id, user_id=user_id)
