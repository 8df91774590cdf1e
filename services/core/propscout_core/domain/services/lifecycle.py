"""Property session lifecycle.

Every status write goes through ``guarded_transition``: a single conditional
UPDATE that matches at most one row (id, owner, current status in an expected
set). The row count decides the winner, so the status column doubles as a
per-session mutex across concurrent requests.
"""

from collections.abc import Iterable
from typing import Optional

from sqlalchemy.orm import Session as DBSession

from propscout_core.domain.errors import ConflictError
from propscout_core.domain.models import PropertySession, SessionStatus
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

RUNNING_STATUSES = frozenset({SessionStatus.STATS_RUNNING, SessionStatus.EVAL_RUNNING})

# Extract may rewrite facts from anywhere except mid-stage
EXTRACT_FROM = frozenset(SessionStatus) - RUNNING_STATUSES

CONFIRM_FACTS_FROM = frozenset(
    {SessionStatus.NEEDS_CONFIRMATION, SessionStatus.CONFIRMED}
)

STATS_FROM = frozenset(
    {
        SessionStatus.CONFIRMED,
        SessionStatus.STATS_FAILED,
        SessionStatus.STATS_NEEDS_CONFIRMATION,
    }
)

STATS_FORCE_FROM = STATS_FROM | frozenset(
    {SessionStatus.STATS_READY, SessionStatus.AI_READY, SessionStatus.EVAL_FAILED}
)

CONFIRM_STATS_FROM = frozenset({SessionStatus.STATS_NEEDS_CONFIRMATION})

EVALUATE_FROM = frozenset(
    {SessionStatus.STATS_READY, SessionStatus.AI_READY, SessionStatus.EVAL_FAILED}
)


def _values(statuses: Iterable[SessionStatus]) -> list[str]:
    return sorted(SessionStatus(s).value for s in statuses)


class SessionLifecycle:
    """Guarded status transitions for property sessions."""

    def __init__(self, db: DBSession):
        """Initialize the lifecycle service.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    def guarded_transition(
        self,
        session_id: str,
        owner_id: str,
        from_statuses: Iterable[SessionStatus],
        to_status: SessionStatus,
        commit: bool = True,
        **extra_values,
    ) -> bool:
        """Atomically move a session from one of ``from_statuses`` to ``to_status``.

        Only one caller can win for a given (session, from set): the UPDATE
        matches the row only while its status is still in the expected set.

        Args:
            session_id: The session ID.
            owner_id: The user who must own the session.
            from_statuses: Statuses the session may currently be in.
            to_status: The new status.
            commit: Commit immediately so concurrent requests see the write.
            **extra_values: Additional column values to set in the same UPDATE.

        Returns:
            True if exactly one row was updated, False otherwise (no mutation).
        """
        values = {PropertySession.status: SessionStatus(to_status).value}
        for column, value in extra_values.items():
            values[getattr(PropertySession, column)] = value

        result = (
            self.db.query(PropertySession)
            .filter(
                PropertySession.id == session_id,
                PropertySession.user_id == owner_id,
                PropertySession.status.in_(_values(from_statuses)),
            )
            .update(values, synchronize_session=False)
        )

        if result == 1:
            if commit:
                self.db.commit()
            else:
                self.db.flush()
            logger.info(
                "Session transition",
                session_id=session_id,
                user_id=owner_id,
                to_status=SessionStatus(to_status).value,
            )
            return True

        logger.info(
            "Session transition rejected",
            session_id=session_id,
            user_id=owner_id,
            expected=_values(from_statuses),
            to_status=SessionStatus(to_status).value,
        )
        return False

    def require_transition(
        self,
        session_id: str,
        owner_id: str,
        from_statuses: Iterable[SessionStatus],
        to_status: SessionStatus,
        current_status: Optional[str] = None,
        reason: str = "ALREADY_RUNNING_OR_INVALID_STATE",
        **extra_values,
    ) -> None:
        """Like ``guarded_transition`` but raises ConflictError on failure."""
        if not self.guarded_transition(
            session_id, owner_id, from_statuses, to_status, **extra_values
        ):
            raise ConflictError(
                status=current_status or self.current_status(session_id),
                reason=reason,
            )

    def revert(
        self,
        session_id: str,
        owner_id: str,
        running_status: SessionStatus,
        previous_status: str,
    ) -> bool:
        """Return a session from a RUNNING state to the status it held before.

        Guarded on the RUNNING state so a revert never clobbers a newer write.
        """
        return self.guarded_transition(
            session_id,
            owner_id,
            {running_status},
            SessionStatus(previous_status),
        )

    def current_status(self, session_id: str) -> Optional[str]:
        """Read the stored status without using the identity map."""
        row = (
            self.db.query(PropertySession.status)
            .filter(PropertySession.id == session_id)
            .first()
        )
        return row[0] if row else None
