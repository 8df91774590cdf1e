"""Unit tests for guarded session status transitions."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import event

from propscout_core.domain.errors import ConflictError
from propscout_core.domain.models import PropertySession, SessionStatus
from propscout_core.domain.services.lifecycle import (
    CONFIRM_STATS_FROM,
    EVALUATE_FROM,
    EXTRACT_FROM,
    RUNNING_STATUSES,
    STATS_FORCE_FROM,
    STATS_FROM,
    SessionLifecycle,
)
from tests.factories import create_property_session


@pytest.fixture
def lifecycle(db_session):
    return SessionLifecycle(db_session)


class TestTransitionSets:
    """Tests for the allowed source-status sets."""

    def test_extract_excluded_only_while_running(self):
        assert EXTRACT_FROM.isdisjoint(RUNNING_STATUSES)
        assert SessionStatus.AI_READY in EXTRACT_FROM
        assert SessionStatus.CREATED in EXTRACT_FROM

    def test_stats_sets(self):
        assert STATS_FROM < STATS_FORCE_FROM
        assert SessionStatus.STATS_READY not in STATS_FROM
        assert SessionStatus.STATS_READY in STATS_FORCE_FROM
        assert SessionStatus.STATS_RUNNING not in STATS_FORCE_FROM

    def test_confirm_stats_only_from_needs_confirmation(self):
        assert CONFIRM_STATS_FROM == {SessionStatus.STATS_NEEDS_CONFIRMATION}

    def test_evaluate_sets(self):
        assert EVALUATE_FROM == {
            SessionStatus.STATS_READY,
            SessionStatus.AI_READY,
            SessionStatus.EVAL_FAILED,
        }


class TestGuardedTransition:
    """Tests for SessionLifecycle.guarded_transition."""

    def test_transition_from_allowed_status(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.CONFIRMED)
        db_session.commit()

        moved = lifecycle.guarded_transition(
            session.id, "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
        )

        assert moved is True
        assert lifecycle.current_status(session.id) == "STATS_RUNNING"

    def test_rejected_from_other_status_without_mutation(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.NEEDS_CONFIRMATION)
        db_session.commit()

        moved = lifecycle.guarded_transition(
            session.id, "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
        )

        assert moved is False
        assert lifecycle.current_status(session.id) == "NEEDS_CONFIRMATION"

    def test_rejected_for_other_owner(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.CONFIRMED)
        db_session.commit()

        moved = lifecycle.guarded_transition(
            session.id, "user-2", STATS_FROM, SessionStatus.STATS_RUNNING
        )

        assert moved is False
        assert lifecycle.current_status(session.id) == "CONFIRMED"

    def test_only_one_of_two_racing_callers_wins(self, db_session, sync_session_factory):
        session = create_property_session(db_session, status=SessionStatus.CONFIRMED)
        db_session.commit()

        first = SessionLifecycle(sync_session_factory())
        second = SessionLifecycle(sync_session_factory())

        # both callers have seen the session as CONFIRMED
        assert first.db.get(PropertySession, session.id).status == "CONFIRMED"
        assert second.db.get(PropertySession, session.id).status == "CONFIRMED"

        won = second.guarded_transition(
            session.id, "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
        )
        lost = first.guarded_transition(
            session.id, "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
        )
        first.db.close()
        second.db.close()

        assert (won, lost) == (True, False)
        assert SessionLifecycle(db_session).current_status(session.id) == "STATS_RUNNING"

    def test_transition_is_one_conditional_update(self, db_session, sync_engine, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.CONFIRMED)
        db_session.commit()
        statements = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            statements.append(" ".join(statement.split()))

        event.listen(sync_engine, "before_cursor_execute", capture)
        try:
            lifecycle.guarded_transition(
                session.id, "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
            )
        finally:
            event.remove(sync_engine, "before_cursor_execute", capture)

        session_sql = [s for s in statements if "property_sessions" in s]
        assert len(session_sql) == 1
        assert session_sql[0].startswith("UPDATE property_sessions SET status=")
        assert "property_sessions.status IN" in session_sql[0]

    def test_extra_values_written_in_same_update(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.CREATED)
        db_session.commit()
        extracted_at = datetime(2026, 3, 1, 12, 0, 0)

        lifecycle.guarded_transition(
            session.id,
            "user-1",
            EXTRACT_FROM,
            SessionStatus.NEEDS_CONFIRMATION,
            last_extracted_at=extracted_at,
        )

        db_session.expire_all()
        stored = db_session.get(PropertySession, session.id)
        assert stored.status == "NEEDS_CONFIRMATION"
        assert stored.last_extracted_at.replace(tzinfo=None) == extracted_at

    def test_unknown_session(self, lifecycle):
        assert lifecycle.guarded_transition(
            "missing", "user-1", STATS_FROM, SessionStatus.STATS_RUNNING
        ) is False
        assert lifecycle.current_status("missing") is None


class TestRequireTransition:
    """Tests for SessionLifecycle.require_transition."""

    def test_raises_conflict_with_current_status(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.STATS_RUNNING)
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            lifecycle.require_transition(
                session.id, "user-1", EXTRACT_FROM, SessionStatus.NEEDS_CONFIRMATION
            )

        assert exc_info.value.reason == "ALREADY_RUNNING_OR_INVALID_STATE"
        assert exc_info.value.payload == {"status": "STATS_RUNNING"}

    def test_custom_reason(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.CREATED)
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            lifecycle.require_transition(
                session.id,
                "user-1",
                CONFIRM_STATS_FROM,
                SessionStatus.STATS_READY,
                reason="INVALID_STATE",
            )

        assert exc_info.value.to_dict() == {"error": "INVALID_STATE", "status": "CREATED"}


class TestRevert:
    """Tests for SessionLifecycle.revert."""

    def test_reverts_running_session(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.STATS_RUNNING)
        db_session.commit()

        assert lifecycle.revert(
            session.id, "user-1", SessionStatus.STATS_RUNNING, "CONFIRMED"
        ) is True
        assert lifecycle.current_status(session.id) == "CONFIRMED"

    def test_does_not_clobber_newer_status(self, db_session, lifecycle):
        session = create_property_session(db_session, status=SessionStatus.STATS_READY)
        db_session.commit()

        assert lifecycle.revert(
            session.id, "user-1", SessionStatus.STATS_RUNNING, "CONFIRMED"
        ) is False
        assert lifecycle.current_status(session.id) == "STATS_READY"
