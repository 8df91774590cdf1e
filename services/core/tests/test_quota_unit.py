"""Unit tests for the quota ledger."""

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import mysql, postgresql, sqlite

from propscout_core.domain.models import (
    LedgerReason,
    UsageAction,
    UsageCounters,
    UsageLedgerEntry,
    UsagePurchase,
)
from propscout_core.domain.services.quota import QuotaLedger, insert_if_absent
from tests.factories import create_counters, create_property_session

DEFAULT_LIMITS = {"extract": 3, "stats": 2, "evaluate": 1, "video": 0}


@pytest.fixture
def quota(db_session):
    return QuotaLedger(db_session, default_limits=DEFAULT_LIMITS)


class TestEnsureRow:
    """Tests for lazy counters creation."""

    def test_creates_row_with_default_limits(self, db_session, quota):
        assert quota.ensure_row("user-1") is True

        counters = db_session.get(UsageCounters, "user-1")
        assert counters.extract_limit == 3
        assert counters.stats_limit == 2
        assert counters.evaluate_limit == 1
        assert counters.video_limit == 0
        assert counters.extract_used == 0

    def test_writes_free_grant_per_positive_limit(self, quota):
        quota.ensure_row("user-1")

        assert quota.count_entries("user-1", reason=LedgerReason.FREE_GRANT) == 3
        assert quota.count_entries("user-1", action="video") == 0

    def test_is_idempotent(self, quota):
        assert quota.ensure_row("user-1") is True
        assert quota.ensure_row("user-1") is False

        assert quota.count_entries("user-1", reason="free_grant") == 3

    def test_repeated_touches_write_one_set_of_grants(self, quota):
        quota.check_and_consume("user-1", "extract")
        quota.get_counters("user-1")
        quota.grant("user-1", "stats", 1)

        assert quota.count_entries("user-1", reason="free_grant") == 3

    def test_mysql_insert_ignores_existing_row(self):
        stmt = insert_if_absent("mysql", {"user_id": "user-1", "extract_limit": 3})

        sql = str(stmt.compile(dialect=mysql.dialect()))

        assert sql.startswith("INSERT IGNORE INTO usage_counters")
        assert "ON DUPLICATE KEY UPDATE" not in sql

    @pytest.mark.parametrize(
        "name,dialect",
        [("postgresql", postgresql.dialect()), ("sqlite", sqlite.dialect())],
    )
    def test_other_dialects_do_nothing_on_conflict(self, name, dialect):
        stmt = insert_if_absent(name, {"user_id": "user-1", "extract_limit": 3})

        assert "ON CONFLICT DO NOTHING" in str(stmt.compile(dialect=dialect))


class TestCheckAndConsume:
    """Tests for QuotaLedger.check_and_consume."""

    def test_consumes_one_unit_and_appends_debit(self, db_session, quota):
        result = quota.check_and_consume("user-1", UsageAction.EXTRACT)

        assert result.ok is True
        assert (result.used, result.limit) == (1, 3)
        assert quota.read("user-1", "extract") == (1, 3)

        entry = (
            db_session.query(UsageLedgerEntry)
            .filter(UsageLedgerEntry.reason == "usage")
            .one()
        )
        assert entry.delta == -1
        assert entry.direction == "debit"
        assert entry.amount == 1
        assert entry.action_type == "extract"

    def test_links_ledger_row_to_session(self, db_session, quota):
        session = create_property_session(db_session)
        db_session.commit()

        quota.check_and_consume("user-1", "stats", session_id=session.id)

        entry = (
            db_session.query(UsageLedgerEntry)
            .filter(UsageLedgerEntry.reason == "usage")
            .one()
        )
        assert entry.related_session_id == session.id

    def test_exhausted_quota_writes_nothing(self, db_session, quota):
        create_counters(db_session, evaluate_used=1, evaluate_limit=1)
        db_session.commit()

        result = quota.check_and_consume("user-1", "evaluate")

        assert result.ok is False
        assert (result.used, result.limit) == (1, 1)
        assert quota.read("user-1", "evaluate") == (1, 1)
        assert quota.count_entries("user-1", reason="usage") == 0

    def test_zero_limit_is_exhausted(self, quota):
        result = quota.check_and_consume("user-1", "video")

        assert result.ok is False
        assert result.to_dict() == {"ok": False, "action": "video", "used": 0, "limit": 0}

    def test_used_never_exceeds_limit(self, quota):
        results = [quota.check_and_consume("user-1", "stats").ok for _ in range(4)]

        assert results == [True, True, False, False]
        assert quota.read("user-1", "stats") == (2, 2)
        assert quota.count_entries("user-1", action="stats", reason="usage") == 2

    def test_last_unit_is_not_taken_twice_after_a_stale_read(
        self, db_session, sync_session_factory
    ):
        create_counters(db_session, stats_used=1, stats_limit=2)
        db_session.commit()

        first = QuotaLedger(sync_session_factory(), default_limits=DEFAULT_LIMITS)
        second = QuotaLedger(sync_session_factory(), default_limits=DEFAULT_LIMITS)

        # first has loaded the row while one unit was still free
        stale = first.get_counters("user-1")
        assert (stale.stats_used, stale.stats_limit) == (1, 2)

        assert second.check_and_consume("user-1", "stats").ok is True
        result = first.check_and_consume("user-1", "stats")
        first.db.close()
        second.db.close()

        assert result.ok is False
        assert (result.used, result.limit) == (2, 2)
        assert QuotaLedger(db_session).read("user-1", "stats") == (2, 2)
        assert QuotaLedger(db_session).count_entries(
            "user-1", action="stats", reason="usage"
        ) == 1

    def test_increment_is_one_conditional_update(self, sync_engine, quota):
        quota.ensure_row("user-1")
        statements = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            statements.append(" ".join(statement.split()))

        event.listen(sync_engine, "before_cursor_execute", capture)
        try:
            assert quota.check_and_consume("user-1", "stats").ok is True
        finally:
            event.remove(sync_engine, "before_cursor_execute", capture)

        counter_sql = [s for s in statements if "usage_counters" in s]
        updates = [s for s in counter_sql if s.startswith("UPDATE usage_counters")]
        assert len(updates) == 1
        assert "usage_counters.stats_used < usage_counters.stats_limit" in updates[0]
        # nothing reads the counters before the increment
        assert not any(s.startswith("SELECT") for s in counter_sql[: counter_sql.index(updates[0])])

    def test_unknown_action_rejected(self, quota):
        with pytest.raises(ValueError, match="action must be one of"):
            quota.check_and_consume("user-1", "teleport")


class TestRefund:
    """Tests for QuotaLedger.refund."""

    def test_refund_gives_back_one_unit(self, quota):
        quota.check_and_consume("user-1", "evaluate")

        assert quota.refund("user-1", "evaluate") is True

        assert quota.read("user-1", "evaluate") == (0, 1)
        assert quota.count_entries("user-1", reason="refund") == 1

    def test_refund_with_nothing_used(self, quota):
        quota.ensure_row("user-1")

        assert quota.refund("user-1", "evaluate") is False
        assert quota.count_entries("user-1", reason="refund") == 0


class TestGrant:
    """Tests for limit grants and purchases."""

    def test_admin_adjustment_raises_limit(self, quota):
        entry = quota.grant("user-1", "stats", 5, note="goodwill")

        assert entry.reason == "admin_adjustment"
        assert entry.delta == 5
        assert quota.read("user-1", "stats") == (0, 7)

    def test_negative_adjustment_lowers_limit(self, quota):
        entry = quota.grant("user-1", "extract", -2)

        assert entry.direction == "debit"
        assert quota.read("user-1", "extract") == (0, 1)

    def test_negative_adjustment_cannot_go_below_zero(self, quota):
        with pytest.raises(ValueError, match="negative"):
            quota.grant("user-1", "evaluate", -5)

    def test_usage_is_not_a_grant_reason(self, quota):
        with pytest.raises(ValueError, match="reason must be one of"):
            quota.grant("user-1", "extract", 1, reason="usage")

    def test_only_admin_may_lower(self, quota):
        with pytest.raises(ValueError, match="only admin"):
            quota.grant("user-1", "extract", -1, reason="purchase")

    def test_apply_purchase(self, db_session, quota):
        purchase = UsagePurchase(
            user_id="user-1",
            extract_credits=10,
            stats_credits=0,
            evaluate_credits=5,
            video_credits=0,
            provider="stripe",
            provider_ref="pi_123",
        )
        db_session.add(purchase)
        db_session.flush()

        entries = quota.apply_purchase(purchase)

        assert [e.action_type for e in entries] == ["extract", "evaluate"]
        assert all(e.related_purchase_id == purchase.id for e in entries)
        assert quota.read("user-1", "extract") == (0, 13)
        assert quota.read("user-1", "evaluate") == (0, 6)


class TestLedgerQueries:
    """Tests for ledger listing and reconciliation."""

    def test_list_ledger_newest_first(self, quota):
        quota.check_and_consume("user-1", "extract")
        quota.check_and_consume("user-1", "stats")

        entries = quota.list_ledger("user-1")

        assert entries[0].action_type == "stats"
        assert entries[0].reason == "usage"
        assert len(entries) == 5

    def test_list_ledger_respects_limit(self, quota):
        quota.ensure_row("user-1")

        assert len(quota.list_ledger("user-1", limit=2)) == 2

    def test_reconcile_balanced(self, quota):
        quota.check_and_consume("user-1", "extract")
        quota.check_and_consume("user-1", "extract")
        quota.refund("user-1", "extract")

        results = {r.action: r for r in quota.reconcile("user-1")}

        assert results["extract"].used == 1
        assert results["extract"].usage_debits == 2
        assert results["extract"].refunds == 1
        assert all(r.balanced for r in results.values())

    def test_reconcile_detects_drift(self, db_session, quota):
        create_counters(db_session, stats_used=2)
        db_session.commit()

        results = {r.action: r for r in quota.reconcile("user-1")}

        assert results["stats"].drift == 2
        assert results["stats"].to_dict()["balanced"] is False
