"""Usage quota and ledger service for PropScout.

Counters hold a (used, limit) pair per metered action. Every change to them is
mirrored by an append-only ledger row; ledger rows are never updated or
deleted. Consumption is a single conditional increment, so two concurrent
callers cannot both take the last unit.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session as DBSession

from propscout_core.config import get_settings
from propscout_core.domain.models import (
    LedgerDirection,
    LedgerReason,
    UsageAction,
    UsageCounters,
    UsageLedgerEntry,
    UsagePurchase,
)
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

# Reasons that may raise a limit
GRANT_REASONS = {
    LedgerReason.FREE_GRANT,
    LedgerReason.PURCHASE,
    LedgerReason.ADMIN_ADJUSTMENT,
}


@dataclass
class QuotaResult:
    """Outcome of a check-and-consume call."""

    ok: bool
    action: str
    used: int
    limit: int

    def to_dict(self) -> dict:
        return {"ok": self.ok, "action": self.action, "used": self.used, "limit": self.limit}


@dataclass
class Reconciliation:
    """Counter vs. ledger comparison for one action."""

    action: str
    used: int
    usage_debits: int
    refunds: int

    @property
    def expected_used(self) -> int:
        return self.usage_debits - self.refunds

    @property
    def drift(self) -> int:
        return self.used - self.expected_used

    @property
    def balanced(self) -> bool:
        return self.drift == 0

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "used": self.used,
            "ledger_usage": self.usage_debits,
            "ledger_refunds": self.refunds,
            "drift": self.drift,
            "balanced": self.balanced,
        }


def insert_if_absent(dialect_name: str, values: dict):
    """Build an INSERT for a counters row that does nothing if the row exists.

    The statement reports one affected row only when it inserted. MySQL uses
    INSERT IGNORE because an upsert counts a matched row as affected when the
    connection sets FOUND_ROWS, which SQLAlchemy always does.
    """
    if dialect_name == "mysql":
        return mysql.insert(UsageCounters).values(**values).prefix_with("IGNORE")
    if dialect_name == "postgresql":
        return postgresql.insert(UsageCounters).values(**values).on_conflict_do_nothing()
    return sqlite.insert(UsageCounters).values(**values).on_conflict_do_nothing()


def _action(action: Union[str, UsageAction]) -> UsageAction:
    try:
        return UsageAction(action)
    except ValueError:
        raise ValueError(
            f"action must be one of {[a.value for a in UsageAction]}, got '{action}'"
        )


class QuotaLedger:
    """Service for quota checks and ledger accounting."""

    def __init__(self, db: DBSession, default_limits: Optional[dict[str, int]] = None):
        """Initialize the quota ledger.

        Args:
            db: SQLAlchemy database session.
            default_limits: Limits for a new counters row (defaults from settings).
        """
        self.db = db
        self.default_limits = default_limits or get_settings().default_limits()

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def _columns(self, action: UsageAction):
        return (
            getattr(UsageCounters, f"{action.value}_used"),
            getattr(UsageCounters, f"{action.value}_limit"),
        )

    def ensure_row(self, user_id: str) -> bool:
        """Create the user's counters row with default limits if missing.

        Idempotent. A freshly created row gets one free_grant ledger credit per
        action with a positive default limit.

        Args:
            user_id: The user ID.

        Returns:
            True if the row was created by this call.
        """
        values = {"user_id": user_id}
        for action in UsageAction:
            values[f"{action.value}_used"] = 0
            values[f"{action.value}_limit"] = int(self.default_limits.get(action.value, 0))

        stmt = insert_if_absent(self.db.get_bind().dialect.name, values)
        created = self.db.execute(stmt).rowcount == 1
        if created:
            for action in UsageAction:
                limit = values[f"{action.value}_limit"]
                if limit > 0:
                    self._append(
                        user_id=user_id,
                        action=action,
                        delta=limit,
                        reason=LedgerReason.FREE_GRANT,
                        direction=LedgerDirection.CREDIT,
                        amount=limit,
                        note="Default allowance",
                    )
            logger.info("Usage counters created", user_id=user_id)
        self.db.flush()
        return created

    def get_counters(self, user_id: str) -> UsageCounters:
        """Get (creating if needed) the user's counters row."""
        self.ensure_row(user_id)
        counters = self.db.query(UsageCounters).filter(UsageCounters.user_id == user_id).one()
        self.db.refresh(counters)
        return counters

    def read(self, user_id: str, action: Union[str, UsageAction]) -> tuple[int, int]:
        """Read (used, limit) for an action straight from the database."""
        used_col, limit_col = self._columns(_action(action))
        row = (
            self.db.query(used_col, limit_col)
            .filter(UsageCounters.user_id == user_id)
            .first()
        )
        if row is None:
            return 0, 0
        return int(row[0]), int(row[1])

    # -------------------------------------------------------------------------
    # Consumption
    # -------------------------------------------------------------------------

    def check_and_consume(
        self,
        user_id: str,
        action: Union[str, UsageAction],
        session_id: Optional[str] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> QuotaResult:
        """Consume one unit of quota for an action if any remains.

        The check and the increment are one conditional UPDATE
        (``used = used + 1 WHERE used < limit``); the row count decides.
        A successful consume appends exactly one usage debit in the same
        transaction.

        Args:
            user_id: The user ID.
            action: The metered action.
            session_id: Optional session to link the ledger row to.
            note: Optional ledger note.
            commit: Commit immediately so the charge survives later failures.

        Returns:
            QuotaResult; ``ok=False`` means nothing was written.
        """
        act = _action(action)
        self.ensure_row(user_id)
        used_col, limit_col = self._columns(act)

        updated = (
            self.db.query(UsageCounters)
            .filter(UsageCounters.user_id == user_id, used_col < limit_col)
            .update(
                {
                    used_col: used_col + 1,
                    UsageCounters.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )

        if updated == 0:
            used, limit = self.read(user_id, act)
            if commit:
                self.db.commit()
            logger.info(
                "Quota exhausted",
                user_id=user_id,
                action=act.value,
                used=used,
                limit=limit,
            )
            return QuotaResult(ok=False, action=act.value, used=used, limit=limit)

        self._append(
            user_id=user_id,
            action=act,
            delta=-1,
            reason=LedgerReason.USAGE,
            direction=LedgerDirection.DEBIT,
            amount=1,
            note=note or f"{act.value} invoked",
            related_session_id=session_id,
        )
        used, limit = self.read(user_id, act)

        if commit:
            self.db.commit()
        else:
            self.db.flush()

        logger.info(
            "Quota consumed",
            user_id=user_id,
            action=act.value,
            used=used,
            limit=limit,
            session_id=session_id,
        )
        return QuotaResult(ok=True, action=act.value, used=used, limit=limit)

    def refund(
        self,
        user_id: str,
        action: Union[str, UsageAction],
        session_id: Optional[str] = None,
        note: Optional[str] = None,
        commit: bool = True,
    ) -> bool:
        """Give back one unit of consumed quota.

        Returns:
            True if a unit was refunded, False if nothing was in use.
        """
        act = _action(action)
        used_col, _ = self._columns(act)

        updated = (
            self.db.query(UsageCounters)
            .filter(UsageCounters.user_id == user_id, used_col > 0)
            .update(
                {
                    used_col: used_col - 1,
                    UsageCounters.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            return False

        self._append(
            user_id=user_id,
            action=act,
            delta=1,
            reason=LedgerReason.REFUND,
            direction=LedgerDirection.CREDIT,
            amount=1,
            note=note or f"{act.value} refunded",
            related_session_id=session_id,
        )
        if commit:
            self.db.commit()
        else:
            self.db.flush()

        logger.info("Quota refunded", user_id=user_id, action=act.value, session_id=session_id)
        return True

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def grant(
        self,
        user_id: str,
        action: Union[str, UsageAction],
        amount: int,
        reason: Union[str, LedgerReason] = LedgerReason.ADMIN_ADJUSTMENT,
        note: Optional[str] = None,
        purchase_id: Optional[int] = None,
    ) -> UsageLedgerEntry:
        """Raise (or, for a negative admin adjustment, lower) an action's limit.

        Raises:
            ValueError: If the reason is not a grant reason, the amount is zero,
                or a negative amount is used with a non-admin reason.
        """
        act = _action(action)
        reason = LedgerReason(reason)
        if reason not in GRANT_REASONS:
            raise ValueError(f"reason must be one of {sorted(r.value for r in GRANT_REASONS)}")
        if amount == 0:
            raise ValueError("amount must be non-zero")
        if amount < 0 and reason != LedgerReason.ADMIN_ADJUSTMENT:
            raise ValueError("only admin adjustments may lower a limit")

        self.ensure_row(user_id)
        _, limit_col = self._columns(act)

        query = self.db.query(UsageCounters).filter(UsageCounters.user_id == user_id)
        if amount < 0:
            query = query.filter(limit_col + amount >= 0)
        updated = query.update(
            {
                limit_col: limit_col + amount,
                UsageCounters.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        if updated == 0:
            raise ValueError("adjustment would make the limit negative")

        entry = self._append(
            user_id=user_id,
            action=act,
            delta=amount,
            reason=reason,
            direction=LedgerDirection.CREDIT if amount > 0 else LedgerDirection.DEBIT,
            amount=abs(amount),
            note=note,
            related_purchase_id=purchase_id,
        )
        self.db.flush()
        return entry

    def apply_purchase(self, purchase: UsagePurchase) -> list[UsageLedgerEntry]:
        """Credit every action included in a purchase."""
        entries = []
        for action in UsageAction:
            credits = getattr(purchase, f"{action.value}_credits") or 0
            if credits > 0:
                entries.append(
                    self.grant(
                        purchase.user_id,
                        action,
                        credits,
                        reason=LedgerReason.PURCHASE,
                        note=f"Purchase {purchase.provider_ref or purchase.id}",
                        purchase_id=purchase.id,
                    )
                )
        return entries

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def _append(
        self,
        user_id: str,
        action: UsageAction,
        delta: int,
        reason: LedgerReason,
        direction: Optional[LedgerDirection] = None,
        amount: Optional[int] = None,
        note: Optional[str] = None,
        related_session_id: Optional[str] = None,
        related_purchase_id: Optional[int] = None,
    ) -> UsageLedgerEntry:
        entry = UsageLedgerEntry(
            user_id=user_id,
            action_type=action.value,
            delta=delta,
            reason=reason.value,
            direction=direction.value if direction else None,
            amount=amount,
            note=note,
            related_session_id=related_session_id,
            related_purchase_id=related_purchase_id,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(entry)
        return entry

    def list_ledger(self, user_id: str, limit: int = 50) -> list[UsageLedgerEntry]:
        """Newest ledger rows first."""
        return (
            self.db.query(UsageLedgerEntry)
            .filter(UsageLedgerEntry.user_id == user_id)
            .order_by(UsageLedgerEntry.created_at.desc(), UsageLedgerEntry.id.desc())
            .limit(limit)
            .all()
        )

    def list_purchases(self, user_id: str, limit: int = 20) -> list[UsagePurchase]:
        """Newest purchases first."""
        return (
            self.db.query(UsagePurchase)
            .filter(UsagePurchase.user_id == user_id)
            .order_by(UsagePurchase.created_at.desc(), UsagePurchase.id.desc())
            .limit(limit)
            .all()
        )

    def count_entries(
        self,
        user_id: str,
        action: Optional[Union[str, UsageAction]] = None,
        reason: Optional[Union[str, LedgerReason]] = None,
    ) -> int:
        """Count ledger rows with optional filtering."""
        query = self.db.query(UsageLedgerEntry).filter(UsageLedgerEntry.user_id == user_id)
        if action:
            query = query.filter(UsageLedgerEntry.action_type == _action(action).value)
        if reason:
            query = query.filter(UsageLedgerEntry.reason == LedgerReason(reason).value)
        return query.count()

    def reconcile(self, user_id: str) -> list[Reconciliation]:
        """Compare each action's ``used`` counter with the ledger.

        ``used`` must equal the number of usage debits minus refunds.
        """
        rows = (
            self.db.query(
                UsageLedgerEntry.action_type,
                UsageLedgerEntry.reason,
                func.sum(UsageLedgerEntry.delta),
            )
            .filter(
                UsageLedgerEntry.user_id == user_id,
                UsageLedgerEntry.reason.in_(
                    [LedgerReason.USAGE.value, LedgerReason.REFUND.value]
                ),
            )
            .group_by(UsageLedgerEntry.action_type, UsageLedgerEntry.reason)
            .all()
        )
        sums = {(action_type, reason): int(total or 0) for action_type, reason, total in rows}

        results = []
        for action in UsageAction:
            used, _ = self.read(user_id, action)
            results.append(
                Reconciliation(
                    action=action.value,
                    used=used,
                    usage_debits=-sums.get((action.value, LedgerReason.USAGE.value), 0),
                    refunds=sums.get((action.value, LedgerReason.REFUND.value), 0),
                )
            )

        drifted = [r.action for r in results if not r.balanced]
        if drifted:
            logger.warning("Ledger drift detected", user_id=user_id, actions=drifted)
        return results
