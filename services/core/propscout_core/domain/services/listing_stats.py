"""Compute-stats stage and manual stats confirmation.

The AI model returns one annotation per field (value, confidence, sources,
notes) plus batch-level confidence/source maps. Everything is stored on the
raw artifact; the confidence gate decides whether the required subset is
confirmed automatically or left for the user.
"""

from datetime import datetime, timezone
from typing import Any, Mapping

from propscout_core.domain.errors import (
    ConflictError,
    PreconditionFailedError,
    ValidationFailedError,
)
from propscout_core.domain.models import (
    ListingStatsConfirmed,
    ListingStatsRaw,
    PropertySession,
    SessionStatus,
    UsageAction,
    row_to_dict,
)
from propscout_core.domain.services.confidence_gate import (
    INT_FIELDS,
    REQUIRED_FIELDS,
    Confidence,
    build_auto_confirmed,
    evaluate_gate,
    validate_required_stats,
)
from propscout_core.domain.services.lifecycle import (
    CONFIRM_STATS_FROM,
    STATS_FORCE_FROM,
    STATS_FROM,
)
from propscout_core.domain.services.preferences import check_minimum_preferences
from propscout_core.domain.services.prompts import build_stats_prompt
from propscout_core.domain.services.stages import (
    AI_OUTPUT_UNPARSEABLE,
    StageOrchestrator,
    StageRun,
    to_int,
    to_str,
)
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

LISTING_NOT_CONFIRMED = "LISTING_NOT_CONFIRMED"
PREFERENCES_NOT_FOUND = "PREFERENCES_NOT_FOUND"
MIN_PREFS_MISSING = "MIN_PREFS_MISSING"

USER_CONFIRMED_NOTE = "Confirmed by user"

# Raw integer columns filled from field annotations
RAW_INT_FIELDS = (
    "commute_total_minutes",
    "commute_walk_minutes",
    "nearest_station_distance_m",
    "supermarket_distance_m",
    "gym_distance_m",
    "school_distance_m",
    "religious_building_distance_m",
    "green_space_distance_m",
    "safety_score",
    "cleanliness_score",
    "transport_convenience_score",
    "service_charge_estimate_annual",
    "ground_rent_estimate_annual",
)

# Raw string columns filled from field annotations
RAW_STR_FIELDS = (
    "commute_mode",
    "nearest_station_name",
    "supermarket_name",
    "gym_name",
    "school_name",
    "religious_building_name",
    "green_space_name",
    "running_costs_notes",
)


def _annotation_value(fields: Mapping[str, Any], name: str) -> Any:
    annotation = fields.get(name)
    if isinstance(annotation, Mapping):
        return annotation.get("value")
    return None


def _confidence_label(value: Any) -> str:
    parsed = Confidence.parse(value)
    return (parsed or Confidence.LOW).value


def _map_or_none(value: Any) -> Any:
    return value if isinstance(value, dict) else None


def build_raw_stats(parsed: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a decoded stats response into raw artifact columns.

    Missing numbers become 0 and missing text becomes an empty string.
    """
    fields = parsed.get("fields") or {}
    commute = fields.get("commute_total_minutes")
    commute = commute if isinstance(commute, Mapping) else {}

    raw: dict[str, Any] = {
        "stats_version": to_int(parsed.get("stats_version"), default=1),
        "commute_confidence": _confidence_label(commute.get("confidence")),
        "commute_notes": to_str(commute.get("notes")),
        "running_costs_confidence": _confidence_label(
            _annotation_value(fields, "running_costs_confidence")
        ),
        "required_confidence": _map_or_none(parsed.get("required_confidence")),
        "required_source": _map_or_none(parsed.get("required_source")),
        "optional_confidence": _map_or_none(parsed.get("optional_confidence")),
        "optional_source": _map_or_none(parsed.get("optional_source")),
        "fields_json": dict(fields),
    }
    for name in RAW_INT_FIELDS:
        raw[name] = to_int(_annotation_value(fields, name))
    for name in RAW_STR_FIELDS:
        raw[name] = to_str(_annotation_value(fields, name))
    return raw


class ListingStatsService(StageOrchestrator):
    """Runs the compute-stats stage and manual stats confirmation."""

    def _load_inputs(self, session: PropertySession, user_id: str) -> tuple[dict, dict]:
        """Confirmed facts and preferences, or PreconditionFailedError."""
        facts = session.facts_confirmed
        if facts is None:
            raise PreconditionFailedError(LISTING_NOT_CONFIRMED)

        prefs = self.preferences.get(user_id)
        if prefs is None:
            raise PreconditionFailedError(PREFERENCES_NOT_FOUND)

        prefs_dict = row_to_dict(prefs, exclude=("updated_at",))
        missing = check_minimum_preferences(prefs_dict)
        if missing:
            raise PreconditionFailedError(MIN_PREFS_MISSING, missing=missing)

        return row_to_dict(facts, exclude=("confirmed_at",)), prefs_dict

    async def compute_stats(
        self, user_id: str, session_id: str, force_recalc: bool = False
    ) -> dict[str, Any]:
        """Compute statistics for a session with confirmed facts.

        Args:
            user_id: The authenticated caller.
            session_id: The property session.
            force_recalc: Also allow recomputing from ready/evaluated states.

        Returns:
            ``{"ok": True, "status": <STATS_READY | STATS_NEEDS_CONFIRMATION>}``

        Raises:
            SessionNotFoundError, ForbiddenError: Ownership check failed.
            PreconditionFailedError: Facts unconfirmed or preferences incomplete.
            ConflictError: Session not in a state that allows stats.
            QuotaExceededError: No stats quota left.
            UpstreamFailureError: AI call failed or returned unusable output.
        """
        session = self.sessions.get_owned(session_id, user_id)
        run = StageRun(
            user_id=user_id,
            session_id=session_id,
            action=UsageAction.STATS,
            running_status=SessionStatus.STATS_RUNNING,
            failed_status=SessionStatus.STATS_FAILED,
            previous_status=session.status,
        )

        # Checked before the guard so a failure leaves the session untouched
        self._load_inputs(session, user_id)

        self.enter(run, STATS_FORCE_FROM if force_recalc else STATS_FROM)
        try:
            session = self.sessions.get_owned(session_id, user_id)
            facts, prefs = self._load_inputs(session, user_id)
        except PreconditionFailedError:
            self.revert(run)
            raise
        listing_url = session.rightmove_url

        self.consume(run)

        prompt = build_stats_prompt(facts, prefs, listing_url)
        parsed = await self.generate_json(run, prompt, self.settings.stats_max_tokens)
        if not isinstance(parsed.get("fields"), dict):
            self.fail(run, AI_OUTPUT_UNPARSEABLE, "stats output has no fields object")

        raw = build_raw_stats(parsed)
        now = datetime.now(timezone.utc)
        self.db.merge(ListingStatsRaw(property_session_id=session_id, computed_at=now, **raw))

        decision = evaluate_gate(parsed["fields"], raw["required_confidence"])
        if decision.auto_confirm:
            confirmed = build_auto_confirmed(
                raw,
                required_confidence=raw["required_confidence"],
                required_source=raw["required_source"],
                now=now,
            )
            self.db.merge(ListingStatsConfirmed(property_session_id=session_id, **confirmed))
            status = SessionStatus.STATS_READY
        else:
            logger.info(
                "Stats need confirmation",
                session_id=session_id,
                user_id=user_id,
                insufficient=decision.insufficient_fields,
            )
            status = SessionStatus.STATS_NEEDS_CONFIRMATION

        self.finish(run, status)
        return {"ok": True, "status": status.value}

    def confirm_stats(
        self, user_id: str, session_id: str, stats: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Store user-confirmed required stats, bypassing the confidence gate.

        Raises:
            SessionNotFoundError, ForbiddenError: Ownership check failed.
            ConflictError: Session is not exactly STATS_NEEDS_CONFIRMATION.
            ValidationFailedError: Required stats missing or mistyped.
        """
        session = self.sessions.get_owned(session_id, user_id)
        if session.status not in {s.value for s in CONFIRM_STATS_FROM}:
            raise ConflictError(status=session.status, reason="INVALID_STATE")

        missing = validate_required_stats(stats)
        if missing:
            raise ValidationFailedError(missing)

        values = {
            name: int(stats[name]) if name in INT_FIELDS else stats[name].strip()
            for name in REQUIRED_FIELDS
        }
        self.db.merge(
            ListingStatsConfirmed(
                property_session_id=session_id,
                required_confidence=_map_or_none(stats.get("required_confidence")),
                required_source=_map_or_none(stats.get("required_source")),
                notes=to_str(stats.get("notes"), default=None) or USER_CONFIRMED_NOTE,
                confirmed_by_user=True,
                confirmed_at=datetime.now(timezone.utc),
                **values,
            )
        )
        self.lifecycle.require_transition(
            session_id,
            user_id,
            CONFIRM_STATS_FROM,
            SessionStatus.STATS_READY,
            current_status=session.status,
            reason="INVALID_STATE",
        )
        logger.info("Stats confirmed by user", session_id=session_id, user_id=user_id)
        return {"ok": True, "status": SessionStatus.STATS_READY.value}
