"""Evaluate stage: score a listing against the user's preferences."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ValidationError, field_validator

from propscout_core.domain.errors import PreconditionFailedError
from propscout_core.domain.models import (
    ListingEvaluationRaw,
    PropertySession,
    SessionStatus,
    UsageAction,
    row_to_dict,
)
from propscout_core.domain.services.lifecycle import EVALUATE_FROM
from propscout_core.domain.services.listing_stats import (
    LISTING_NOT_CONFIRMED,
    PREFERENCES_NOT_FOUND,
)
from propscout_core.domain.services.prompts import build_evaluate_prompt
from propscout_core.domain.services.stages import (
    AI_OUTPUT_UNPARSEABLE,
    StageOrchestrator,
    StageRun,
)
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

STATS_NOT_READY = "STATS_NOT_READY"


class EvaluationOutput(BaseModel):
    """Evaluation as returned by the AI model."""

    rank_score: Optional[float] = None
    overall_score: Optional[float] = None
    executive_summary: Optional[str] = None
    estate_agent_snippet: Optional[str] = None
    per_preference: Optional[dict[str, Any]] = None
    warnings: Optional[list] = None
    assumptions: Optional[list] = None
    model_info: Optional[dict[str, Any]] = None

    @field_validator("executive_summary", "estate_agent_snippet", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return v if isinstance(v, str) else str(v)

    def to_storage_format(self) -> dict[str, Any]:
        """Column values for the evaluation artifact."""
        return {
            "rank_score": self.rank_score,
            "overall_score": self.overall_score,
            "executive_summary": self.executive_summary or "",
            "estate_agent_snippet": self.estate_agent_snippet or "",
            "per_preference": self.per_preference or {},
            "warnings": self.warnings,
            "assumptions": self.assumptions,
            "model_info": self.model_info or {"schema_version": 1},
        }


class EvaluationService(StageOrchestrator):
    """Runs the evaluate stage."""

    def _load_inputs(self, session: PropertySession, user_id: str) -> tuple[dict, dict, dict]:
        """Confirmed facts, confirmed stats and preferences, or PreconditionFailedError."""
        facts = session.facts_confirmed
        if facts is None:
            raise PreconditionFailedError(LISTING_NOT_CONFIRMED)

        stats = session.stats_confirmed
        if stats is None:
            raise PreconditionFailedError(STATS_NOT_READY)

        prefs = self.preferences.get(user_id)
        if prefs is None:
            raise PreconditionFailedError(PREFERENCES_NOT_FOUND)

        return (
            row_to_dict(facts, exclude=("confirmed_at",)),
            row_to_dict(stats),
            row_to_dict(prefs, exclude=("updated_at",)),
        )

    async def evaluate(self, user_id: str, session_id: str) -> dict[str, Any]:
        """Evaluate a session with confirmed facts and stats.

        Returns:
            ``{"ok": True, "status": "AI_READY"}``

        Raises:
            SessionNotFoundError, ForbiddenError: Ownership check failed.
            PreconditionFailedError: Facts or stats unconfirmed, or no preferences.
            ConflictError: Session not in a state that allows evaluation.
            QuotaExceededError: No evaluate quota left.
            UpstreamFailureError: AI call failed or returned unusable output.
        """
        session = self.sessions.get_owned(session_id, user_id)
        run = StageRun(
            user_id=user_id,
            session_id=session_id,
            action=UsageAction.EVALUATE,
            running_status=SessionStatus.EVAL_RUNNING,
            failed_status=SessionStatus.EVAL_FAILED,
            previous_status=session.status,
        )

        self._load_inputs(session, user_id)

        self.enter(run, EVALUATE_FROM)
        try:
            session = self.sessions.get_owned(session_id, user_id)
            facts, stats, prefs = self._load_inputs(session, user_id)
        except PreconditionFailedError:
            self.revert(run)
            raise
        listing_url = session.rightmove_url

        self.consume(run)

        prompt = build_evaluate_prompt(facts, stats, prefs, listing_url)
        parsed = await self.generate_json(run, prompt, self.settings.evaluate_max_tokens)
        try:
            output = EvaluationOutput.model_validate(parsed)
        except ValidationError as e:
            self.fail(run, AI_OUTPUT_UNPARSEABLE, f"evaluation output invalid: {e}")

        self.db.merge(
            ListingEvaluationRaw(
                property_session_id=session_id,
                evaluated_at=datetime.now(timezone.utc),
                **output.to_storage_format(),
            )
        )
        self.finish(run, SessionStatus.AI_READY)
        return {"ok": True, "status": SessionStatus.AI_READY.value}
