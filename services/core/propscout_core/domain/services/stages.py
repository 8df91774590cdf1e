"""Shared machinery for the quota-metered, AI-backed stages.

A stage run is: guarded transition into a RUNNING status, precondition
checks (reverting the transition on failure), quota consumption (reverting on
exhaustion), one AI call, a best-effort decode of its output, persistence and
a guarded transition out of RUNNING. Failures after quota is spent move the
session to the stage's FAILED status and are handled by the configured quota
failure policy.
"""

import math
from dataclasses import dataclass
from typing import Any, NoReturn, Optional

from sqlalchemy.orm import Session as DBSession

from propscout_core.config import Settings, get_settings
from propscout_core.domain.errors import (
    ConflictError,
    QuotaExceededError,
    UpstreamFailureError,
)
from propscout_core.domain.models import SessionStatus, UsageAction
from propscout_core.domain.services.inference import (
    WEB_SEARCH,
    GenerateResponse,
    InferenceClient,
    InferenceError,
    MissingCredentialError,
)
from propscout_core.domain.services.lifecycle import SessionLifecycle
from propscout_core.domain.services.preferences import PreferencesService
from propscout_core.domain.services.quota import QuotaLedger
from propscout_core.domain.services.sessions import PropertySessionService
from propscout_core.domain.services.structured_output import (
    StructuredOutputError,
    decode_structured_output,
)
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

REFUND_ON_UPSTREAM_FAILURE = "refund_on_upstream_failure"

AI_CREDENTIAL_MISSING = "AI_CREDENTIAL_MISSING"
AI_UPSTREAM_ERROR = "AI_UPSTREAM_ERROR"
AI_OUTPUT_UNPARSEABLE = "AI_OUTPUT_UNPARSEABLE"


def log_model_call(response: GenerateResponse, action: UsageAction, **fields: Any) -> None:
    """Log model, token usage and latency of one AI call."""
    info = response.model_info
    logger.info(
        "Model call finished",
        action=action.value,
        model=info.model_name,
        input_tokens=info.input_tokens,
        output_tokens=info.output_tokens,
        latency_ms=info.latency_ms,
        **fields,
    )


@dataclass
class StageRun:
    """One in-flight stage run for a session."""

    user_id: str
    session_id: str
    action: UsageAction
    running_status: SessionStatus
    failed_status: SessionStatus
    previous_status: str


class StageOrchestrator:
    """Base class for stage services."""

    def __init__(
        self,
        db: DBSession,
        inference_client: Optional[InferenceClient] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the stage service.

        Args:
            db: SQLAlchemy database session.
            inference_client: AI model client.
            settings: Application settings (defaults to cached settings).
        """
        self.db = db
        self.inference_client = inference_client
        self.settings = settings or get_settings()
        self.lifecycle = SessionLifecycle(db)
        self.quota = QuotaLedger(db, default_limits=self.settings.default_limits())
        self.sessions = PropertySessionService(
            db, max_sessions=self.settings.max_sessions_per_user
        )
        self.preferences = PreferencesService(db)

    @property
    def refunds_on_failure(self) -> bool:
        return self.settings.quota_failure_policy == REFUND_ON_UPSTREAM_FAILURE

    # -------------------------------------------------------------------------
    # Lifecycle helpers
    # -------------------------------------------------------------------------

    def enter(self, run: StageRun, from_statuses) -> None:
        """Guarded transition into the RUNNING status, or ConflictError."""
        if not self.lifecycle.guarded_transition(
            run.session_id, run.user_id, from_statuses, run.running_status
        ):
            raise ConflictError(status=self.lifecycle.current_status(run.session_id))

    def revert(self, run: StageRun) -> None:
        """Undo ``enter`` after a precondition or quota failure."""
        # Drop anything pending so the revert commits alone
        self.db.rollback()
        if not self.lifecycle.revert(
            run.session_id, run.user_id, run.running_status, run.previous_status
        ):
            logger.warning(
                "Revert skipped, session no longer running",
                session_id=run.session_id,
                user_id=run.user_id,
                running_status=run.running_status.value,
            )

    def finish(self, run: StageRun, to_status: SessionStatus, **extra_values) -> None:
        """Guarded transition out of RUNNING, committing pending artifacts."""
        if not self.lifecycle.guarded_transition(
            run.session_id, run.user_id, {run.running_status}, to_status, **extra_values
        ):
            raise ConflictError(status=self.lifecycle.current_status(run.session_id))
        logger.info(
            "Stage finished",
            session_id=run.session_id,
            user_id=run.user_id,
            action=run.action.value,
            status=to_status.value,
        )

    def fail(self, run: StageRun, reason: str, message: Optional[str] = None) -> NoReturn:
        """Record an upstream failure after quota was spent and raise it."""
        self.db.rollback()
        self.lifecycle.guarded_transition(
            run.session_id, run.user_id, {run.running_status}, run.failed_status
        )
        if self.refunds_on_failure:
            self.quota.refund(
                run.user_id,
                run.action,
                session_id=run.session_id,
                note=f"{run.action.value} refunded after {reason}",
            )
        logger.warning(
            "Stage failed",
            session_id=run.session_id,
            user_id=run.user_id,
            action=run.action.value,
            reason=reason,
            error=message,
        )
        raise UpstreamFailureError(reason, message, status=run.failed_status.value)

    # -------------------------------------------------------------------------
    # Quota and AI
    # -------------------------------------------------------------------------

    def consume(self, run: StageRun) -> None:
        """Consume one unit of the stage's quota, reverting on exhaustion."""
        result = self.quota.check_and_consume(
            run.user_id,
            run.action,
            session_id=run.session_id,
            note=f"{run.action.value} invoked",
        )
        if not result.ok:
            self.revert(run)
            raise QuotaExceededError(run.action.value, result.used, result.limit)

    async def generate_json(self, run: StageRun, prompt: str, max_tokens: int) -> dict[str, Any]:
        """Call the AI model and decode a JSON object from its output.

        Any failure moves the session to the stage's FAILED status.
        """
        if self.inference_client is None:
            self.fail(run, AI_CREDENTIAL_MISSING, "AI model is not configured")

        try:
            response = await self.inference_client.generate(
                prompt,
                tools=[WEB_SEARCH],
                max_tokens=max_tokens,
                temperature=self.settings.ai_temperature,
            )
        except MissingCredentialError as e:
            self.fail(run, AI_CREDENTIAL_MISSING, str(e))
        except InferenceError as e:
            self.fail(run, AI_UPSTREAM_ERROR, str(e))

        log_model_call(response, run.action, user_id=run.user_id, session_id=run.session_id)

        try:
            return decode_structured_output(response.content)
        except StructuredOutputError as e:
            self.fail(run, AI_OUTPUT_UNPARSEABLE, str(e))


def to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Coerce a loosely typed model value to an int."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value)) if math.isfinite(value) else default
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").lstrip("£$")
        try:
            number = float(cleaned)
        except ValueError:
            return default
        return int(round(number)) if math.isfinite(number) else default
    return default


def to_str(value: Any, default: Optional[str] = "") -> Optional[str]:
    """Coerce a loosely typed model value to a string."""
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)
