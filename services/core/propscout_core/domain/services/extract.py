"""Extract stage: listing URL to raw facts awaiting user confirmation.

The stage can be cut short for debugging with ``stage``:

    auth   -> caller identity only
    quota  -> also consume one extract unit
    fetch  -> also fetch the listing page and return snippets
    openai -> also ask the AI model for facts
    full   -> also find-or-create the session and persist raw facts
"""

from datetime import datetime, timezone
from typing import Any, NoReturn, Optional

from pydantic import BaseModel, field_validator

from propscout_core.domain.errors import (
    QuotaExceededError,
    UpstreamFailureError,
    ValidationFailedError,
)
from propscout_core.domain.models import ListingFactsRaw, SessionStatus, UsageAction
from propscout_core.domain.services.inference import (
    WEB_SEARCH,
    InferenceError,
    MissingCredentialError,
)
from propscout_core.domain.services.lifecycle import EXTRACT_FROM
from propscout_core.domain.services.listing_fetch import (
    ListingFetcher,
    ListingFetchError,
    extract_snippets,
)
from propscout_core.domain.services.prompts import build_extract_prompt
from propscout_core.domain.services.sessions import parse_listing_id
from propscout_core.domain.services.stages import (
    AI_UPSTREAM_ERROR,
    StageOrchestrator,
    log_model_call,
    to_int,
)
from propscout_core.domain.services.structured_output import (
    StructuredOutputError,
    decode_structured_output,
)
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

STAGES = ("auth", "quota", "fetch", "openai", "full")

LISTING_FETCH_FAILED = "LISTING_FETCH_FAILED"

CREDENTIAL_MISSING_WARNING = "AI model credential missing; skipping AI extraction"
UNPARSEABLE_WARNING = "AI returned non-JSON or empty output"


class ExtractedFacts(BaseModel):
    """Listing facts as returned by the AI model, loosely typed."""

    price: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    property_type: Optional[str] = None
    tenure: Optional[str] = None
    lease_years_remaining: Optional[int] = None
    postcode: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    estate_agent: Optional[str] = None
    ai_confidence: Optional[dict] = None
    ai_warnings: Optional[list] = None

    @field_validator("price", "bedrooms", "bathrooms", "lease_years_remaining", mode="before")
    @classmethod
    def coerce_int(cls, v: Any) -> Optional[int]:
        return to_int(v, default=None)

    @field_validator(
        "property_type", "tenure", "postcode", "address", "description", "estate_agent",
        mode="before",
    )
    @classmethod
    def coerce_str(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, (dict, list)):
            return None
        text = str(v).strip()
        return text or None

    @field_validator("ai_confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, v: Any) -> Optional[dict]:
        return v if isinstance(v, dict) else None

    @field_validator("ai_warnings", mode="before")
    @classmethod
    def coerce_warnings(cls, v: Any) -> Optional[list]:
        if v is None:
            return None
        if isinstance(v, str):
            return [v]
        return [str(w) for w in v] if isinstance(v, list) else None


def _warning_facts(warning: str) -> dict[str, Any]:
    return ExtractedFacts(ai_warnings=[warning], ai_confidence={"overall": 0}).model_dump()


class ExtractService(StageOrchestrator):
    """Runs the extract stage."""

    def __init__(
        self,
        db,
        inference_client=None,
        fetcher: Optional[ListingFetcher] = None,
        settings=None,
    ):
        super().__init__(db, inference_client=inference_client, settings=settings)
        self.fetcher = fetcher or ListingFetcher(
            timeout=self.settings.listing_fetch_timeout,
            user_agent=self.settings.listing_fetch_user_agent,
        )

    def _upstream_failed(self, user_id: str, reason: str, message: str) -> NoReturn:
        # No session exists yet; only the quota policy applies
        if self.refunds_on_failure:
            self.quota.refund(
                user_id, UsageAction.EXTRACT, note=f"extract refunded after {reason}"
            )
        logger.warning("Extract failed", user_id=user_id, reason=reason, error=message)
        raise UpstreamFailureError(reason, message)

    async def _extract_facts(
        self, user_id: str, rightmove_url: str, snippets: list[str]
    ) -> dict[str, Any]:
        """Ask the AI model for listing facts.

        A missing credential or unparseable output yields a facts payload
        carrying a warning instead of an error.
        """
        if self.inference_client is None:
            return _warning_facts(CREDENTIAL_MISSING_WARNING)

        try:
            response = await self.inference_client.generate(
                build_extract_prompt(rightmove_url, snippets),
                tools=[WEB_SEARCH],
                max_tokens=self.settings.extract_max_tokens,
                temperature=self.settings.ai_temperature,
            )
        except MissingCredentialError:
            logger.warning("Extract running without AI credential", user_id=user_id)
            return _warning_facts(CREDENTIAL_MISSING_WARNING)
        except InferenceError as e:
            self._upstream_failed(user_id, AI_UPSTREAM_ERROR, str(e))

        log_model_call(response, UsageAction.EXTRACT, user_id=user_id)

        try:
            parsed = decode_structured_output(response.content)
        except StructuredOutputError as e:
            logger.warning("Extract output unparseable", user_id=user_id, error=str(e))
            return _warning_facts(UNPARSEABLE_WARNING)

        return ExtractedFacts.model_validate(parsed).model_dump()

    def _write_facts(self, session_id: str, facts: dict[str, Any]) -> None:
        """Upsert the session's raw facts."""
        self.db.merge(
            ListingFactsRaw(
                property_session_id=session_id,
                extracted_at=datetime.now(timezone.utc),
                **facts,
            )
        )

    async def extract(
        self,
        user_id: str,
        rightmove_url: Optional[str] = None,
        stage: str = "full",
    ) -> dict[str, Any]:
        """Run the extract stage up to ``stage``.

        Args:
            user_id: The authenticated caller.
            rightmove_url: The listing URL (required past the quota stage).
            stage: Where to stop.

        Returns:
            Response payload for the stage reached.

        Raises:
            ValidationFailedError: Unknown stage or missing URL.
            QuotaExceededError: No extract quota left.
            UpstreamFailureError: Listing fetch or AI call failed.
            MaxLinksReachedError: Session cap reached.
            ConflictError: Session is mid-stage.
        """
        if stage not in STAGES:
            raise ValidationFailedError(["stage"])

        if stage == "auth":
            return {"ok": True, "stage": "auth", "user_id": user_id}

        url = (rightmove_url or "").strip()
        if stage != "quota" and not url:
            raise ValidationFailedError(["rightmove_url"])

        quota = self.quota.check_and_consume(
            user_id, UsageAction.EXTRACT, note="extract invoked"
        )
        if not quota.ok:
            raise QuotaExceededError(UsageAction.EXTRACT.value, quota.used, quota.limit)

        if stage == "quota":
            return {"ok": True, "stage": "quota", "user_id": user_id, "quota": quota.to_dict()}

        listing_id = parse_listing_id(url)

        try:
            page = await self.fetcher.fetch(url)
        except ListingFetchError as e:
            self._upstream_failed(user_id, LISTING_FETCH_FAILED, str(e))
        snippets = extract_snippets(page)

        payload: dict[str, Any] = {
            "ok": True,
            "stage": "fetch",
            "user_id": user_id,
            "listing_id": listing_id,
            "snippets": snippets,
        }
        if stage == "fetch":
            return payload

        facts = await self._extract_facts(user_id, url, snippets)
        payload.update(stage="openai", facts=facts)
        if stage == "openai":
            return payload

        session = self.sessions.find_or_create(user_id, url, listing_id)
        self._write_facts(session.id, facts)
        self.lifecycle.require_transition(
            session.id,
            user_id,
            EXTRACT_FROM,
            SessionStatus.NEEDS_CONFIRMATION,
            last_extracted_at=datetime.now(timezone.utc),
        )

        logger.info(
            "Extract complete",
            user_id=user_id,
            session_id=session.id,
            listing_id=listing_id,
            warnings=len(facts.get("ai_warnings") or []),
        )
        payload.update(stage="full", session_id=session.id)
        return payload
