"""Enrichment pipeline API routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from propscout_core.api.deps import CurrentUserId, DBSession, InferenceDep, ListingFetcherDep
from propscout_core.api.errors import to_http_exception
from propscout_core.api.schemas.pipeline import (
    ConfirmFactsRequest,
    ConfirmStatsRequest,
    EvaluateRequest,
    ExtractRequest,
    ExtractResponse,
    OkResponse,
    StatsRequest,
    StatusResponse,
)
from propscout_core.domain.errors import PipelineError
from propscout_core.domain.services.evaluation import EvaluationService
from propscout_core.domain.services.extract import ExtractService
from propscout_core.domain.services.facts import FactsService
from propscout_core.domain.services.listing_stats import ListingStatsService

router = APIRouter(tags=["pipeline"])


def get_extract_service(
    db: DBSession, inference: InferenceDep, fetcher: ListingFetcherDep
) -> ExtractService:
    """Get the extract service."""
    return ExtractService(db, inference_client=inference, fetcher=fetcher)


def get_facts_service(db: DBSession) -> FactsService:
    """Get the facts service."""
    return FactsService(db)


def get_stats_service(db: DBSession, inference: InferenceDep) -> ListingStatsService:
    """Get the stats service."""
    return ListingStatsService(db, inference_client=inference)


def get_evaluation_service(db: DBSession, inference: InferenceDep) -> EvaluationService:
    """Get the evaluation service."""
    return EvaluationService(db, inference_client=inference)


ExtractServiceDep = Annotated[ExtractService, Depends(get_extract_service)]
FactsServiceDep = Annotated[FactsService, Depends(get_facts_service)]
StatsServiceDep = Annotated[ListingStatsService, Depends(get_stats_service)]
EvaluationServiceDep = Annotated[EvaluationService, Depends(get_evaluation_service)]


@router.post("/extract", response_model=ExtractResponse, response_model_exclude_none=True)
async def extract(
    request: ExtractRequest,
    user_id: CurrentUserId,
    extract_service: ExtractServiceDep,
):
    """Extract listing facts from a Rightmove URL."""
    try:
        return await extract_service.extract(
            user_id=user_id,
            rightmove_url=request.rightmove_url,
            stage=request.stage,
        )
    except PipelineError as e:
        raise to_http_exception(e)


@router.post("/confirm", response_model=OkResponse)
async def confirm_facts(
    request: ConfirmFactsRequest,
    user_id: CurrentUserId,
    facts_service: FactsServiceDep,
):
    """Confirm (or correct) the extracted listing facts."""
    try:
        facts_service.confirm(user_id, request.session_id, request.facts)
    except PipelineError as e:
        raise to_http_exception(e)
    return OkResponse()


@router.post("/stats", response_model=StatusResponse)
async def compute_stats(
    request: StatsRequest,
    user_id: CurrentUserId,
    stats_service: StatsServiceDep,
):
    """Compute listing statistics."""
    try:
        return await stats_service.compute_stats(
            user_id, request.property_session_id, force_recalc=request.force_recalc
        )
    except PipelineError as e:
        raise to_http_exception(e)


@router.post("/stats/confirm", response_model=StatusResponse)
async def confirm_stats(
    request: ConfirmStatsRequest,
    user_id: CurrentUserId,
    stats_service: StatsServiceDep,
):
    """Confirm listing statistics that did not pass the confidence gate."""
    try:
        return stats_service.confirm_stats(user_id, request.property_session_id, request.stats)
    except PipelineError as e:
        raise to_http_exception(e)


@router.post("/evaluate", response_model=StatusResponse)
async def evaluate(
    request: EvaluateRequest,
    user_id: CurrentUserId,
    evaluation_service: EvaluationServiceDep,
):
    """Evaluate a listing against the user's preferences."""
    try:
        return await evaluation_service.evaluate(user_id, request.property_session_id)
    except PipelineError as e:
        raise to_http_exception(e)
