"""Domain services for PropScout."""

from propscout_core.domain.services.evaluation import EvaluationService
from propscout_core.domain.services.extract import ExtractService
from propscout_core.domain.services.facts import FactsService
from propscout_core.domain.services.lifecycle import SessionLifecycle
from propscout_core.domain.services.listing_stats import ListingStatsService
from propscout_core.domain.services.preferences import PreferencesService
from propscout_core.domain.services.quota import QuotaLedger
from propscout_core.domain.services.sessions import PropertySessionService

__all__ = [
    "EvaluationService",
    "ExtractService",
    "FactsService",
    "ListingStatsService",
    "PreferencesService",
    "PropertySessionService",
    "QuotaLedger",
    "SessionLifecycle",
]
