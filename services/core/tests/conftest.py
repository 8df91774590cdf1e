"""Pytest configuration and fixtures for PropScout Core tests.

This module provides fixtures for:
- Database: SQLite in-memory with the models' schema
- HTTP client: AsyncClient for FastAPI testing
- Mocks: identity service, AI model, and listing page fetches
"""

import json
from collections.abc import AsyncGenerator, Generator
from typing import Any, Callable
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from propscout_core.config import Settings
from propscout_core.domain.models import Base
from propscout_core.domain.services.identity import IdentityVerifier
from propscout_core.domain.services.inference import (
    GenerateResponse,
    InferenceClient,
    ModelInfo,
)
from propscout_core.domain.services.listing_fetch import ListingFetcher

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"

# Bearer tokens accepted by the mock identity service
TOKENS = {
    "good-token": TEST_USER_ID,
    "other-token": OTHER_USER_ID,
}

LISTING_URL = "https://www.rightmove.co.uk/properties/170645465#/?channel=RES_BUY"

LISTING_HTML = """<html>
<head>
  <title>2 bedroom flat for sale in Hackney, London E8</title>
  <meta name="description" content="Guide price &pound;425,000. A bright two bedroom flat.">
  <style>body { color: red; }</style>
</head>
<body>
  <script>window.__STATE__ = {"price": 1};</script>
  <h1>Mare Street, London E8 3RH</h1>
  <p>Leasehold. 118 years remaining. Marketed by Acme Estates.</p>
</body>
</html>"""


# -----------------------------------------------------------------------------
# Test Settings
# -----------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        database_url="sqlite+pysqlite:///:memory:",
        identity_url="https://identity.test",
        openai_api_key="test-openai-key",
        max_sessions_per_user=3,
        default_extract_limit=10,
        default_stats_limit=5,
        default_evaluate_limit=5,
        default_video_limit=0,
        quota_failure_policy="fail_charged",
        log_json=False,
    )


@pytest.fixture
def refund_settings(test_settings) -> Settings:
    """Test settings with the refund-on-upstream-failure quota policy."""
    return test_settings.model_copy(update={"quota_failure_policy": "refund_on_upstream_failure"})


# -----------------------------------------------------------------------------
# Synchronous Database Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def sync_engine():
    """Create a synchronous SQLite in-memory engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Enable foreign key support for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # SQLite only autoincrements INTEGER PRIMARY KEY, so compile BIGINT as INTEGER
    from sqlalchemy.dialects import sqlite

    original_visit = sqlite.dialect.type_compiler_cls.visit_BIGINT
    sqlite.dialect.type_compiler_cls.visit_BIGINT = lambda self, type_, **kw: "INTEGER"

    Base.metadata.create_all(bind=engine)

    sqlite.dialect.type_compiler_cls.visit_BIGINT = original_visit

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine) -> sessionmaker[Session]:
    """Create a synchronous session factory."""
    return sessionmaker(
        bind=sync_engine,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture
def db_session(sync_session_factory) -> Generator[Session, None, None]:
    """Create a synchronous database session for testing."""
    session = sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# -----------------------------------------------------------------------------
# Collaborator Mocks
# -----------------------------------------------------------------------------


def make_generate_response(content: Any) -> GenerateResponse:
    """Wrap model output (a dict is JSON-encoded) in a GenerateResponse."""
    text = content if isinstance(content, str) else json.dumps(content)
    return GenerateResponse(
        content=text,
        model_info=ModelInfo(
            model_name="gpt-test",
            provider="openai",
            temperature=0.1,
            max_tokens=1000,
            input_tokens=10,
            output_tokens=20,
            latency_ms=5,
        ),
    )


@pytest.fixture
def mock_inference() -> AsyncMock:
    """Mock AI model client; set ``generate.return_value`` or ``side_effect`` per test."""
    client = AsyncMock(spec=InferenceClient)
    client.generate.return_value = make_generate_response({})
    return client


def identity_transport() -> httpx.MockTransport:
    """Mock identity service resolving the known test tokens."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path != "/auth/v1/user":
            return httpx.Response(404)
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        user_id = TOKENS.get(token)
        if user_id is None:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={"id": user_id, "aud": "authenticated"})

    return httpx.MockTransport(handler)


@pytest.fixture
def listing_pages() -> dict[str, Any]:
    """URL to (status, body) map served by the mock listing fetcher."""
    return {}


@pytest.fixture
def listing_fetcher(listing_pages) -> ListingFetcher:
    """ListingFetcher backed by a mock transport.

    Unknown URLs are served LISTING_HTML; entries in ``listing_pages`` override
    that with a (status, body) pair or an exception to raise.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        entry = listing_pages.get(str(request.url), (200, LISTING_HTML))
        if isinstance(entry, Exception):
            raise entry
        status_code, body = entry
        return httpx.Response(status_code, text=body)

    return ListingFetcher(timeout=1.0, transport=httpx.MockTransport(handler))


# -----------------------------------------------------------------------------
# FastAPI Test Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def test_app(
    test_settings, sync_engine, sync_session_factory, mock_inference, listing_fetcher
) -> FastAPI:
    """Create a FastAPI test application with test collaborators and DB override."""
    from propscout_core.api.deps import get_db, get_inference
    from propscout_core.domain.services.identity import get_identity_verifier
    from propscout_core.domain.services.listing_fetch import get_listing_fetcher
    from propscout_core.main import app

    app.state.settings = test_settings

    def override_get_db():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def override_get_inference():
        yield mock_inference

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_inference] = override_get_inference
    app.dependency_overrides[get_listing_fetcher] = lambda: listing_fetcher
    app.dependency_overrides[get_identity_verifier] = lambda: IdentityVerifier(
        base_url="https://identity.test", api_key="anon-key", transport=identity_transport()
    )

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an unauthenticated HTTP client for testing FastAPI endpoints.

    Note: The db_session fixture is included to ensure the test database
    is set up before the client is created.
    """
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def authenticated_client(test_app, db_session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client authenticated as TEST_USER_ID."""
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
        headers={"Authorization": "Bearer good-token"},
    ) as ac:
        yield ac


# -----------------------------------------------------------------------------
# Test Data Helpers
# -----------------------------------------------------------------------------


@pytest.fixture
def stats_output() -> Callable[..., dict[str, Any]]:
    """Build a stats model output with every required field annotated."""
    from tests.factories import build_stats_output

    return build_stats_output


@pytest.fixture
def evaluation_output() -> dict[str, Any]:
    """A well-formed evaluation model output."""
    return {
        "rank_score": 7.5,
        "overall_score": 72,
        "executive_summary": "Good value two bed close to the station.",
        "estate_agent_snippet": "Could you confirm the service charge?",
        "per_preference": {
            "budget": {"score": 8, "notes": "Under budget"},
            "commute": {"score": 7, "notes": "35 minutes door to door"},
        },
        "warnings": ["Lease under 125 years"],
        "assumptions": ["Service charge estimated"],
        "model_info": {"schema_version": 1},
    }
