"""Integration tests for the session listing endpoint."""

from datetime import timedelta

import pytest

from propscout_core.domain.models import SessionStatus
from tests.factories import (
    create_evaluation,
    create_property_session,
    create_stats_ready_session,
    utcnow,
)


class TestListSessions:
    """Tests for GET /sessions."""

    @pytest.mark.asyncio
    async def test_requires_auth(self, client):
        response = await client.get("/sessions")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_empty(self, authenticated_client):
        response = await authenticated_client.get("/sessions")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "sessions": []}

    @pytest.mark.asyncio
    async def test_only_own_sessions_newest_first(self, authenticated_client, db_session):
        older = create_property_session(db_session, created_at=utcnow() - timedelta(days=2))
        newer = create_property_session(db_session, status=SessionStatus.NEEDS_CONFIRMATION)
        create_property_session(db_session, user_id="user-2")
        db_session.commit()

        sessions = (await authenticated_client.get("/sessions")).json()["sessions"]

        assert [s["id"] for s in sessions] == [newer.id, older.id]
        assert sessions[0]["status"] == "NEEDS_CONFIRMATION"
        assert sessions[0]["listing_facts_raw"] is None
        assert sessions[0]["evaluation_state"] == "missing"

    @pytest.mark.asyncio
    async def test_artifacts_are_embedded(self, authenticated_client, db_session):
        session = create_stats_ready_session(db_session)
        db_session.commit()

        body = (await authenticated_client.get("/sessions")).json()["sessions"][0]

        assert body["id"] == session.id
        assert body["listing_facts_confirmed"]["postcode"] == "E8 3RH"
        assert body["listing_stats_raw"]["nearest_station_name"] == "Hackney Central"
        assert body["listing_stats_confirmed"]["confirmed_by_user"] is False
        assert body["listing_evaluation_raw"] is None

    @pytest.mark.asyncio
    async def test_stale_evaluation_is_flagged(self, authenticated_client, db_session):
        session = create_stats_ready_session(db_session, status=SessionStatus.AI_READY)
        create_evaluation(db_session, session, evaluated_at=utcnow() - timedelta(hours=1))
        db_session.commit()

        body = (await authenticated_client.get("/sessions")).json()["sessions"][0]

        assert body["evaluation_state"] == "stale"
        assert body["listing_evaluation_raw"]["executive_summary"] == "Solid option."
