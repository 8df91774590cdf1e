"""Unit tests for bearer token verification."""

import httpx
import pytest

from propscout_core.domain.errors import UnauthorizedError
from propscout_core.domain.services.identity import IdentityVerifier
from tests.conftest import identity_transport


def verifier_for(handler, base_url="https://identity.test", api_key=None) -> IdentityVerifier:
    return IdentityVerifier(
        base_url=base_url, api_key=api_key, transport=httpx.MockTransport(handler)
    )


class TestIdentityVerifier:
    """Tests for IdentityVerifier.verify."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_user_id(self):
        verifier = IdentityVerifier(
            base_url="https://identity.test/", transport=identity_transport()
        )

        assert await verifier.verify("good-token") == "user-1"

    @pytest.mark.asyncio
    async def test_sends_bearer_and_api_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["authorization"] = request.headers.get("Authorization")
            seen["apikey"] = request.headers.get("apikey")
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "abc"})

        await verifier_for(handler, api_key="anon-key").verify("tok")

        assert seen == {
            "authorization": "Bearer tok",
            "apikey": "anon-key",
            "path": "/auth/v1/user",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, token):
        verifier = IdentityVerifier(base_url="https://identity.test", transport=identity_transport())

        with pytest.raises(UnauthorizedError, match="Missing bearer token"):
            await verifier.verify(token)

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        verifier = IdentityVerifier(base_url="https://identity.test", transport=identity_transport())

        with pytest.raises(UnauthorizedError, match="Invalid JWT"):
            await verifier.verify("forged")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with pytest.raises(UnauthorizedError, match="not configured"):
            await IdentityVerifier(base_url=None).verify("good-token")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UnauthorizedError, match="unreachable"):
            await verifier_for(handler).verify("good-token")

    @pytest.mark.asyncio
    async def test_response_without_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"aud": "authenticated"})

        with pytest.raises(UnauthorizedError):
            await verifier_for(handler).verify("good-token")

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(UnauthorizedError, match="Invalid identity response"):
            await verifier_for(handler).verify("good-token")

    @pytest.mark.asyncio
    async def test_error_reason(self):
        verifier = IdentityVerifier(base_url="https://identity.test", transport=identity_transport())

        with pytest.raises(UnauthorizedError) as exc_info:
            await verifier.verify("forged")

        assert exc_info.value.reason == "UNAUTHORIZED"
