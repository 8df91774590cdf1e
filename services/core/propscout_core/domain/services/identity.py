"""Caller identity verification.

Bearer tokens are verified against a Supabase-compatible auth endpoint
(``GET {identity_url}/auth/v1/user``). The core only needs the user id back.
"""

from typing import Optional

import httpx

from propscout_core.domain.errors import UnauthorizedError
from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)


class IdentityVerifier:
    """Resolves a bearer token to a user id."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the verifier.

        Args:
            base_url: Auth service base URL.
            api_key: Optional project API key sent as ``apikey``.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def verify(self, token: Optional[str]) -> str:
        """Verify a bearer token.

        Returns:
            The user id the token belongs to.

        Raises:
            UnauthorizedError: If the token is missing, rejected, or the auth
                service cannot be reached.
        """
        if not token:
            raise UnauthorizedError("Missing bearer token")
        if not self.base_url:
            logger.error("Identity service is not configured")
            raise UnauthorizedError("Identity service is not configured")

        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get("/auth/v1/user", headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Identity service unreachable", error=str(e))
            raise UnauthorizedError("Identity service unreachable") from e

        if response.status_code != 200:
            raise UnauthorizedError("Invalid JWT")

        try:
            data = response.json()
        except ValueError as e:
            raise UnauthorizedError("Invalid identity response") from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise UnauthorizedError("Invalid JWT")
        return str(user_id)


def get_identity_verifier() -> IdentityVerifier:
    """Create an IdentityVerifier from settings."""
    from propscout_core.config import get_settings

    settings = get_settings()
    return IdentityVerifier(
        base_url=settings.identity_url,
        api_key=settings.identity_api_key,
        timeout=settings.identity_timeout,
    )
