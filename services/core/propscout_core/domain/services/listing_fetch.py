"""Listing page fetch and crude snippet extraction."""

import html as html_lib
import re
from typing import Optional

import httpx

from propscout_core.observability.logging import get_logger

logger = get_logger(__name__)

MAX_SNIPPETS = 6
HEAD_CHARS = 800
MID_HALF_WIDTH = 400

_META_DESCRIPTION = re.compile(
    r"""<meta[^>]+name=["']description["'][^>]+content=["']([^"']+)["']""",
    re.IGNORECASE,
)
_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_SCRIPT = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_TAG = re.compile(r"</?[^>]+>")
_WHITESPACE = re.compile(r"\s+")


class ListingFetchError(Exception):
    """Listing page could not be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ListingFetcher:
    """Fetches listing HTML with a bounded timeout."""

    def __init__(
        self,
        timeout: float = 12.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def fetch(self, url: str) -> str:
        """Fetch a listing page.

        Args:
            url: The listing URL.

        Returns:
            The response body as text.

        Raises:
            ListingFetchError: On non-2xx status, timeout, or transport error.
        """
        headers = {"Accept": "text/html,application/xhtml+xml"}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Listing fetch timed out", url=url)
            raise ListingFetchError(f"Listing fetch timed out: {e}") from e
        except httpx.HTTPError as e:
            logger.warning("Listing fetch failed", url=url, error=str(e))
            raise ListingFetchError(f"Listing fetch failed: {e}") from e

        if not response.is_success:
            logger.warning(
                "Listing fetch returned error status", url=url, status_code=response.status_code
            )
            raise ListingFetchError(
                f"Listing fetch failed: {response.status_code} {response.reason_phrase} "
                f":: {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.text


def extract_snippets(page: str) -> list[str]:
    """Pull a few high-signal text snippets out of a listing page.

    Title, meta description, and two slices of the tag-stripped body text,
    deduplicated and capped at six.
    """
    page = page or ""

    meta_match = _META_DESCRIPTION.search(page)
    meta_description = html_lib.unescape(meta_match.group(1)) if meta_match else ""

    title_match = _TITLE.search(page)
    title = _WHITESPACE.sub(" ", title_match.group(1)).strip() if title_match else ""

    text = _SCRIPT.sub(" ", page)
    text = _STYLE.sub(" ", text)
    text = _TAG.sub(" ", text)
    text = _WHITESPACE.sub(" ", text).strip()

    chunks = []
    if title:
        chunks.append(f"TITLE: {title}")
    if meta_description:
        chunks.append(f"META_DESCRIPTION: {meta_description}")
    if text:
        chunks.append(f"PAGE_TEXT_HEAD: {text[:HEAD_CHARS]}")
        middle = len(text) // 2
        chunks.append(
            f"PAGE_TEXT_MID: {text[max(0, middle - MID_HALF_WIDTH):middle + MID_HALF_WIDTH]}"
        )

    seen = set()
    snippets = []
    for chunk in (c.strip() for c in chunks):
        if not chunk or chunk in seen:
            continue
        seen.add(chunk)
        snippets.append(chunk)
    return snippets[:MAX_SNIPPETS]


def get_listing_fetcher() -> ListingFetcher:
    """Create a ListingFetcher from settings."""
    from propscout_core.config import get_settings

    settings = get_settings()
    return ListingFetcher(
        timeout=settings.listing_fetch_timeout,
        user_agent=settings.listing_fetch_user_agent,
    )
