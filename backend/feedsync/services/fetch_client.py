import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from feedsync.core.config import settings

logger = logging.getLogger(__name__)

UPDATED = "updated"
NOT_MODIFIED = "not_modified"
FAILED = "failed"


@dataclass
class FetchResult:
    """Outcome of one conditional fetch"""
    status: str  # updated|not_modified|failed
    body: Optional[bytes] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def updated(self) -> bool:
        return self.status == UPDATED


class ConditionalFetchClient:
    """HTTP fetcher that uses ETag / Last-Modified validators to skip unchanged feeds"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = None):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": settings.USER_AGENT},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def build_headers(etag: Optional[str], last_modified: Optional[str]) -> dict:
        headers = {}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified
        return headers

    async def fetch(self, url: str, etag: Optional[str] = None, last_modified: Optional[str] = None) -> FetchResult:
        """
        Fetch a feed URL conditionally.

        Never raises for HTTP or network failures: a 304 is reported as
        not_modified, anything else that is not a success as failed.

        Returns:
            FetchResult; on success carries the body and the validators to
            store for the next request
        """
        try:
            response = await self.client.get(url, headers=self.build_headers(etag, last_modified))
        except httpx.RequestError as e:
            logger.warning(f"Network error fetching {url[:60]}... ({type(e).__name__}): {e}")
            return FetchResult(status=FAILED, error=f"Network error: {str(e)}")

        if response.status_code == 304:
            logger.info(f"Feed not modified: {url[:60]}...")
            return FetchResult(status=NOT_MODIFIED, etag=etag, last_modified=last_modified, http_status=304)

        if not response.is_success:
            reason = response.reason_phrase or str(response.status_code)
            logger.warning(f"HTTP {response.status_code} fetching {url[:60]}...: {reason}")
            return FetchResult(
                status=FAILED,
                http_status=response.status_code,
                error=f"HTTP {response.status_code}: {reason}",
            )

        return FetchResult(
            status=UPDATED,
            body=response.content,
            etag=response.headers.get("ETag") or etag,
            last_modified=response.headers.get("Last-Modified") or last_modified,
            http_status=response.status_code,
            content_type=response.headers.get("Content-Type"),
        )
