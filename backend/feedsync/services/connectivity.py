import logging
from typing import Optional

import httpx

from feedsync.core.config import settings

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Answers whether the network is reachable, via a lightweight HEAD request"""

    def __init__(self, check_url: str = None, timeout: float = None, client: Optional[httpx.AsyncClient] = None):
        self.check_url = check_url or settings.CONNECTIVITY_CHECK_URL
        self.timeout = timeout or settings.CONNECTIVITY_TIMEOUT_SECONDS
        self._client = client

    async def is_online(self) -> bool:
        try:
            if self._client is not None:
                await self._client.head(self.check_url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    await client.head(self.check_url)
        except httpx.RequestError as e:
            logger.info(f"Connectivity check failed ({type(e).__name__}), treating as offline")
            return False
        # Any HTTP response, whatever its status, proves the network is up
        return True
