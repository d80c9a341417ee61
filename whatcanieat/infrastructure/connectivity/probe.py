"""
Connectivity probes.

Decide whether a live analysis should be attempted at all.
"""

import asyncio
from typing import Optional

import aiohttp
import structlog

from whatcanieat.domain.analysis.ports import IConnectivityProbe
from whatcanieat.infrastructure.config import get_connectivity_check_url

logger = structlog.get_logger(__name__)


class StaticConnectivityProbe:
    """Probe with a fixed answer (default online)."""

    def __init__(self, online: bool = True) -> None:
        self.online = online

    async def is_online(self) -> bool:
        return self.online


class HttpConnectivityProbe:
    """
    Probe by sending a HEAD request.

    Any HTTP response counts as online; client errors and timeouts count
    as offline.

    Example:
        >>> probe = HttpConnectivityProbe("https://www.google.com/generate_204")
        >>> await probe.is_online()
        True
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 3.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """
        Initialize probe.

        Args:
            url: URL to probe
            timeout_seconds: Probe timeout
            session: Optional aiohttp session (for testing)
        """
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session = session

    async def is_online(self) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            if self._session is not None:
                async with self._session.head(self.url, timeout=timeout):
                    return True
            async with aiohttp.ClientSession() as session:
                async with session.head(self.url, timeout=timeout):
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.info("Connectivity check failed", url=self.url, error=str(e))
            return False


def create_connectivity_probe() -> IConnectivityProbe:
    """HTTP probe if CONNECTIVITY_CHECK_URL is set, otherwise always online."""
    url = get_connectivity_check_url()
    if url:
        return HttpConnectivityProbe(url)
    return StaticConnectivityProbe(online=True)
