"""HTTP health probe."""

import asyncio
import logging

import aiohttp

from ..enums import HealthStatus
from .base import HealthProber

logger = logging.getLogger(__name__)


class HttpHealthProber(HealthProber):
    """GET the health endpoint; any 2xx response is healthy."""

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session

    async def probe(self, health_check_url: str, timeout: float) -> HealthStatus:
        client_timeout = aiohttp.ClientTimeout(total=timeout)

        try:
            if self._session is not None:
                return await self._get(self._session, health_check_url, client_timeout)

            async with aiohttp.ClientSession() as session:
                return await self._get(session, health_check_url, client_timeout)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Health probe {health_check_url} failed: {e}")
            return HealthStatus.UNHEALTHY

    async def _get(
        self,
        session: aiohttp.ClientSession,
        url: str,
        timeout: aiohttp.ClientTimeout,
    ) -> HealthStatus:
        async with session.get(url, timeout=timeout) as response:
            if 200 <= response.status < 300:
                return HealthStatus.HEALTHY
            logger.debug(f"Health probe {url} returned HTTP {response.status}")
            return HealthStatus.UNHEALTHY
