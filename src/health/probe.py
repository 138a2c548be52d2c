"""HTTP liveness probe against a region's serving endpoint."""

import asyncio
import logging
import time
from typing import Optional

import aiohttp

from src.config.settings import HealthCheckSettings
from src.errors import ProbeConnectionError, ProbeTimeout
from src.models import ProbeResult, Region

logger = logging.getLogger(__name__)


class HttpLivenessProbe:
    """Performs a GET against ``<endpoint><path>`` and classifies the outcome"""

    def __init__(self, settings: HealthCheckSettings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    def url_for(self, region: Region) -> str:
        return f"{region.endpoint.rstrip('/')}{self.settings.path}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _request(self, region: Region) -> int:
        """Issue the probe request; raises ProbeTimeout or ProbeConnectionError"""
        session = await self._get_session()
        try:
            async with session.get(
                self.url_for(region),
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout),
                allow_redirects=False
            ) as response:
                return response.status
        except asyncio.TimeoutError:
            raise ProbeTimeout(region.region_id, self.settings.timeout)
        except aiohttp.ClientError as e:
            raise ProbeConnectionError(region.region_id, str(e) or type(e).__name__)

    async def check(self, region: Region) -> ProbeResult:
        """Probe a region once. Never raises for probe failures."""
        low, high = self.settings.expected_status
        start = time.monotonic()
        try:
            status = await self._request(region)
        except (ProbeTimeout, ProbeConnectionError) as e:
            logger.debug(f"Probe of {region.region_id} failed: {e.message}")
            return ProbeResult(
                region_id=region.region_id,
                success=False,
                latency_ms=(time.monotonic() - start) * 1000,
                error=e.code
            )

        latency_ms = (time.monotonic() - start) * 1000
        success = low <= status <= high
        return ProbeResult(
            region_id=region.region_id,
            success=success,
            status_code=status,
            latency_ms=latency_ms,
            error=None if success else f"UnexpectedStatus{status}"
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
