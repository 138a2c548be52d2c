"""
Edge failover group.

Forwards each request to the primary origin and retries it exactly once
against the secondary when the primary answers with a configured failover
status, times out, or cannot be reached.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional

import aiohttp

from src.errors import ConfigurationError
from src.models import EdgeRequest, EdgeResponse, Origin, OriginGroup
from src.monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)

# Only requests that are safe to replay are retried against the secondary
FAILOVER_METHODS = frozenset({'GET', 'HEAD', 'OPTIONS'})

HOP_BY_HOP_HEADERS = frozenset({
    'connection', 'keep-alive', 'proxy-authenticate', 'proxy-authorization',
    'te', 'trailer', 'transfer-encoding', 'upgrade', 'host',
})
# The body is re-framed by the edge server after aiohttp has decoded it
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {'content-encoding', 'content-length'}


class OriginUnreachable(Exception):
    """Raised internally when an origin produced no HTTP response"""

    def __init__(self, origin_id: str, reason: str, timed_out: bool = False):
        self.origin_id = origin_id
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Origin {origin_id} unreachable: {reason}")


def _filter_headers(headers: Mapping[str, str], excluded: frozenset) -> Dict[str, str]:
    return {name: value for name, value in headers.items() if name.lower() not in excluded}


class EdgeFailoverGroup:
    """Routes requests through an ordered primary/secondary origin pair"""

    def __init__(
        self,
        group: OriginGroup,
        origins: Mapping[str, Origin],
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        for origin_id in (group.primary_origin_id, group.secondary_origin_id):
            if origin_id not in origins:
                raise ConfigurationError(f"Origin group {group.group_id} references unknown origin {origin_id}")
        if group.primary_origin_id == group.secondary_origin_id:
            raise ConfigurationError(f"Origin group {group.group_id} needs two distinct origins")

        self.group = group
        self.origins = dict(origins)
        self.timeout = timeout
        self.metrics = metrics
        self._session = session
        self._owns_session = session is None

    @property
    def primary(self) -> Origin:
        return self.origins[self.group.primary_origin_id]

    @property
    def secondary(self) -> Origin:
        return self.origins[self.group.secondary_origin_id]

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(auto_decompress=True)
            self._owns_session = True
        return self._session

    def _url(self, origin: Origin, request: EdgeRequest) -> str:
        url = f"{origin.base_url.rstrip('/')}{request.path or '/'}"
        if request.query_string:
            url = f"{url}?{request.query_string}"
        return url

    async def _fetch(self, origin: Origin, request: EdgeRequest) -> EdgeResponse:
        """Forward a request to one origin; raises OriginUnreachable"""
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                self._url(origin, request),
                headers=_filter_headers(request.headers, HOP_BY_HOP_HEADERS),
                data=request.body or None,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                allow_redirects=False
            ) as response:
                body = await response.read()
                return EdgeResponse(
                    status=response.status,
                    headers=_filter_headers(response.headers, STRIPPED_RESPONSE_HEADERS),
                    body=body,
                    origin_id=origin.origin_id
                )
        except asyncio.TimeoutError:
            raise OriginUnreachable(origin.origin_id, f"timed out after {self.timeout}s", timed_out=True)
        except aiohttp.ClientError as e:
            raise OriginUnreachable(origin.origin_id, str(e) or type(e).__name__)

    def _record(self, response: EdgeResponse) -> EdgeResponse:
        if self.metrics:
            self.metrics.record_edge_request(self.group.group_id, response.origin_id or 'edge', response.status)
        return response

    async def route(self, request: EdgeRequest) -> EdgeResponse:
        """Serve a request, failing over to the secondary origin at most once"""
        method = request.method.upper()
        primary, secondary = self.primary, self.secondary

        try:
            response = await self._fetch(primary, request)
        except OriginUnreachable as e:
            if method not in FAILOVER_METHODS:
                logger.error(f"{e}; {method} {request.path} is not retried")
                return self._record(self._gateway_error(e))
            reason = 'timeout' if e.timed_out else 'connection'
            primary_response = None
        else:
            if response.status not in self.group.failover_status_codes or method not in FAILOVER_METHODS:
                return self._record(response)
            reason = str(response.status)
            primary_response = response

        logger.warning(
            f"Origin group {self.group.group_id}: {primary.origin_id} failed {method} {request.path} "
            f"({reason}), retrying on {secondary.origin_id}"
        )
        if self.metrics:
            self.metrics.record_edge_failover(self.group.group_id, reason)

        try:
            response = await self._fetch(secondary, request)
        except OriginUnreachable as e:
            logger.error(f"Origin group {self.group.group_id}: secondary also failed: {e}")
            if primary_response is not None:
                return self._record(primary_response)
            return self._record(self._gateway_error(e))

        response.failed_over = True
        return self._record(response)

    def _gateway_error(self, error: OriginUnreachable) -> EdgeResponse:
        status = 504 if error.timed_out else 502
        return EdgeResponse(
            status=status,
            headers={'Content-Type': 'text/plain; charset=utf-8'},
            body=f"{error}\n".encode()
        )

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
