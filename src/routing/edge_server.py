"""aiohttp front end serving client traffic through an EdgeFailoverGroup."""

import logging
from typing import Optional

from aiohttp import web

from src.config.settings import EdgeSettings
from src.models import EdgeRequest
from .edge_failover import EdgeFailoverGroup

logger = logging.getLogger(__name__)

ORIGIN_HEADER = 'X-Edge-Origin'


class EdgeServer:
    """Accepts every method and path and hands it to the origin group"""

    def __init__(self, group: EdgeFailoverGroup, settings: EdgeSettings):
        self.group = group
        self.settings = settings
        self._runner: Optional[web.AppRunner] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([web.route('*', '/{tail:.*}', self.handle)])
        return app

    async def handle(self, request: web.Request) -> web.Response:
        edge_request = EdgeRequest(
            method=request.method,
            path=request.rel_url.raw_path,
            query_string=request.rel_url.raw_query_string,
            headers=dict(request.headers),
            body=await request.read()
        )
        response = await self.group.route(edge_request)

        headers = dict(response.headers)
        if response.origin_id:
            headers[ORIGIN_HEADER] = response.origin_id
        return web.Response(status=response.status, headers=headers, body=response.body)

    async def start(self) -> None:
        """Start listening on the configured bind address"""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.settings.bind_address, self.settings.port)
        await site.start()
        logger.info(
            f"Edge server for group {self.group.group.group_id} listening on "
            f"{self.settings.bind_address}:{self.settings.port}"
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Edge server stopped")
