"""HTTP server exposing the Prometheus metrics endpoint."""

import asyncio
from typing import Optional

import structlog
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from rdsrecorder.metrics import RecorderMetrics
from utils.logging import get_logger


class MetricsServer:
    """Serves ``GET /metrics`` for the lifetime of a command."""

    def __init__(
        self,
        metrics: RecorderMetrics,
        address: str = "0.0.0.0",
        port: int = 9445,
        shutdown_grace_seconds: float = 1.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize metrics server.

        Args:
            metrics: Metrics whose registry is exposed
            address: Address to bind
            port: Port to listen on
            shutdown_grace_seconds: Delay before closing, leaving time for a last scrape
            logger: Optional logger instance
        """
        self.metrics = metrics
        self.address = address
        self.port = port
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.logger = logger or get_logger("metrics_server")
        self.app: Optional[web.Application] = None
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        """Start the metrics server."""
        self.app = web.Application()
        self.app.router.add_get("/metrics", self._handle_metrics)

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.address, self.port)
        await self.site.start()

        self.logger.info("metrics.listen", address=self.address, port=self.port)

    async def stop(self) -> None:
        """Wait for the grace period, then stop the server."""
        if self.runner is None:
            return

        await asyncio.sleep(self.shutdown_grace_seconds)
        if self.site:
            await self.site.stop()
        await self.runner.cleanup()
        self.runner = None
        self.site = None
        self.logger.info("Metrics server stopped")

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        """Render the registry in Prometheus text format."""
        return web.Response(
            body=self.metrics.get_metrics(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )
