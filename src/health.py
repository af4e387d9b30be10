"""
Health check HTTP server.

Provides /health with per-server worker state for Docker healthchecks and
monitoring.
"""
from typing import Any, Callable, Dict, Optional

from aiohttp import web
import structlog

logger = structlog.get_logger()

SERVICE_NAME = "player-count-bots"

StatusProvider = Callable[[], Dict[str, Dict[str, Any]]]


class HealthCheckServer:
    """Simple HTTP server for health checks."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        status_provider: Optional[StatusProvider] = None,
    ):
        """
        Initialize health check server.

        Args:
            host: Host to bind to (default: 0.0.0.0)
            port: Port to bind to (default: 8080)
            status_provider: Returns {server_name: worker snapshot}
        """
        self.host = host
        self.port = port
        self.status_provider = status_provider
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Configure HTTP routes."""
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/", self.root_handler)

    async def health_handler(self, request: web.Request) -> web.Response:
        """
        Health check endpoint.

        Returns:
            200 with "healthy" when at least one worker is active, otherwise
            200 with "degraded" and the per-server detail
        """
        servers = self.status_provider() if self.status_provider else {}
        active = sum(1 for s in servers.values() if s.get("state") == "active")
        return web.json_response({
            "status": "healthy" if active else "degraded",
            "service": SERVICE_NAME,
            "active": active,
            "servers": servers,
        })

    async def root_handler(self, request: web.Request) -> web.Response:
        """Service info."""
        return web.json_response({
            "service": SERVICE_NAME,
            "endpoints": {
                "health": "/health"
            }
        })

    async def start(self) -> None:
        """Start the health check server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(
            self.runner,
            self.host,
            self.port
        )
        await self.site.start()

        logger.info(
            "health_server_started",
            host=self.host,
            port=self.port
        )

    async def stop(self) -> None:
        """Stop the health check server."""
        if self.site is not None:
            await self.site.stop()
            self.site = None

        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

        logger.info("health_server_stopped")
