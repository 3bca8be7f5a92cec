"""Health check and status endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import __version__


logger = structlog.get_logger(__name__)


class HealthCheckServer:
    """HTTP server for liveness, readiness, stats and metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0") -> None:
        """Initialize health check server.

        Args:
            port: Port to listen on
            host: Interface to bind
        """
        self.port = port
        self.host = host
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None
        self._startup_time = datetime.now(timezone.utc)
        self._monitoring_controller = None

        self.app.router.add_get("/healthz", self._health_handler)
        self.app.router.add_get("/readyz", self._readiness_handler)
        self.app.router.add_get("/stats", self._stats_handler)
        self.app.router.add_get("/metrics", self._metrics_handler)

        logger.info("Initialized HealthCheckServer", port=port)

    def set_monitoring_controller(self, controller) -> None:
        """Set monitoring controller for stats and readiness."""
        self._monitoring_controller = controller

    def _uptime(self) -> float:
        return (datetime.now(timezone.utc) - self._startup_time).total_seconds()

    async def start(self) -> None:
        """Start the health check server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info("Health check server started", port=self.port)

    async def stop(self) -> None:
        """Stop the health check server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Health check server stopped")

    async def _health_handler(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": self._uptime(),
                "version": __version__,
            }
        )

    async def _readiness_handler(self, request: web.Request) -> web.Response:
        """Ready once the controller is attached and the live poll loop runs."""
        checks: Dict[str, str] = {}
        controller = self._monitoring_controller

        if controller is None:
            checks["monitoring_controller"] = "not_available"
        else:
            checks["monitoring_controller"] = "available"
            checks["live_monitor"] = "running" if controller.live_monitor.running else "stopped"
            checks["feed_monitor"] = "running" if controller.feed_monitor.running else "stopped"

        ready = controller is not None and controller.live_monitor.running
        return web.json_response(
            {
                "status": "ready" if ready else "not_ready",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks,
            },
            status=200 if ready else 503,
        )

    async def _stats_handler(self, request: web.Request) -> web.Response:
        stats: Dict[str, Any] = {
            "service": {
                "uptime_seconds": self._uptime(),
                "startup_time": self._startup_time.isoformat(),
                "version": __version__,
            }
        }

        if self._monitoring_controller:
            try:
                stats["monitoring"] = self._monitoring_controller.get_stats()
            except Exception as e:
                logger.warning("Failed to get monitoring stats", error=str(e))
                stats["monitoring"] = {"error": str(e)}

        return web.json_response(stats)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        """Prometheus exposition of the default registry."""
        response = web.Response(body=generate_latest())
        # CONTENT_TYPE_LATEST carries a charset parameter aiohttp refuses in content_type
        response.headers["Content-Type"] = CONTENT_TYPE_LATEST
        return response


# Global health check server instance
_health_server: Optional[HealthCheckServer] = None


async def start_health_server(port: int = 8081, monitoring_controller=None) -> HealthCheckServer:
    """Start the global health check server.

    Args:
        port: Port to listen on
        monitoring_controller: Monitoring controller for stats

    Returns:
        HealthCheckServer instance
    """
    global _health_server

    if _health_server is not None:
        logger.warning("Health server already started")
        return _health_server

    _health_server = HealthCheckServer(port)

    if monitoring_controller:
        _health_server.set_monitoring_controller(monitoring_controller)

    await _health_server.start()
    return _health_server


async def stop_health_server() -> None:
    """Stop the global health check server."""
    global _health_server

    if _health_server is not None:
        await _health_server.stop()
        _health_server = None


def get_health_server() -> Optional[HealthCheckServer]:
    """Get the global health check server instance."""
    return _health_server
