"""Health check endpoints for the report sync service."""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from aiohttp import web, web_request
from aiohttp.web_response import Response

logger = logging.getLogger(__name__)

HealthProvider = Callable[[], Awaitable[Dict[str, Any]]]

# Service status -> (HTTP status of /health, ready?)
STATUS_CODES = {
    "healthy": (200, True),
    "degraded": (503, True),
    "unhealthy": (503, False),
}


def _now() -> str:
    return datetime.utcnow().isoformat()


def _sync_status(health_data: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the orchestrator section out of a service health report."""
    components = health_data.get("components", {})
    orchestrator = components.get("orchestrator")

    if orchestrator is None:
        orchestrator = components.get("scheduler", {}).get("orchestrator", {})

    return {
        "state": orchestrator.get("state"),
        "running": orchestrator.get("running", False),
        "last_progress": orchestrator.get("last_progress"),
        "last_error": orchestrator.get("last_error"),
    }


class HealthCheckHandler:
    """Serves health, readiness, liveness and sync status from one provider."""

    def __init__(self, health_provider: HealthProvider):
        self.health_provider = health_provider

    async def _report(self, probe: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        try:
            return await self.health_provider(), None
        except Exception as e:
            logger.error(f"{probe} check failed: {e}", exc_info=True)
            return None, str(e)

    @staticmethod
    def _unavailable(**body) -> Response:
        return web.json_response({**body, "timestamp": _now()}, status=503)

    async def health(self, request: web_request.Request) -> Response:
        """Full health report; 200 only while healthy."""
        health_data, error = await self._report("Health")
        if health_data is None:
            return self._unavailable(service="report-sync", status="unhealthy", error=error)

        status, _ = STATUS_CODES.get(health_data.get("status"), (503, False))
        return web.json_response(health_data, status=status)

    async def ready(self, request: web_request.Request) -> Response:
        """Ready while healthy or degraded; a failed sync run does not take the service out."""
        health_data, error = await self._report("Readiness")
        if health_data is None:
            return self._unavailable(ready=False, error=error)

        _, is_ready = STATUS_CODES.get(health_data.get("status"), (503, False))
        return web.json_response(
            {"ready": is_ready, "status": health_data.get("status"), "timestamp": _now()},
            status=200 if is_ready else 503
        )

    async def live(self, request: web_request.Request) -> Response:
        return web.json_response({"alive": True, "timestamp": _now()})

    async def sync(self, request: web_request.Request) -> Response:
        """State and progress of the current or last sync run."""
        health_data, error = await self._report("Sync status")
        if health_data is None:
            return self._unavailable(error=error)

        return web.json_response({**_sync_status(health_data), "timestamp": _now()})


def create_app(health_provider: HealthProvider) -> web.Application:
    """Build the aiohttp application serving the health routes."""
    handler = HealthCheckHandler(health_provider)

    app = web.Application()
    app.router.add_get('/health', handler.health)
    app.router.add_get('/ready', handler.ready)
    app.router.add_get('/live', handler.live)
    app.router.add_get('/sync', handler.sync)

    return app


class HealthCheckServer:
    """HTTP server for the health routes."""

    def __init__(self, health_provider: HealthProvider, host: str = "0.0.0.0", port: int = 8080):
        self.health_provider = health_provider
        self.host = host
        self.port = port
        self.runner: Optional[web.AppRunner] = None

    async def start(self):
        self.runner = web.AppRunner(create_app(self.health_provider))
        await self.runner.setup()

        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()

        logger.info(f"Health check server started on http://{self.host}:{self.port}")

    async def stop(self):
        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Health check server stopped")
