"""Report Sync Service - incremental synchronization of trading history into local storage."""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from .clients.gateway import AccountCredential
from .clients.rest_gateway import RestGateway
from .config.settings import ReportSyncConfig, load_config
from .health import HealthCheckServer
from .scheduler import SyncLane, SyncScheduler
from .storage import create_dao
from .sync.detector import PUBLIC_COLLS_CONF
from .sync.orchestrator import SyncOrchestrator
from .sync.progress import Progress
from .utils.logging import log_with_context, setup_logging

logger = logging.getLogger(__name__)

# Component status -> rank; "stopped" and unknown statuses count as healthy
_SEVERITY = {"degraded": 1, "unhealthy": 2}


class ReportSyncService:
    """Main report sync service."""

    def __init__(
        self,
        config_file: str = "config/local.yaml",
        config: Optional[ReportSyncConfig] = None
    ):
        self.config = config or load_config(config_file)
        self.dao = create_dao(self.config.storage)
        self.gateway = RestGateway(self.config.api)
        self.lane = SyncLane()
        self.orchestrator: Optional[SyncOrchestrator] = None
        self.scheduler: Optional[SyncScheduler] = None
        self.health_server: Optional[HealthCheckServer] = None
        self._shutdown_event = asyncio.Event()

        # Setup logging
        setup_logging(self.config.logging)
        logger.info("Report Sync Service initialized")

    async def _initialize(self):
        await self.dao.initialize()
        await self._seed_storage()

        self.orchestrator = SyncOrchestrator(self.dao, self.gateway, self.config.sync)
        self.orchestrator.subscribe(self._log_progress)

        if self.config.health.enabled:
            self.health_server = HealthCheckServer(
                self.health_check,
                host=self.config.health.host,
                port=self.config.health.port
            )
            await self.health_server.start()

    async def _seed_storage(self):
        """Copy configured accounts and public symbol start dates into storage."""
        if self.config.accounts:
            await self.dao.save_account_credentials(
                AccountCredential(
                    api_key=account.api_key,
                    api_secret=account.api_secret,
                    account_id=account.account_id
                )
                for account in self.config.accounts
            )
            logger.info(f"Seeded {len(self.config.accounts)} account(s)")

        if self.config.public_collections:
            await self.dao.insert_records_if_absent(
                PUBLIC_COLLS_CONF,
                None,
                [
                    {"confName": conf.conf_name, "symbol": conf.symbol, "start": conf.start}
                    for conf in self.config.public_collections
                ]
            )
            logger.info(f"Seeded {len(self.config.public_collections)} public collection config(s)")

    async def _shutdown(self):
        if self.health_server:
            await self.health_server.stop()

        await self.lane.stop()
        await self.dao.close()

    @staticmethod
    def _log_progress(progress: Progress):
        log_with_context(logger, logging.INFO, f"Sync progress: {progress}", progress=progress)

    async def run_once(self) -> Progress:
        """Run a single full sync and exit."""
        logger.info("Running a single sync")

        async with self.gateway:
            try:
                await self._initialize()
                await self.lane.start()
                return await self.lane.run(self.orchestrator.run_full_sync)
            finally:
                await self._shutdown()

    async def start(self):
        """Start the periodic sync service."""
        logger.info("Starting Report Sync Service")

        async with self.gateway:
            try:
                await self._initialize()
                self.scheduler = SyncScheduler(self.config.scheduler, self.orchestrator, self.lane)

                self._setup_signal_handlers()

                scheduler_task = asyncio.create_task(self.scheduler.start())

                # Wait for shutdown signal
                await self._shutdown_event.wait()

                logger.info("Shutting down Report Sync Service")
                await self.scheduler.stop()

                scheduler_task.cancel()
                try:
                    await scheduler_task
                except asyncio.CancelledError:
                    pass

            finally:
                await self._shutdown()

        logger.info("Report Sync Service stopped")

    def stop(self):
        """Request shutdown."""
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def health_check(self) -> Dict[str, Any]:
        """Aggregate component health; the worst component status wins."""
        components: Dict[str, Any] = {}

        if self.scheduler:
            components["scheduler"] = await self.scheduler.health_check()
        elif self.orchestrator:
            components["orchestrator"] = await self.orchestrator.health_check()

        dao_health = getattr(self.dao, "health_check", None)
        if dao_health:
            components["storage"] = await dao_health()

        worst = max(
            (_SEVERITY.get(comp.get("status"), 0) for comp in components.values()),
            default=0
        )

        return {
            "service": "report-sync",
            "status": ("healthy", "degraded", "unhealthy")[worst],
            "timestamp": datetime.utcnow().isoformat(),
            "components": components
        }


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")
    service = ReportSyncService(config_file)

    try:
        if service.config.scheduler.enabled:
            await service.start()
        else:
            await service.run_once()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
