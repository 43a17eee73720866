"""Single-lane execution and periodic scheduling of sync runs."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from .config.settings import SchedulerConfig
from .errors import SyncCancelledError
from .sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class SyncLane:
    """One worker consuming a job queue, so sync runs never overlap."""

    def __init__(self, name: str = "sync"):
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._running = False

        # Statistics
        self.stats = {
            "jobs_submitted": 0,
            "jobs_completed": 0,
            "jobs_failed": 0
        }

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self):
        """Start the worker."""
        if self._running:
            return

        self._queue = asyncio.Queue()
        self._running = True
        self._worker = asyncio.create_task(self._work())
        logger.info(f"Lane {self.name} started")

    async def stop(self):
        """Stop the worker and fail jobs that never ran."""
        if not self._running:
            return

        self._running = False

        if self._worker:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            if not future.done():
                future.cancel()

        logger.info(f"Lane {self.name} stopped")

    async def submit(self, job: Job) -> asyncio.Future:
        """Queue a job; the returned future resolves with its result."""
        if not self._running:
            raise RuntimeError(f"Lane {self.name} is not running")

        future = asyncio.get_running_loop().create_future()
        await self._queue.put((job, future))
        self.stats["jobs_submitted"] += 1
        return future

    async def run(self, job: Job) -> Any:
        """Queue a job and wait for its result."""
        future = await self.submit(job)
        return await future

    async def _work(self):
        while self._running:
            job, future = await self._queue.get()

            try:
                if future.cancelled():
                    continue

                result = await job()
                self.stats["jobs_completed"] += 1
                if not future.done():
                    future.set_result(result)

            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise

            except Exception as e:
                self.stats["jobs_failed"] += 1
                if not future.done():
                    future.set_exception(e)

            finally:
                self._queue.task_done()


class SyncScheduler:
    """Submits a full sync to the lane every configured interval."""

    def __init__(
        self,
        config: SchedulerConfig,
        orchestrator: SyncOrchestrator,
        lane: Optional[SyncLane] = None
    ):
        self.config = config
        self.orchestrator = orchestrator
        self.lane = lane or SyncLane()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._last_result: Optional[Any] = None
        self._last_sync_time: Optional[str] = None

        # Validate early
        self.interval_seconds = self._interval_to_seconds(config.sync_interval)

        logger.info(f"Scheduler initialized with interval: {config.sync_interval}")

    async def start(self):
        """Start the periodic sync scheduler."""
        self._running = True
        logger.info("Starting sync scheduler")

        await self.lane.start()
        self._task = asyncio.create_task(self._sync_loop())

        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)
            raise

    async def stop(self):
        """Stop the scheduler gracefully."""
        logger.info("Stopping sync scheduler")
        self._running = False
        self.orchestrator.cancel()

        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        await self.lane.stop()
        logger.info("Scheduler stopped")

    async def _sync_loop(self):
        """Main sync loop."""
        logger.info("Starting sync loop")

        while self._running:
            try:
                self._last_result = await self.lane.run(self.orchestrator.run_full_sync)
                logger.info(f"Sync cycle completed with progress {self._last_result}")

            except SyncCancelledError:
                logger.info("Sync cycle cancelled")
                break

            except Exception as e:
                # Already-persisted pages stay; the next cycle resumes from them
                logger.error(f"Sync cycle failed: {e}")
                self._last_result = None

            finally:
                self._last_sync_time = datetime.utcnow().isoformat()

            await self._wait_for_next_sync()

        logger.info("Sync loop stopped")

    async def _wait_for_next_sync(self):
        """Wait for the next sync interval."""
        logger.debug(f"Waiting {self.interval_seconds} seconds for next sync")

        # Sleep in short chunks for responsive shutdown
        sleep_interval = min(60, self.interval_seconds)
        total_waited = 0

        while total_waited < self.interval_seconds and self._running:
            current_sleep = min(sleep_interval, self.interval_seconds - total_waited)

            await asyncio.sleep(current_sleep)
            total_waited += current_sleep

    @staticmethod
    def _parse_interval(interval_str: str) -> timedelta:
        """Parse interval string (e.g., '30s', '15m', '1h', '1d') to timedelta."""
        interval_str = interval_str.lower().strip()
        units = {
            's': 'seconds',
            'm': 'minutes',
            'h': 'hours',
            'd': 'days'
        }

        unit = interval_str[-1:]
        if unit not in units or not interval_str[:-1].isdigit():
            raise ValueError(f"Invalid interval format: {interval_str}")

        return timedelta(**{units[unit]: int(interval_str[:-1])})

    @classmethod
    def _interval_to_seconds(cls, interval_str: str) -> int:
        """Convert interval string to seconds."""
        return int(cls._parse_interval(interval_str).total_seconds())

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the scheduler."""
        health_status = {
            "status": "healthy" if self._running else "stopped",
            "sync_interval": self.config.sync_interval,
            "pending_jobs": self.lane.pending,
            "last_result": self._last_result,
            "last_sync_time": self._last_sync_time,
            "last_check": datetime.utcnow().isoformat()
        }

        try:
            orchestrator_health = await self.orchestrator.health_check()
            health_status["orchestrator"] = orchestrator_health

            if orchestrator_health.get("status") != "healthy":
                health_status["status"] = "degraded"

        except Exception as e:
            health_status["orchestrator"] = {"status": "unhealthy", "error": str(e)}
            health_status["status"] = "unhealthy"

        return health_status
