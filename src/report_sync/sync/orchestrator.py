"""Sync orchestration: accounts, then public data, then post-sync hooks."""

import asyncio
import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..clients.gateway import AccountCredential, FetchWindow, Gateway
from ..config.settings import SyncConfig
from ..registry import CollectionRegistry
from ..storage.base import SyncDAO
from ..utils.logging import bind_sync_context
from ..utils.retry import RetryPolicy
from .cursor import PUBLIC_SCOPE, SyncCursor, SyncRun
from .detector import DeltaDetector
from .fetcher import PaginatedFetcher
from .progress import UNAUTHORIZED, PostSyncHooks, Progress, ProgressPublisher

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    LOADING_ACCOUNTS = "loading_accounts"
    ACCOUNT_SYNC = "account_sync"
    PUBLIC_SYNC = "public_sync"
    POST_SYNC_HOOKS = "post_sync_hooks"
    DONE = "done"
    FAILED = "failed"


def _round(value: float) -> int:
    """Round half up."""
    return int(math.floor(value + 0.5))


class SyncOrchestrator:
    """
    Runs one full synchronization pass at a time.

    Accounts are synchronized strictly one after another, then public
    collections, then post-sync hooks. Any error that escapes the retry
    policy aborts the run; pages persisted before the error stay durable.
    """

    def __init__(
        self,
        dao: SyncDAO,
        gateway: Gateway,
        sync_config: Optional[SyncConfig] = None,
        registry: Optional[CollectionRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.dao = dao
        self.gateway = gateway
        self.sync_config = sync_config or SyncConfig()
        self.registry = registry or CollectionRegistry(
            self.sync_config.collections,
            record_cap=self.sync_config.record_cap
        )
        self.retry_policy = retry_policy or RetryPolicy.from_config(gateway, self.sync_config)

        self._cancel_event = asyncio.Event()
        self.detector = DeltaDetector(self.retry_policy, dao)
        self.fetcher = PaginatedFetcher(self.retry_policy, dao, is_cancelled=self._cancel_event.is_set)
        self.progress = ProgressPublisher()
        self.hooks = PostSyncHooks()

        self.state = SyncState.IDLE
        self.run: Optional[SyncRun] = None
        self._active_run: Optional[SyncRun] = None
        self.last_error: Optional[BaseException] = None

        # Statistics
        self.stats = {
            "runs_started": 0,
            "runs_completed": 0,
            "runs_failed": 0,
            "records_synced": 0,
            "last_run_time": None,
            "last_run_duration_seconds": None
        }

        logger.info(f"SyncOrchestrator initialized with {len(self.registry)} collections")

    def set_progress_handler(self, handler: Callable):
        """Register the handler awaited before progress listeners."""
        self.progress.set_handler(handler)

    def subscribe(self, listener: Callable):
        """Register a progress listener."""
        self.progress.subscribe(listener)

    def add_post_sync_hook(self, hook: Callable):
        """Append a hook run once after every full sync."""
        self.hooks.add(hook)

    def cancel(self):
        """Request cooperative cancellation at the next page boundary."""
        logger.info("Sync cancellation requested")
        self._cancel_event.set()

    @property
    def is_running(self) -> bool:
        return self._active_run is not None

    def _set_state(self, state: SyncState):
        logger.debug(f"Sync state: {self.state.value} -> {state.value}")
        self.state = state

    def _current_run(self) -> SyncRun:
        if self._active_run is not None:
            return self._active_run

        self.run = SyncRun()
        return self.run

    async def _load_credentials(self) -> List[AccountCredential]:
        stored = await self.dao.get_account_credentials()
        credentials = list((stored or {}).values())
        valid = [c for c in credentials if isinstance(c, AccountCredential) and c.is_valid]

        if len(valid) != len(credentials):
            logger.warning(f"Skipping {len(credentials) - len(valid)} malformed account credential(s)")

        return valid

    async def run_full_sync(self) -> Progress:
        """
        Synchronize every account, then public data, then run hooks.

        Returns:
            100, or "unauthorized" when no usable credentials exist
        """
        self._cancel_event.clear()
        self.progress.reset()
        self.run = SyncRun()
        self._active_run = self.run
        self.last_error = None
        self.stats["runs_started"] += 1

        started = datetime.utcnow()

        with bind_sync_context(run_id=self.run.run_id):
            logger.info(f"Starting full sync run {self.run.run_id}")

            try:
                self._set_state(SyncState.LOADING_ACCOUNTS)
                credentials = await self._load_credentials()

                if not credentials:
                    logger.warning("No usable account credentials, sync is unauthorized")
                    await self.progress.publish(UNAUTHORIZED)
                    self._set_state(SyncState.DONE)
                    return UNAUTHORIZED

                self._set_state(SyncState.ACCOUNT_SYNC)
                progress = 0
                total = len(credentials)

                for index, credential in enumerate(credentials, start=1):
                    progress = await self.run_account_sync(credential, index / total)

                self._set_state(SyncState.PUBLIC_SYNC)
                await self.run_public_sync(progress)

                self._set_state(SyncState.POST_SYNC_HOOKS)
                await self.hooks.run(self, timeout=self.sync_config.hook_timeout_seconds)

                await self.progress.publish(100)
                self._set_state(SyncState.DONE)
                self.stats["runs_completed"] += 1

                logger.info(f"Full sync run {self.run.run_id} completed: {self.run.summary()}")
                return 100

            except Exception as e:
                self._set_state(SyncState.FAILED)
                self.last_error = e
                self.stats["runs_failed"] += 1
                logger.error(f"Full sync run {self.run.run_id} failed: {e}", exc_info=True)
                raise

            finally:
                self._active_run = None
                self.stats["last_run_time"] = started.isoformat()
                self.stats["last_run_duration_seconds"] = (datetime.utcnow() - started).total_seconds()

    async def run_account_sync(
        self,
        credential: AccountCredential,
        account_weight: float = 1.0
    ) -> int:
        """
        Synchronize the account-scoped collections of one account.

        Args:
            credential: Account to synchronize
            account_weight: Share of the progress scale given to this account

        Returns:
            Progress reached after the last collection
        """
        if not isinstance(credential, AccountCredential) or not credential.is_valid:
            logger.warning("Account credential is malformed, sync is unauthorized")
            await self.progress.publish(UNAUTHORIZED)
            return 0

        account_filter = credential.as_filter()
        scope = str(account_filter["account_id"])

        with bind_sync_context(account=scope):
            return await self._sync_account(credential, account_filter, scope, account_weight)

    async def _sync_account(
        self,
        credential: AccountCredential,
        account_filter: Dict[str, Any],
        scope: str,
        account_weight: float
    ) -> int:
        run = self._current_run()
        schemas = self.registry.account_schemas()

        cursors: Dict[str, SyncCursor] = {}
        for method, schema in schemas:
            self.fetcher.check_cancelled()
            cursor = await self.detector.detect(schema, method, credential)
            cursors[method] = run.set_cursor(schema.name, scope, cursor)

        progress = 0
        done = 0
        total = len(schemas)

        for method, schema in schemas:
            cursor = cursors[method]

            if cursor.has_new_data:
                window = FetchWindow.build(
                    auth=credential,
                    limit=schema.record_cap,
                    start=cursor.start
                )
                count = await self.fetcher.fill(schema, method, window, account_filter)
                self.stats["records_synced"] += count

            done += 1
            progress = _round((done / total) * 100 * account_weight)

            if progress < 100:
                await self.progress.publish(progress)

        logger.info(f"Account {scope} synchronized, progress {progress}")
        return progress

    async def run_public_sync(self, prev_progress: Union[int, float] = 0) -> int:
        """
        Synchronize public collections, filling the remaining progress headroom.

        Returns:
            Progress reached after the last collection
        """
        run = self._current_run()
        schemas = self.registry.public_schemas()

        cursors: Dict[str, SyncCursor] = {}
        for method, schema in schemas:
            if not schema.is_insertable:
                continue

            self.fetcher.check_cancelled()

            if schema.is_configurable:
                cursor = await self.detector.detect_configurable(schema, method)
            else:
                cursor = await self.detector.detect(schema, method)

            cursors[method] = run.set_cursor(schema.name, PUBLIC_SCOPE, cursor)

        progress = _round(prev_progress)
        done = 0
        total = len(schemas)

        for method, schema in schemas:
            if schema.is_updatable:
                await self.fetcher.reconcile(schema, method)
            else:
                self.stats["records_synced"] += await self._fill_public(schema, method, cursors[method])

            done += 1
            progress = _round(
                prev_progress + (done / total) * 100 * ((100 - prev_progress) / 100)
            )

            if progress < 100:
                await self.progress.publish(progress)

        logger.info(f"Public data synchronized, progress {progress}")
        return progress

    async def _fill_public(self, schema, method: str, cursor: SyncCursor) -> int:
        if not cursor.has_new_data:
            return 0

        if schema.is_configurable:
            count = 0
            for symbol, symbol_cursor in cursor.symbols.items():
                count += await self.fetcher.fill_configurable(schema, method, symbol, symbol_cursor)
            return count

        window = FetchWindow.build(limit=schema.record_cap, start=cursor.start)
        return await self.fetcher.fill(schema, method, window)

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the orchestrator."""
        status = "healthy"
        if self.state is SyncState.FAILED:
            status = "degraded"

        return {
            "status": status,
            "state": self.state.value,
            "running": self.is_running,
            "last_progress": self.progress.last_progress,
            "last_error": str(self.last_error) if self.last_error else None,
            "collections": len(self.registry),
            "stats": self.stats.copy(),
            "retry_stats": self.retry_policy.stats.copy(),
            "fetcher_stats": self.fetcher.stats.copy()
        }
