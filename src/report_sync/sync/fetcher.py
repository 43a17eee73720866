"""Paginated fetch, clip and persist loop."""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..clients.gateway import FetchWindow
from ..errors import SyncCancelledError
from ..registry import CollectionKind, CollectionSchema
from ..storage.base import SyncDAO
from ..utils.retry import RetryPolicy
from .cursor import SymbolCursor

logger = logging.getLogger(__name__)


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class PaginatedFetcher:
    """
    Streams pages from the remote API into storage.

    Pages arrive newest first. Each page is persisted before the next one
    is requested, so an interrupted pass resumes from storage state.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy,
        dao: SyncDAO,
        is_cancelled: Optional[Callable[[], bool]] = None
    ):
        self.retry_policy = retry_policy
        self.dao = dao
        self._is_cancelled = is_cancelled

        # Statistics
        self.stats = {
            "pages_fetched": 0,
            "empty_page_retries": 0,
            "records_persisted": 0,
            "records_reconciled": 0
        }

    def check_cancelled(self):
        if self._is_cancelled and self._is_cancelled():
            raise SyncCancelledError()

    async def fill(
        self,
        schema: CollectionSchema,
        method: str,
        window: FetchWindow,
        account_filter: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        Fetch and persist records of one collection from ``window.params.start``.

        Args:
            schema: Insertable collection schema
            method: Remote method name
            window: Initial window; ``limit`` is the record cap of the pass
            account_filter: Owner stamped on persisted records, None for public data

        Returns:
            Number of records persisted
        """
        date_field = schema.date_field
        current = window.copy()
        current.params.not_throw_error = True

        start = current.params.start or 0
        cap = current.params.limit if current.params.limit is not None else schema.record_cap

        count = 0
        empty_retries = 0

        while True:
            self.check_cancelled()

            result = await self.retry_policy.fetch_one(method, current)
            res, next_page = result.res, result.next_page
            self.stats["pages_fetched"] += 1

            if (
                isinstance(res, list) and
                not res and
                _is_timestamp(next_page) and
                empty_retries < 1
            ):
                empty_retries += 1
                self.stats["empty_page_retries"] += 1
                logger.debug(f"{schema.name}: empty page with next page {next_page}, retrying once")
                continue

            empty_retries = 0

            if not isinstance(res, list) or not res:
                break

            oldest = res[-1]
            oldest_date = oldest.get(date_field) if isinstance(oldest, dict) else None

            if not _is_timestamp(oldest_date):
                logger.warning(f"{schema.name}: oldest record has no valid {date_field}, stopping")
                break

            is_all_data = False

            if start >= oldest_date:
                res = [
                    record for record in res
                    if isinstance(record, dict) and
                    _is_timestamp(record.get(date_field)) and
                    record[date_field] >= start
                ]
                is_all_data = True

            if count + len(res) > cap:
                res = res[:cap - count]
                is_all_data = True

            if res:
                await self.dao.insert_records(
                    schema.name,
                    account_filter,
                    schema.transform_all(res)
                )

            count += len(res)
            self.stats["records_persisted"] += len(res)

            if is_all_data or count >= cap or not _is_timestamp(next_page):
                break

            current.params.end = next_page

        logger.info(f"{schema.name}: persisted {count} records")
        return count

    async def fill_configurable(
        self,
        schema: CollectionSchema,
        method: str,
        symbol: str,
        cursor: SymbolCursor
    ) -> int:
        """Backfill the history gap of a symbol, then fetch forward from its current start."""
        count = 0

        if cursor.has_gap:
            window = FetchWindow.build(
                limit=schema.record_cap,
                start=cursor.base_start_from,
                end=cursor.base_start_to,
                symbol=symbol
            )
            count += await self.fill(schema, method, window)

        if cursor.curr_start is not None:
            window = FetchWindow.build(
                limit=schema.record_cap,
                start=cursor.curr_start,
                symbol=symbol
            )
            count += await self.fill(schema, method, window)

        return count

    async def reconcile(self, schema: CollectionSchema, method: str) -> int:
        """
        Replace an updatable collection's identity set with the remote listing.

        Rows missing from the listing are removed, listed rows not stored yet
        are inserted and existing rows are never overwritten. An empty
        listing leaves storage unchanged.
        """
        self.check_cancelled()

        result = await self.retry_policy.fetch_one(method, FetchWindow())
        listing = result.res

        if not isinstance(listing, list) or not listing:
            logger.debug(f"{schema.name}: empty listing, nothing to reconcile")
            return 0

        records, lists = self._listing_records(schema, listing)

        await self.dao.remove_records_not_in_lists(schema.name, lists)
        await self.dao.insert_records_if_absent(
            schema.name,
            None,
            records,
            identity_fields=schema.fields or None
        )

        self.stats["records_reconciled"] += len(records)
        logger.info(f"{schema.name}: reconciled {len(records)} listed records")
        return len(records)

    @staticmethod
    def _listing_records(schema: CollectionSchema, listing: List[Any]):
        if schema.kind is CollectionKind.UPDATABLE_ARRAY:
            field = schema.fields[0]
            return [{field: item} for item in listing], {field: list(listing)}

        records = schema.transform_all(item for item in listing if isinstance(item, dict))
        lists = {
            field: [record.get(field) for record in records]
            for field in schema.fields
        }
        return records, lists
