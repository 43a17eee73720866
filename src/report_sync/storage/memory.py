"""In-process DAO, used for local runs and tests."""

import asyncio
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..clients.gateway import AccountCredential
from ..registry import SortSpec
from .base import Filter, Record, SyncDAO, identity_of

logger = logging.getLogger(__name__)


def _matches(record: Record, filter: Filter) -> bool:
    if not filter:
        return True
    return all(record.get(key) == value for key, value in filter.items())


def _sorted(records: List[Record], sort: SortSpec) -> List[Record]:
    result = list(records)

    # Stable sorts applied from the least significant key
    for name, direction in reversed(tuple(sort)):
        result.sort(
            key=lambda r: (r.get(name) is not None, r.get(name)),
            reverse=direction < 0
        )

    return result


class MemoryDAO(SyncDAO):
    """Keeps collections in memory; each write swaps in a new list under a lock."""

    def __init__(self):
        self._collections: Dict[str, List[Record]] = {}
        self._credentials: Dict[str, AccountCredential] = {}
        self._lock = asyncio.Lock()

        self.stats = {
            "records_inserted": 0,
            "records_removed": 0,
            "write_calls": 0
        }

    def records(self, collection: str, filter: Filter = None) -> List[Record]:
        """Snapshot of the stored records of a collection."""
        return [
            copy.deepcopy(record)
            for record in self._collections.get(collection, [])
            if _matches(record, filter)
        ]

    async def get_account_credentials(self) -> Dict[str, AccountCredential]:
        return dict(self._credentials)

    async def save_account_credentials(self, credentials: Iterable[AccountCredential]) -> None:
        async with self._lock:
            for credential in credentials:
                self._credentials[credential.account_id or credential.api_key] = credential

    async def get_last_record(
        self,
        collection: str,
        filter: Filter = None,
        sort: SortSpec = ()
    ) -> Optional[Record]:
        matching = self.records(collection, filter)
        if not matching:
            return None

        return _sorted(matching, sort)[0]

    async def insert_records(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any]
    ) -> None:
        if not records:
            return

        stamped = [
            {**copy.deepcopy(record), **(account_filter or {})}
            for record in records
        ]

        async with self._lock:
            self._collections[collection] = self._collections.get(collection, []) + stamped
            self.stats["records_inserted"] += len(stamped)
            self.stats["write_calls"] += 1

        logger.debug(f"Inserted {len(stamped)} records into {collection}")

    async def insert_records_if_absent(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any],
        identity_fields: Optional[Sequence[str]] = None
    ) -> None:
        if not records:
            return

        async with self._lock:
            existing = self._collections.get(collection, [])
            seen = {
                identity_of(record, identity_fields)
                for record in existing
                if _matches(record, account_filter)
            }
            fresh = []

            for record in records:
                key = identity_of(record, identity_fields)
                if key in seen:
                    continue

                seen.add(key)
                fresh.append({**copy.deepcopy(record), **(account_filter or {})})

            if fresh:
                self._collections[collection] = existing + fresh
                self.stats["records_inserted"] += len(fresh)
            self.stats["write_calls"] += 1

        logger.debug(f"Inserted {len(fresh)} of {len(records)} records into {collection}")

    async def remove_records_not_in_lists(
        self,
        collection: str,
        lists: Dict[str, List[Any]]
    ) -> None:
        async with self._lock:
            existing = self._collections.get(collection, [])
            kept = [
                record for record in existing
                if all(record.get(name) in values for name, values in lists.items())
            ]
            removed = len(existing) - len(kept)

            self._collections[collection] = kept
            self.stats["records_removed"] += removed
            self.stats["write_calls"] += 1

        if removed:
            logger.debug(f"Removed {removed} stale records from {collection}")

    async def get_records_by(
        self,
        collection: str,
        filter: Filter = None,
        min_field: Optional[str] = None,
        group_field: Optional[str] = None
    ) -> List[Record]:
        matching = self.records(collection, filter)

        if min_field:
            matching = _sorted(matching, ((min_field, 1),))
        if not group_field:
            return matching

        groups: Dict[Any, Record] = {}
        for record in matching:
            groups.setdefault(record.get(group_field), record)

        return list(groups.values())

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the in-memory store."""
        return {
            "status": "healthy",
            "collections": {name: len(rows) for name, rows in self._collections.items()},
            "stats": self.stats.copy()
        }
