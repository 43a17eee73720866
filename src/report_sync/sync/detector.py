"""Delta detection: decides what is new before any bulk fetch happens."""

import logging
from typing import Any, Optional

from ..clients.gateway import AccountCredential, FetchWindow
from ..registry import CollectionSchema
from ..storage.base import SyncDAO
from ..utils.retry import RetryPolicy
from .cursor import SymbolCursor, SyncCursor

logger = logging.getLogger(__name__)

PUBLIC_COLLS_CONF = "publicCollsConf"


def _newest(res: Any) -> Optional[dict]:
    """Newest record of a probe response."""
    if isinstance(res, list):
        res = res[0] if res else None
    return res if isinstance(res, dict) and res else None


def _date_of(record: Optional[dict], date_field: str) -> Optional[int]:
    if not record:
        return None

    value = record.get(date_field)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _stored_date_if_older(date_field: str, stored: dict, remote: dict) -> Optional[int]:
    """The stored date, if the remote record is strictly newer."""
    stored_date = _date_of(stored, date_field)
    remote_date = _date_of(remote, date_field)

    if stored_date is None or remote_date is None:
        return None
    return stored_date if stored_date < remote_date else None


class DeltaDetector:
    """Compares the newest stored record against a one-record remote probe."""

    def __init__(self, retry_policy: RetryPolicy, dao: SyncDAO):
        self.retry_policy = retry_policy
        self.dao = dao

    async def _probe(
        self,
        method: str,
        auth: Optional[AccountCredential] = None,
        symbol: Optional[str] = None
    ) -> Optional[dict]:
        result = await self.retry_policy.fetch_one(
            method,
            FetchWindow.probe(auth=auth, symbol=symbol),
            is_probe=True
        )
        return _newest(result.res)

    async def detect(
        self,
        schema: CollectionSchema,
        method: str,
        credential: Optional[AccountCredential] = None
    ) -> SyncCursor:
        """
        Detect new data of a single-stream collection.

        Args:
            schema: Insertable collection schema
            method: Remote method name
            credential: Account to probe; None for public collections

        Returns:
            Cursor whose ``start`` is 0 for an empty store, otherwise one
            past the newest stored date
        """
        cursor = SyncCursor()
        latest_remote = await self._probe(method, auth=credential)

        if latest_remote is None:
            logger.debug(f"{schema.name}: remote has no records")
            return cursor

        account_filter = credential.as_filter() if credential else None
        last_stored = await self.dao.get_last_record(schema.name, account_filter, schema.sort)

        if not last_stored:
            cursor.has_new_data = True
            cursor.start = 0
        else:
            last_date = _stored_date_if_older(schema.date_field, last_stored, latest_remote)

            if last_date is not None:
                cursor.has_new_data = True
                cursor.start = last_date + 1

        logger.debug(
            f"{schema.name}: has_new_data={cursor.has_new_data}, start={cursor.start}"
        )
        return cursor

    async def detect_configurable(self, schema: CollectionSchema, method: str) -> SyncCursor:
        """Detect new data and history gaps per configured symbol."""
        cursor = SyncCursor()
        symbol_field = schema.symbol_field

        confs = await self.dao.get_records_by(
            PUBLIC_COLLS_CONF,
            filter={"confName": schema.conf_name},
            min_field="start",
            group_field="symbol"
        )

        if not confs:
            logger.debug(f"{schema.name}: no symbols configured under {schema.conf_name}")
            return cursor

        for conf in confs:
            symbol = conf.get("symbol")
            start = conf.get("start") or 0

            latest_remote = await self._probe(method, symbol=symbol)
            remote_symbol = latest_remote.get(symbol_field) if latest_remote else None

            if latest_remote is None or (
                isinstance(remote_symbol, str) and remote_symbol != symbol
            ):
                logger.debug(f"{schema.name}: skipping unsupported symbol {symbol}")
                continue

            symbol_filter = {symbol_field: symbol}
            last_stored = await self.dao.get_last_record(schema.name, symbol_filter, schema.sort)

            if not last_stored:
                cursor.has_new_data = True
                cursor.symbols[symbol] = SymbolCursor(curr_start=start)
                continue

            symbol_cursor = SymbolCursor()
            last_date = _stored_date_if_older(schema.date_field, last_stored, latest_remote)

            if last_date is not None:
                cursor.has_new_data = True
                symbol_cursor.curr_start = last_date + 1

            first_stored = await self.dao.get_first_record(schema.name, symbol_filter, schema.sort)
            first_date = _date_of(first_stored, schema.date_field)

            # Configured start moved earlier than the stored history
            if first_date is not None and start < first_date:
                cursor.has_new_data = True
                symbol_cursor.base_start_from = start
                symbol_cursor.base_start_to = first_date - 1

            if not symbol_cursor.is_empty:
                cursor.symbols[symbol] = symbol_cursor

        logger.debug(
            f"{schema.name}: has_new_data={cursor.has_new_data}, "
            f"symbols={list(cursor.symbols)}"
        )
        return cursor
