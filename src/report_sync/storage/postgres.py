"""PostgreSQL DAO storing synchronized records as JSONB documents."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import asyncpg
from asyncpg import Connection, Pool

from ..clients.gateway import AccountCredential
from ..config.settings import StorageConfig
from ..registry import SortSpec
from .base import Filter, Record, SyncDAO, identity_of

logger = logging.getLogger(__name__)


async def _init_connection(conn: Connection):
    await conn.set_type_codec(
        'jsonb',
        encoder=json.dumps,
        decoder=json.loads,
        schema='pg_catalog'
    )


def _order_clause(sort: SortSpec, first_param: int) -> Tuple[str, List[str]]:
    """Build an ORDER BY clause over JSONB fields passed as parameters."""
    if not sort:
        return "ORDER BY id", []

    parts = []
    params = []

    for offset, (name, direction) in enumerate(sort):
        order = "DESC NULLS LAST" if direction < 0 else "ASC NULLS LAST"
        parts.append(f"record->${first_param + offset} {order}")
        params.append(name)

    return "ORDER BY " + ", ".join(parts), params


class PostgresDAO(SyncDAO):
    """Handles PostgreSQL persistence; one transaction per write call."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.pool: Optional[Pool] = None

        # Statistics
        self.stats = {
            "records_inserted": 0,
            "records_removed": 0,
            "write_calls": 0,
            "write_errors": 0,
            "last_write_time": None
        }

        logger.info("PostgresDAO initialized")

    async def initialize(self):
        """Initialize database connection pool."""

        logger.info("Initializing database connection pool")

        try:
            self.pool = await asyncpg.create_pool(
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                database=self.config.name,
                min_size=self.config.pool_min_size,
                max_size=self.config.pool_max_size,
                command_timeout=60,
                init=_init_connection
            )

            await self._create_tables()

            logger.info("Database connection pool initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}", exc_info=True)
            raise

    async def close(self):
        """Close database connection pool."""

        if self.pool:
            logger.info("Closing database connection pool")
            await self.pool.close()
            self.pool = None

    async def _create_tables(self):
        """Create database tables if they don't exist."""

        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_records (
                    id BIGSERIAL PRIMARY KEY,
                    collection VARCHAR(64) NOT NULL,
                    record JSONB NOT NULL,
                    created_at TIMESTAMP DEFAULT NOW()
                )
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_records_collection
                ON sync_records(collection)
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_records_record
                ON sync_records USING GIN (record jsonb_path_ops)
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_accounts (
                    account_id VARCHAR(128) PRIMARY KEY,
                    api_key TEXT NOT NULL,
                    api_secret TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT NOW()
                )
            """)

            logger.info("Database tables and indexes created successfully")

    async def get_account_credentials(self) -> Dict[str, AccountCredential]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT account_id, api_key, api_secret FROM sync_accounts ORDER BY account_id"
            )

        return {
            row["account_id"]: AccountCredential(
                api_key=row["api_key"],
                api_secret=row["api_secret"],
                account_id=row["account_id"]
            )
            for row in rows
        }

    async def save_account_credentials(self, credentials: Iterable[AccountCredential]) -> None:
        rows = [
            (credential.account_id or credential.api_key, credential.api_key, credential.api_secret)
            for credential in credentials
        ]
        if not rows:
            return

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany("""
                    INSERT INTO sync_accounts (account_id, api_key, api_secret)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (account_id) DO UPDATE
                    SET api_key = EXCLUDED.api_key,
                        api_secret = EXCLUDED.api_secret,
                        updated_at = NOW()
                """, rows)

    async def get_last_record(
        self,
        collection: str,
        filter: Filter = None,
        sort: SortSpec = ()
    ) -> Optional[Record]:
        order_by, order_params = _order_clause(sort, 3)

        async with self.pool.acquire() as conn:
            return await conn.fetchval(f"""
                SELECT record FROM sync_records
                WHERE collection = $1 AND record @> $2::jsonb
                {order_by}
                LIMIT 1
            """, collection, filter or {}, *order_params)

    async def insert_records(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any]
    ) -> None:
        if not records:
            return

        rows = [
            (collection, {**record, **(account_filter or {})})
            for record in records
        ]

        await self._write(
            collection,
            len(rows),
            "INSERT INTO sync_records (collection, record) VALUES ($1, $2::jsonb)",
            rows
        )

    async def insert_records_if_absent(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any],
        identity_fields: Optional[Sequence[str]] = None
    ) -> None:
        if not records:
            return

        rows = []
        seen = set()

        for record in records:
            key = identity_of(record, identity_fields)
            if key in seen:
                continue
            seen.add(key)

            identity = {name: value for name, value in key}
            rows.append((
                collection,
                {**record, **(account_filter or {})},
                {**identity, **(account_filter or {})}
            ))

        await self._write(collection, len(rows), """
            INSERT INTO sync_records (collection, record)
            SELECT $1, $2::jsonb
            WHERE NOT EXISTS (
                SELECT 1 FROM sync_records
                WHERE collection = $1 AND record @> $3::jsonb
            )
        """, rows)

    async def remove_records_not_in_lists(
        self,
        collection: str,
        lists: Dict[str, List[Any]]
    ) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                removed = 0

                for name, values in lists.items():
                    result = await conn.execute("""
                        DELETE FROM sync_records
                        WHERE collection = $1
                        AND NOT COALESCE(record->>$2 = ANY($3::text[]), FALSE)
                    """, collection, name, [str(value) for value in values])
                    removed += int(result.split()[-1])

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
        params: List[Any] = [collection, filter or {}]

        if group_field:
            params.append(group_field)
            select = "SELECT DISTINCT ON (record->$3) record"
            order_by = "ORDER BY record->$3"

            if min_field:
                params.append(min_field)
                order_by += ", record->$4 ASC"
        else:
            select = "SELECT record"
            order_by = "ORDER BY id"

            if min_field:
                params.append(min_field)
                order_by = "ORDER BY record->$3 ASC"

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                {select} FROM sync_records
                WHERE collection = $1 AND record @> $2::jsonb
                {order_by}
            """, *params)

        return [row["record"] for row in rows]

    async def _write(self, collection: str, count: int, query: str, rows: List[tuple]):
        """Execute one write batch inside a transaction."""

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(query, rows)

        except Exception as e:
            self.stats["write_errors"] += 1
            logger.error(f"Failed to write {count} records into {collection}: {e}")
            raise

        self.stats["records_inserted"] += count
        self.stats["write_calls"] += 1
        self.stats["last_write_time"] = datetime.utcnow().isoformat()

        logger.debug(f"Wrote batch of {count} records into {collection}")

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the database connection."""

        if not self.pool:
            return {"status": "unhealthy", "error": "Connection pool not initialized"}

        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            return {
                "status": "healthy",
                "pool_size": self.pool.get_size(),
                "stats": self.stats.copy()
            }

        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}
