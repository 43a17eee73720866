"""Tests for the in-memory DAO."""

import pytest

from report_sync.clients.gateway import AccountCredential
from report_sync.storage import MemoryDAO, create_dao
from report_sync.config.settings import StorageConfig
from report_sync.errors import ConfigurationError

SORT = (("mts", -1),)


class TestMemoryDAO:
    """Test the DAO contract against the in-memory backend."""

    async def seeded(self):
        dao = MemoryDAO()
        await dao.insert_records("ledgers", {"account_id": "a"}, [
            {"id": 1, "mts": 100},
            {"id": 2, "mts": 300},
            {"id": 3, "mts": 200},
        ])
        await dao.insert_records("ledgers", {"account_id": "b"}, [{"id": 4, "mts": 900}])
        return dao

    @pytest.mark.asyncio
    async def test_last_and_first_record(self):
        dao = await self.seeded()
        last = await dao.get_last_record("ledgers", {"account_id": "a"}, SORT)
        first = await dao.get_first_record("ledgers", {"account_id": "a"}, SORT)

        assert last["id"] == 2
        assert first["id"] == 1

    @pytest.mark.asyncio
    async def test_missing_collection(self):
        dao = MemoryDAO()

        assert await dao.get_last_record("ledgers", None, SORT) is None

    @pytest.mark.asyncio
    async def test_insert_stamps_account_filter(self):
        dao = await self.seeded()
        records = dao.records("ledgers", {"account_id": "b"})

        assert records == [{"id": 4, "mts": 900, "account_id": "b"}]

    @pytest.mark.asyncio
    async def test_stored_records_are_copies(self):
        dao = MemoryDAO()
        record = {"id": 1, "mts": 1}
        await dao.insert_records("ledgers", None, [record])

        record["mts"] = 999

        assert dao.records("ledgers")[0]["mts"] == 1

    @pytest.mark.asyncio
    async def test_insert_if_absent_by_identity_fields(self):
        dao = MemoryDAO()
        await dao.insert_records("currencies", None, [{"id": "BTC", "name": "Old"}])

        await dao.insert_records_if_absent("currencies", None, [
            {"id": "BTC", "name": "New"},
            {"id": "ETH", "name": "Ether"},
            {"id": "ETH", "name": "Duplicate"},
        ], identity_fields=["id"])

        assert dao.records("currencies") == [
            {"id": "BTC", "name": "Old"},
            {"id": "ETH", "name": "Ether"},
        ]

    @pytest.mark.asyncio
    async def test_insert_if_absent_by_whole_record(self):
        dao = MemoryDAO()
        await dao.insert_records_if_absent("conf", None, [{"symbol": "a", "start": 1}])
        await dao.insert_records_if_absent("conf", None, [
            {"symbol": "a", "start": 1},
            {"symbol": "a", "start": 0},
        ])

        assert len(dao.records("conf")) == 2

    @pytest.mark.asyncio
    async def test_remove_records_not_in_lists(self):
        dao = MemoryDAO()
        await dao.insert_records("symbols", None, [{"pairs": p} for p in ("A", "B", "C")])

        await dao.remove_records_not_in_lists("symbols", {"pairs": ["A", "C", "D"]})

        assert [r["pairs"] for r in dao.records("symbols")] == ["A", "C"]
        assert dao.stats["records_removed"] == 1

    @pytest.mark.asyncio
    async def test_get_records_by_min_and_group(self):
        dao = MemoryDAO()
        await dao.insert_records("publicCollsConf", None, [
            {"confName": "x", "symbol": "BTC", "start": 50},
            {"confName": "x", "symbol": "BTC", "start": 10},
            {"confName": "x", "symbol": "ETH", "start": 30},
            {"confName": "y", "symbol": "LTC", "start": 0},
        ])

        rows = await dao.get_records_by("publicCollsConf", {"confName": "x"}, min_field="start", group_field="symbol")

        assert sorted((r["symbol"], r["start"]) for r in rows) == [("BTC", 10), ("ETH", 30)]

    @pytest.mark.asyncio
    async def test_account_credentials(self):
        dao = MemoryDAO()
        credential = AccountCredential(api_key="k", api_secret="s", account_id="acc")

        await dao.save_account_credentials([credential])

        assert await dao.get_account_credentials() == {"acc": credential}


class TestCreateDAO:
    """Test storage selection."""

    def test_memory(self):
        assert isinstance(create_dao(StorageConfig(storage_type="memory")), MemoryDAO)

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            create_dao(StorageConfig(storage_type="sqlite"))
