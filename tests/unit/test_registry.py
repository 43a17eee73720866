"""Tests for the collection schema registry."""

import dataclasses

import pytest

from report_sync.errors import CollectionNotFoundError, UnknownCollectionError
from report_sync.registry import (
    DEFAULT_RECORD_CAP,
    METHOD_COLLECTION_MAP,
    AllowedCollections,
    CollectionKind,
    CollectionRegistry,
    invert_sort,
)


class TestCollectionRegistry:
    """Test allow-list filtering and lookups."""

    def test_all_keeps_every_schema(self):
        registry = CollectionRegistry()

        assert len(registry) == len(METHOD_COLLECTION_MAP)
        assert "getLedgers" in registry
        assert "getCurrencies" in registry

    def test_allow_list_filters_by_collection_name(self):
        registry = CollectionRegistry(["ledgers", "publicTrades"])

        assert [method for method, _ in registry.items()] == ["getLedgers", "getPublicTrades"]

    def test_unknown_collection_is_rejected_at_construction(self):
        with pytest.raises(UnknownCollectionError) as exc_info:
            CollectionRegistry(["ledgers", "bogus"])

        assert exc_info.value.names == ["bogus"]

    def test_empty_allow_list_is_rejected(self):
        with pytest.raises(UnknownCollectionError):
            CollectionRegistry([])

    def test_single_name_string(self):
        registry = CollectionRegistry("trades")

        assert len(registry) == 1
        assert registry.resolve("getTrades").date_field == "mtsCreate"

    def test_resolve_unknown_method(self):
        registry = CollectionRegistry(["ledgers"])

        with pytest.raises(CollectionNotFoundError):
            registry.resolve("getTrades")

    def test_account_schemas_are_private_insertable(self):
        registry = CollectionRegistry()

        for _, schema in registry.account_schemas():
            assert schema.is_insertable
            assert not schema.is_public

        names = [schema.name for _, schema in registry.account_schemas()]
        assert "publicTrades" not in names
        assert "symbols" not in names

    def test_public_schemas_include_every_kind(self):
        registry = CollectionRegistry()
        kinds = {schema.kind for _, schema in registry.public_schemas()}

        assert kinds == {
            CollectionKind.INSERTABLE_ARRAY_OBJECTS,
            CollectionKind.UPDATABLE_ARRAY_OBJECTS,
            CollectionKind.UPDATABLE_ARRAY,
        }

    def test_record_cap_override_leaves_updatable_schemas(self):
        registry = CollectionRegistry(["ledgers", "symbols"], record_cap=25)

        assert registry.resolve("getLedgers").record_cap == 25
        assert registry.resolve("getSymbols").record_cap == DEFAULT_RECORD_CAP
        # Static table is untouched
        assert METHOD_COLLECTION_MAP["getLedgers"].record_cap == DEFAULT_RECORD_CAP

    def test_allowed_names_vocabulary(self):
        names = AllowedCollections.names()

        assert AllowedCollections.ALL in names
        assert {schema.name for schema in METHOD_COLLECTION_MAP.values()} <= set(names)


class TestCollectionSchema:
    """Test schema descriptors."""

    def test_schemas_are_immutable(self):
        schema = METHOD_COLLECTION_MAP["getLedgers"]

        with pytest.raises(dataclasses.FrozenInstanceError):
            schema.record_cap = 1

    def test_configurable_public_schemas(self):
        assert METHOD_COLLECTION_MAP["getPublicTrades"].is_configurable
        assert METHOD_COLLECTION_MAP["getTickersHistory"].is_configurable
        assert not METHOD_COLLECTION_MAP["getLedgers"].is_configurable
        assert not METHOD_COLLECTION_MAP["getSymbols"].is_configurable

    def test_transform_keeps_model_fields(self):
        schema = METHOD_COLLECTION_MAP["getLedgers"]
        raw = {"id": 1, "mts": 5, "amount": 2.5, "extra": "dropped"}

        record = schema.transform(raw)

        assert "extra" not in record
        assert record["id"] == 1
        assert record["balance"] is None

    def test_transform_without_model_is_identity(self):
        schema = METHOD_COLLECTION_MAP["getSymbols"]

        assert schema.transform("BTCUSD") == "BTCUSD"

    def test_invert_sort(self):
        assert invert_sort((("mts", -1), ("id", 1))) == (("mts", 1), ("id", -1))
