"""Collection schema registry.

Maps every remote API method that the engine knows how to synchronize to an
immutable ``CollectionSchema``. The registry is filtered once, at
construction time, down to an allow-list of collection names.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .errors import CollectionNotFoundError, UnknownCollectionError

logger = logging.getLogger(__name__)

DEFAULT_RECORD_CAP = 10000000

SortSpec = Tuple[Tuple[str, int], ...]


class CollectionKind(str, Enum):
    """Storage behaviour of a collection."""
    INSERTABLE_ARRAY_OBJECTS = "insertable:array:objects"
    UPDATABLE_ARRAY_OBJECTS = "updatable:array:objects"
    UPDATABLE_ARRAY = "updatable:array"


class AllowedCollections:
    """Fixed vocabulary of collection names accepted in the allow-list."""
    ALL = "_ALL"
    LEDGERS = "ledgers"
    TRADES = "trades"
    FUNDING_TRADES = "fundingTrades"
    ORDERS = "orders"
    MOVEMENTS = "movements"
    FUNDING_OFFER_HISTORY = "fundingOfferHistory"
    FUNDING_LOAN_HISTORY = "fundingLoanHistory"
    FUNDING_CREDIT_HISTORY = "fundingCreditHistory"
    POSITIONS_HISTORY = "positionsHistory"
    PUBLIC_TRADES = "publicTrades"
    TICKERS_HISTORY = "tickersHistory"
    SYMBOLS = "symbols"
    FUTURES = "futures"
    CURRENCIES = "currencies"

    @classmethod
    def names(cls) -> List[str]:
        return [
            value for key, value in vars(cls).items()
            if key.isupper() and isinstance(value, str)
        ]


@dataclass(frozen=True)
class CollectionSchema:
    """Static descriptor of one synchronized collection."""
    name: str
    kind: CollectionKind
    is_public: bool = False
    date_field: Optional[str] = None
    sort: SortSpec = ()
    record_cap: int = DEFAULT_RECORD_CAP
    fields: Tuple[str, ...] = ()
    model: Tuple[str, ...] = ()
    symbol_field: Optional[str] = None
    conf_name: Optional[str] = None

    @property
    def is_insertable(self) -> bool:
        return self.kind is CollectionKind.INSERTABLE_ARRAY_OBJECTS

    @property
    def is_updatable(self) -> bool:
        return not self.is_insertable

    @property
    def is_configurable(self) -> bool:
        """Public collection keyed by symbol with configurable start dates."""
        return (
            self.is_public and
            self.is_insertable and
            self.conf_name is not None and
            self.symbol_field is not None
        )

    def transform(self, record: Any) -> Any:
        """Reduce a raw API record to the model fields."""
        if not self.model or not isinstance(record, dict):
            return record

        return {key: record.get(key) for key in self.model}

    def transform_all(self, records: Iterable[Any]) -> List[Any]:
        return [self.transform(record) for record in records]


def invert_sort(sort: SortSpec) -> SortSpec:
    """Return the sort spec with every direction reversed."""
    return tuple((name, -direction) for name, direction in sort)


def _desc(date_field: str) -> SortSpec:
    return ((date_field, -1),)


# Method name -> schema. Order defines sync order.
METHOD_COLLECTION_MAP: Dict[str, CollectionSchema] = {
    "getLedgers": CollectionSchema(
        name=AllowedCollections.LEDGERS,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mts",
        sort=_desc("mts"),
        model=("id", "currency", "mts", "amount", "balance", "description", "wallet")
    ),
    "getTrades": CollectionSchema(
        name=AllowedCollections.TRADES,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsCreate",
        sort=_desc("mtsCreate"),
        model=(
            "id", "symbol", "mtsCreate", "orderID", "execAmount", "execPrice",
            "orderType", "orderPrice", "maker", "fee", "feeCurrency"
        )
    ),
    "getFundingTrades": CollectionSchema(
        name=AllowedCollections.FUNDING_TRADES,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsCreate",
        sort=_desc("mtsCreate"),
        model=("id", "symbol", "mtsCreate", "offerID", "amount", "rate", "period", "maker")
    ),
    "getOrders": CollectionSchema(
        name=AllowedCollections.ORDERS,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=(
            "id", "gid", "cid", "symbol", "mtsCreate", "mtsUpdate", "amount",
            "amountOrig", "type", "typePrev", "flags", "status", "price",
            "priceAvg", "priceTrailing", "priceAuxLimit", "notify", "placedId"
        )
    ),
    "getMovements": CollectionSchema(
        name=AllowedCollections.MOVEMENTS,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdated",
        sort=_desc("mtsUpdated"),
        model=(
            "id", "currency", "currencyName", "mtsStarted", "mtsUpdated",
            "status", "amount", "fees", "destinationAddress", "transactionId"
        )
    ),
    "getFundingOfferHistory": CollectionSchema(
        name=AllowedCollections.FUNDING_OFFER_HISTORY,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=(
            "id", "symbol", "mtsCreate", "mtsUpdate", "amount", "amountOrig",
            "type", "flags", "status", "rate", "period", "notify", "hidden",
            "renew", "rateReal", "amountExecuted"
        )
    ),
    "getFundingLoanHistory": CollectionSchema(
        name=AllowedCollections.FUNDING_LOAN_HISTORY,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=(
            "id", "symbol", "side", "mtsCreate", "mtsUpdate", "amount", "flags",
            "status", "rate", "period", "mtsOpening", "mtsLastPayout", "notify",
            "hidden", "renew", "rateReal", "noClose"
        )
    ),
    "getFundingCreditHistory": CollectionSchema(
        name=AllowedCollections.FUNDING_CREDIT_HISTORY,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=(
            "id", "symbol", "side", "mtsCreate", "mtsUpdate", "amount", "flags",
            "status", "rate", "period", "mtsOpening", "mtsLastPayout", "notify",
            "hidden", "renew", "rateReal", "noClose", "positionPair"
        )
    ),
    "getPositionsHistory": CollectionSchema(
        name=AllowedCollections.POSITIONS_HISTORY,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=(
            "id", "symbol", "status", "amount", "basePrice", "marginFunding",
            "marginFundingType", "pl", "plPerc", "liquidationPrice", "leverage",
            "mtsCreate", "mtsUpdate"
        )
    ),
    "getPublicTrades": CollectionSchema(
        name=AllowedCollections.PUBLIC_TRADES,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        is_public=True,
        date_field="mts",
        sort=_desc("mts"),
        model=("id", "mts", "rate", "amount", "price", "period", "symbol"),
        symbol_field="symbol",
        conf_name="publicTradesConf"
    ),
    "getTickersHistory": CollectionSchema(
        name=AllowedCollections.TICKERS_HISTORY,
        kind=CollectionKind.INSERTABLE_ARRAY_OBJECTS,
        is_public=True,
        date_field="mtsUpdate",
        sort=_desc("mtsUpdate"),
        model=("symbol", "bid", "bidPeriod", "ask", "mtsUpdate"),
        symbol_field="symbol",
        conf_name="tickersHistoryConf"
    ),
    "getSymbols": CollectionSchema(
        name=AllowedCollections.SYMBOLS,
        kind=CollectionKind.UPDATABLE_ARRAY,
        is_public=True,
        fields=("pairs",)
    ),
    "getFutures": CollectionSchema(
        name=AllowedCollections.FUTURES,
        kind=CollectionKind.UPDATABLE_ARRAY,
        is_public=True,
        fields=("pairs",)
    ),
    "getCurrencies": CollectionSchema(
        name=AllowedCollections.CURRENCIES,
        kind=CollectionKind.UPDATABLE_ARRAY_OBJECTS,
        is_public=True,
        fields=("id",),
        model=("id", "name", "pool", "explorer")
    ),
}


class CollectionRegistry:
    """Registry of schemas filtered by an allow-list of collection names."""

    def __init__(
        self,
        sync_collections: Union[str, Iterable[str]] = AllowedCollections.ALL,
        method_collection_map: Optional[Dict[str, CollectionSchema]] = None,
        record_cap: Optional[int] = None
    ):
        if isinstance(sync_collections, str):
            sync_collections = [sync_collections]

        self.sync_collections = list(sync_collections)
        self._check_permission(self.sync_collections)

        source = (
            method_collection_map
            if method_collection_map is not None
            else METHOD_COLLECTION_MAP
        )
        self._schemas = self._filter(source, self.sync_collections)

        if record_cap is not None:
            self._schemas = {
                method: _with_record_cap(schema, record_cap)
                for method, schema in self._schemas.items()
            }

        logger.info(
            f"CollectionRegistry initialized with {len(self._schemas)} collections: "
            f"{', '.join(schema.name for schema in self._schemas.values())}"
        )

    @staticmethod
    def _check_permission(names: List[str]):
        allowed = set(AllowedCollections.names())
        unknown = [name for name in names if name not in allowed]

        if not names or unknown:
            raise UnknownCollectionError(unknown or ["<empty>"])

    @staticmethod
    def _filter(
        source: Dict[str, CollectionSchema],
        names: List[str]
    ) -> Dict[str, CollectionSchema]:
        if AllowedCollections.ALL in names:
            return dict(source)

        return {
            method: schema
            for method, schema in source.items()
            if schema.name in names
        }

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, method: str) -> bool:
        return method in self._schemas

    def items(self) -> List[Tuple[str, CollectionSchema]]:
        return list(self._schemas.items())

    def resolve(self, method: str) -> CollectionSchema:
        """Get the schema registered for a remote method."""
        try:
            return self._schemas[method]
        except KeyError:
            raise CollectionNotFoundError(
                f"{CollectionNotFoundError.default_message}: {method}"
            ) from None

    def account_schemas(self) -> List[Tuple[str, CollectionSchema]]:
        """Account-scoped insertable schemas, in sync order."""
        return [
            (method, schema)
            for method, schema in self._schemas.items()
            if schema.is_insertable and not schema.is_public
        ]

    def public_schemas(self) -> List[Tuple[str, CollectionSchema]]:
        """Public schemas of any kind, in sync order."""
        return [
            (method, schema)
            for method, schema in self._schemas.items()
            if schema.is_public
        ]


def _with_record_cap(schema: CollectionSchema, record_cap: int) -> CollectionSchema:
    if schema.is_updatable:
        return schema

    return replace(schema, record_cap=record_cap)
