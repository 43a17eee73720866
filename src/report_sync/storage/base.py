"""Persistence interface used by the synchronization engine."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..clients.gateway import AccountCredential
from ..registry import SortSpec, invert_sort

Record = Dict[str, Any]
Filter = Optional[Dict[str, Any]]


class SyncDAO(ABC):
    """
    Narrow async DAO.

    Every write method is one atomic unit: either all given records are
    persisted or none are.
    """

    async def initialize(self):
        """Open connections and create storage structures."""

    async def close(self):
        """Release connections."""

    @abstractmethod
    async def get_account_credentials(self) -> Dict[str, AccountCredential]:
        """Get stored API credentials keyed by account id."""

    @abstractmethod
    async def save_account_credentials(self, credentials: Iterable[AccountCredential]) -> None:
        """Store API credentials, replacing entries with the same account id."""

    @abstractmethod
    async def get_last_record(
        self,
        collection: str,
        filter: Filter = None,
        sort: SortSpec = ()
    ) -> Optional[Record]:
        """Get the first record of the collection under the given sort."""

    async def get_first_record(
        self,
        collection: str,
        filter: Filter = None,
        sort: SortSpec = ()
    ) -> Optional[Record]:
        """Get the first record of the collection under the inverted sort."""
        return await self.get_last_record(collection, filter, invert_sort(sort))

    @abstractmethod
    async def insert_records(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any]
    ) -> None:
        """Insert records, stamping them with the account filter."""

    @abstractmethod
    async def insert_records_if_absent(
        self,
        collection: str,
        account_filter: Filter,
        records: List[Any],
        identity_fields: Optional[Sequence[str]] = None
    ) -> None:
        """Insert only the records whose identity is not stored yet."""

    @abstractmethod
    async def remove_records_not_in_lists(
        self,
        collection: str,
        lists: Dict[str, List[Any]]
    ) -> None:
        """Remove records whose field values are not in the allowed lists."""

    @abstractmethod
    async def get_records_by(
        self,
        collection: str,
        filter: Filter = None,
        min_field: Optional[str] = None,
        group_field: Optional[str] = None
    ) -> List[Record]:
        """
        Get records matching a filter.

        With ``group_field`` one record per distinct group value is
        returned: the one with the smallest ``min_field`` when given.
        """


def identity_of(record: Record, identity_fields: Optional[Sequence[str]]) -> tuple:
    """Hashable identity of a record."""
    keys = identity_fields or sorted(record)
    return tuple((key, _freeze(record.get(key))) for key in keys)


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple(sorted((k, _freeze(v)) for k, v in value.items()))
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value
