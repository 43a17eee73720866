"""Remote access gateway interface and request argument types."""

import copy
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AccountCredential:
    """API key pair of one account, immutable for a run."""
    api_key: str
    api_secret: str
    account_id: str = ""

    @property
    def is_valid(self) -> bool:
        return (
            isinstance(self.api_key, str) and bool(self.api_key) and
            isinstance(self.api_secret, str) and bool(self.api_secret)
        )

    def as_filter(self) -> Dict[str, Any]:
        """Filter identifying records owned by this account."""
        return {"account_id": self.account_id or self.api_key}


@dataclass
class FetchParams:
    start: Optional[int] = 0
    end: Optional[int] = None
    limit: Optional[int] = None
    symbol: Optional[str] = None
    not_throw_error: bool = False
    not_check_next_page: bool = False


@dataclass
class FetchWindow:
    """Argument bundle for one API call."""
    auth: Optional[AccountCredential] = None
    params: FetchParams = field(default_factory=FetchParams)

    @classmethod
    def build(
        cls,
        auth: Optional[AccountCredential] = None,
        limit: Optional[int] = None,
        start: Optional[int] = 0,
        end: Optional[int] = None,
        symbol: Optional[str] = None
    ) -> "FetchWindow":
        return cls(
            auth=auth,
            params=FetchParams(
                start=start,
                end=now_ms() if end is None else end,
                limit=limit,
                symbol=symbol
            )
        )

    @classmethod
    def probe(
        cls,
        auth: Optional[AccountCredential] = None,
        symbol: Optional[str] = None
    ) -> "FetchWindow":
        """Single-record window with next-page checks suppressed."""
        window = cls.build(auth=auth, limit=1, symbol=symbol)
        window.params.not_throw_error = True
        window.params.not_check_next_page = True
        return window

    def copy(self) -> "FetchWindow":
        return copy.deepcopy(self)


@dataclass
class ApiResult:
    """One page of records and the cursor of the next page, if any."""
    res: Optional[List[Any]] = None
    next_page: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not self.res


class Gateway(ABC):
    """Executes single remote API calls."""

    @abstractmethod
    def has_method(self, method: str) -> bool:
        """Check whether the remote method is supported."""

    @abstractmethod
    async def request(
        self,
        method: str,
        window: FetchWindow,
        is_probe: bool = False
    ) -> ApiResult:
        """Execute one API call and return a page of records."""
