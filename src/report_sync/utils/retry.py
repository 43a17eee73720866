"""Retry policy for transient remote API failures."""

import asyncio
import logging
import re
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..clients.gateway import ApiResult, FetchWindow, Gateway
from ..config.settings import SyncConfig
from ..errors import (
    NonceTooSmallError,
    RateLimitError,
    RetryLimitExceededError,
    UnknownMethodError,
)

logger = logging.getLogger(__name__)

_RATE_LIMIT_RE = re.compile(r"ERR_RATE_LIMIT|ratelimit", re.IGNORECASE)
_NONCE_SMALL_RE = re.compile(r"nonce: small", re.IGNORECASE)


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    NONCE_TOO_OLD = "nonce_too_old"
    FATAL = "fatal"


def classify(error: BaseException) -> ErrorKind:
    """Classify an error raised by the gateway."""
    if isinstance(error, RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, NonceTooSmallError):
        return ErrorKind.NONCE_TOO_OLD

    message = str(error)
    if _RATE_LIMIT_RE.search(message):
        return ErrorKind.RATE_LIMITED
    if _NONCE_SMALL_RE.search(message):
        return ErrorKind.NONCE_TOO_OLD

    return ErrorKind.FATAL


class RetryPolicy:
    """
    Wraps a single logical request with bounded delayed retries.

    Rate-limit errors wait a long fixed interval and give up after
    ``max_rate_limit_retries`` retries; nonce errors wait a short interval
    and give up after ``max_nonce_retries`` retries. Anything else
    propagates immediately.
    """

    def __init__(
        self,
        gateway: Gateway,
        rate_limit_delay_seconds: float = 80.0,
        nonce_delay_seconds: float = 1.0,
        max_rate_limit_retries: int = 2,
        max_nonce_retries: int = 20,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.gateway = gateway
        self.rate_limit_delay_seconds = rate_limit_delay_seconds
        self.nonce_delay_seconds = nonce_delay_seconds
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_nonce_retries = max_nonce_retries
        self._sleep = sleep

        # Statistics
        self.stats = {
            "requests": 0,
            "rate_limit_retries": 0,
            "nonce_retries": 0
        }

    @classmethod
    def from_config(
        cls,
        gateway: Gateway,
        config: SyncConfig,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ) -> "RetryPolicy":
        return cls(
            gateway,
            rate_limit_delay_seconds=config.rate_limit_delay_seconds,
            nonce_delay_seconds=config.nonce_delay_seconds,
            max_rate_limit_retries=config.max_rate_limit_retries,
            max_nonce_retries=config.max_nonce_retries,
            sleep=sleep or asyncio.sleep
        )

    async def fetch_one(
        self,
        method: str,
        window: FetchWindow,
        is_probe: bool = False
    ) -> ApiResult:
        """
        Fetch one page, retrying rate-limit and nonce errors.

        Args:
            method: Remote API method name
            window: Request arguments; copied for every attempt
            is_probe: Request a single record without next-page checks

        Returns:
            The page returned by the gateway

        Raises:
            UnknownMethodError: The gateway does not support the method
            RetryLimitExceededError: Transient errors exceeded their bound
        """
        if not self.gateway.has_method(method):
            raise UnknownMethodError(method)

        rate_limit_count = 0
        nonce_count = 0

        while True:
            self.stats["requests"] += 1

            try:
                return await self.gateway.request(method, window.copy(), is_probe)
            except Exception as e:
                kind = classify(e)

                if kind is ErrorKind.RATE_LIMITED:
                    rate_limit_count += 1

                    if rate_limit_count > self.max_rate_limit_retries:
                        logger.error(f"{method} failed after {rate_limit_count} rate-limited attempts: {e}")
                        raise RetryLimitExceededError(kind.value, rate_limit_count, e) from e

                    self.stats["rate_limit_retries"] += 1
                    logger.warning(
                        f"{method} hit the rate limit ({rate_limit_count}/{self.max_rate_limit_retries}). "
                        f"Retrying in {self.rate_limit_delay_seconds:.2f} seconds..."
                    )
                    await self._sleep(self.rate_limit_delay_seconds)

                elif kind is ErrorKind.NONCE_TOO_OLD:
                    nonce_count += 1

                    if nonce_count > self.max_nonce_retries:
                        logger.error(f"{method} failed after {nonce_count} nonce errors: {e}")
                        raise RetryLimitExceededError(kind.value, nonce_count, e) from e

                    self.stats["nonce_retries"] += 1
                    logger.debug(
                        f"{method} nonce is too small ({nonce_count}/{self.max_nonce_retries}). "
                        f"Retrying in {self.nonce_delay_seconds:.2f} seconds..."
                    )
                    await self._sleep(self.nonce_delay_seconds)

                else:
                    raise
