"""Progress and post-sync hook delivery."""

import asyncio
import inspect
import logging
from typing import Any, Callable, List, Optional, Union

from ..errors import (
    HookFailureError,
    HookNotCallableError,
    ProgressHandlerNotCallableError,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED = "unauthorized"

Progress = Union[int, str]


async def _invoke(fn: Callable, *args) -> Any:
    """Call a sync or async callable and await its result if needed."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ProgressPublisher:
    """
    Delivers progress values to one handler and any number of listeners.

    The handler is awaited first, then listeners are notified concurrently
    and all of them are awaited. Numeric values lower than the last
    published one are dropped, so observers only ever see a non-decreasing
    sequence within a run.
    """

    def __init__(self):
        self._handler: Optional[Callable] = None
        self._listeners: List[Callable] = []
        self.last_progress: Optional[Progress] = None
        self.published: List[Progress] = []

    def set_handler(self, handler: Callable):
        if not callable(handler):
            raise ProgressHandlerNotCallableError()
        self._handler = handler

    def subscribe(self, listener: Callable):
        if not callable(listener):
            raise ProgressHandlerNotCallableError()
        self._listeners.append(listener)

    def reset(self):
        """Forget the previous run."""
        self.last_progress = None
        self.published = []

    def _is_regression(self, value: Progress) -> bool:
        last = self.last_progress
        return (
            isinstance(value, (int, float)) and
            isinstance(last, (int, float)) and
            value < last
        )

    async def publish(self, value: Progress) -> bool:
        """Publish a progress value; returns False if it was dropped."""
        if self._is_regression(value):
            logger.debug(f"Dropping progress {value}, last published {self.last_progress}")
            return False

        self.last_progress = value
        self.published.append(value)
        logger.debug(f"Progress: {value}")

        if self._handler:
            await _invoke(self._handler, value)

        if self._listeners:
            results = await asyncio.gather(
                *(_invoke(listener, value) for listener in self._listeners),
                return_exceptions=True
            )
            errors = [r for r in results if isinstance(r, Exception)]

            if errors:
                logger.error(f"{len(errors)} progress listener(s) failed: {errors[0]}")
                raise errors[0]

        return True


class PostSyncHooks:
    """Ordered list of callables run once after a full sync pass."""

    def __init__(self):
        self._hooks: List[Callable] = []

    def __len__(self) -> int:
        return len(self._hooks)

    def add(self, hook: Callable):
        if not callable(hook):
            raise HookNotCallableError()
        self._hooks.append(hook)

    async def run(self, context: Any, timeout: Optional[float] = None):
        """
        Run every hook concurrently and wait for all of them to settle.

        Args:
            context: Object passed to each hook
            timeout: Optional bound on the whole fan-out, in seconds

        Raises:
            HookFailureError: At least one hook raised or the timeout expired
        """
        if not self._hooks:
            return

        gathered = asyncio.gather(
            *(_invoke(hook, context) for hook in self._hooks),
            return_exceptions=True
        )

        try:
            if timeout is None:
                results = await gathered
            else:
                results = await asyncio.wait_for(gathered, timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Post-sync hooks did not finish within {timeout} seconds")
            raise HookFailureError([e]) from e

        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            logger.error(f"{len(errors)} of {len(self._hooks)} post-sync hook(s) failed")
            raise HookFailureError(errors) from errors[0]

        logger.info(f"Ran {len(self._hooks)} post-sync hook(s)")
