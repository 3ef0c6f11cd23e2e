from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import RetryError, before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from ..errors import StoreConnectionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientConnectionError(Exception):
    """Raised by a connect function for failures worth retrying."""


def connect_retry(attempts: int = 5, initial: float = 0.5, max_wait: float = 10.0, jitter: float = 1.0):
    return retry(
        reraise=False,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=initial, max=max_wait, jitter=jitter),
        retry=retry_if_exception_type(TransientConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )


class ConnectionGate(Generic[T]):
    """Connect-once gate around a lazily established handle.

    The first caller runs ``opener`` (with bounded retry and exponential
    backoff); concurrent callers wait for it and share the handle. If every
    attempt fails, only that caller gets :class:`StoreConnectionError`; the next
    caller starts a fresh round of attempts.
    """

    def __init__(
        self,
        opener: Callable[[], Awaitable[T]],
        *,
        attempts: int = 5,
        initial: float = 0.5,
        max_wait: float = 10.0,
        jitter: float = 1.0,
    ):
        self._opener = opener
        self._retry = connect_retry(attempts, initial, max_wait, jitter)
        self._attempts = attempts
        self._lock = asyncio.Lock()
        self._handle: Optional[T] = None
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    async def get(self) -> T:
        if self._ready:
            return self._handle  # type: ignore[return-value]
        async with self._lock:
            if not self._ready:
                self._handle = await self._open()
                self._ready = True
        return self._handle  # type: ignore[return-value]

    async def _open(self) -> T:
        try:
            return await self._retry(self._opener)()
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error("Giving up connecting after %d attempts: %s", self._attempts, cause)
            raise StoreConnectionError(f"store unreachable after {self._attempts} attempts: {cause}") from cause

    def reset(self) -> Optional[T]:
        """Forget the handle (after closing it) and return it."""
        handle, self._handle, self._ready = self._handle, None, False
        return handle
