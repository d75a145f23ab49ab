from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

_EMPTY = object()


class WriteCoalescer(Generic[T]):
    """Serialize writes on one channel, keeping only the latest value while a send is in flight.

    There is at most one in-flight send and at most one pending value. The caller
    that finds the channel idle owns the drain loop and receives any send failure.
    Every other caller waits until its own value has been sent (``True``) or was
    replaced by a newer value before being sent (``False``).
    """

    def __init__(self, send: Callable[[T], Awaitable[None]], *, name: str = "") -> None:
        self._send = send
        self._name = name
        self._pending: object = _EMPTY
        self._pending_waiter: asyncio.Future[bool] | None = None
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def has_pending(self) -> bool:
        return self._pending is not _EMPTY

    async def enqueue(self, value: T) -> bool:
        if self._pending_waiter is not None and not self._pending_waiter.done():
            self._pending_waiter.set_result(False)
        self._pending = value
        self._pending_waiter = None

        if self._busy:
            waiter: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
            self._pending_waiter = waiter
            return await waiter

        self._busy = True
        failure: Exception | None = None
        try:
            while self._pending is not _EMPTY:
                current, waiter = self._pending, self._pending_waiter
                self._pending, self._pending_waiter = _EMPTY, None
                try:
                    await self._send(current)  # type: ignore[arg-type]
                except Exception as exc:
                    logger.warning("Write on channel '%s' failed: %s", self._name, exc)
                    failure = exc
                    if waiter is not None and not waiter.done():
                        waiter.set_exception(exc)
                else:
                    if waiter is not None and not waiter.done():
                        waiter.set_result(True)
        finally:
            self._busy = False
            if self._pending_waiter is not None and not self._pending_waiter.done():
                self._pending_waiter.cancel()
            self._pending, self._pending_waiter = _EMPTY, None

        if failure is not None:
            raise failure
        return True


class CoalescerPool(Generic[K, T]):
    """One :class:`WriteCoalescer` per logical channel key."""

    def __init__(self, send: Callable[[K, T], Awaitable[None]]) -> None:
        self._send = send
        self._channels: dict[K, WriteCoalescer[T]] = {}

    def channel(self, key: K) -> WriteCoalescer[T]:
        coalescer = self._channels.get(key)
        if coalescer is None:
            coalescer = WriteCoalescer(lambda value, key=key: self._send(key, value), name=str(key))
            self._channels[key] = coalescer
        return coalescer

    async def enqueue(self, key: K, value: T) -> bool:
        return await self.channel(key).enqueue(value)
