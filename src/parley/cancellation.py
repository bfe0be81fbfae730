"""Cooperative cancellation for in-flight turns."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable

from parley.errors import AbortError


class AbortSignal:
    """One-shot cancellation flag shared by a turn, its provider call and its tools.

    Raising the signal never interrupts anything by itself; consumers observe it at
    their own suspension points.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "aborted"

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def abort(self, reason: str = "aborted") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise AbortError(self._reason)


async def wait_until_aborted[T](aw: Awaitable[T], signal: AbortSignal) -> T:
    """Await the given awaitable, unless the signal is raised first.

    The pending work is cancelled and AbortError raised when the signal wins.
    Cancellation of the calling task itself still surfaces as CancelledError.
    """
    if signal.aborted:
        if inspect.iscoroutine(aw):
            aw.close()
        raise AbortError(signal.reason)
    fut = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(signal.wait())
    waiter.add_done_callback(lambda _: fut.cancel())
    try:
        return await fut
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if signal.aborted and (task is None or task.cancelling() == 0):
            raise AbortError(signal.reason) from None
        raise
    finally:
        waiter.cancel()
