"""Cooperative cancellation shared by the executor, orchestrator and adapters."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecutionCancelled(Exception):
    """Raised at a suspension point once cancellation has been requested.

    Cancellation is a terminal status, not a failure, so this does
    not derive from :class:`flowpilot.contracts.FlowpilotError`.
    """


class CancellationToken:
    """A flag checked at every call boundary, plus a way to await it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.debug(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The pending operation is cancelled when the token wins, so an in-flight
        HTTP request is abandoned instead of being waited out.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug(f"Abandoned call raised after cancellation: {exc}")
            raise ExecutionCancelled(self.reason or "cancelled")
        return task.result()


async def guarded(
    awaitable: Awaitable[T], token: Optional[CancellationToken]
) -> T:
    """Await ``awaitable`` through ``token`` when one is given."""
    if token is None:
        return await awaitable
    return await token.guard(awaitable)
