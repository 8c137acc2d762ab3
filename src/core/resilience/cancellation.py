"""
Cooperative cancellation for async runs.

A CancellationToken is created once per top-level run by the caller and
threaded through the group loop, the batch runner and every network
attempt. Checks happen at suspension points only; cancelling never rolls
back work that already completed.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from core.errors.exceptions import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Shared cancellation signal.

    Usage:
        token = CancellationToken()
        ...
        token.cancel("user requested stop")

        # Inside workers
        token.raise_if_cancelled()
        payload = await token.run(session_get(url))
        await token.sleep(2.0)
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Fire the signal. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if the signal has fired."""
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Operation cancelled")

    async def wait(self) -> None:
        """Block until the signal fires."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep for up to ``seconds``; raise OperationCancelled if the
        signal fires first.
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the signal fires first.

        When the signal fires mid-flight the underlying task is cancelled
        and OperationCancelled is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelled(self.reason or "Operation cancelled")


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await through ``token`` when one is given."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)
