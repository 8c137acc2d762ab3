"""
Ordered fallback over alternative ways of producing the same result.

Each step is tried only after the previous one failed or produced a
rejected result. Cancellation and fatal errors stop the chain at once;
every other failure moves on to the next step.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from core.errors.exceptions import FatalError, OperationCancelled, UnreachableError
from core.resilience.cancellation import CancellationToken, run_cancellable
from core.security import sanitize_error_message

T = TypeVar("T")


@dataclass
class FallbackStep(Generic[T]):
    """One alternative: a name for logs and a coroutine factory."""

    name: str
    action: Callable[[], Awaitable[T]]


class FallbackChain(Generic[T]):
    """
    Try steps in order until one yields an accepted result.

    Args:
        steps: Ordered alternatives
        accept: Returns None to accept a result or a rejection reason
        label: Prefix for the UnreachableError message
        on_attempt: Called with (step name, outcome, reason) after every attempt,
            outcome is "accepted", "rejected" or "error"
    """

    def __init__(
        self,
        steps: Sequence[FallbackStep[T]],
        accept: Optional[Callable[[T], Optional[str]]] = None,
        label: str = "fallback",
        on_attempt: Optional[Callable[[str, str, Optional[str]], None]] = None,
    ):
        self.steps = list(steps)
        self.accept = accept
        self.label = label
        self.on_attempt = on_attempt

    async def run(self, token: Optional[CancellationToken] = None) -> T:
        """
        Execute the chain.

        Raises:
            OperationCancelled: Token fired before or during a step
            FatalError: A step raised a fatal error
            UnreachableError: Every step failed or was rejected
        """
        failures: List[str] = []

        for step in self.steps:
            if token is not None:
                token.raise_if_cancelled()

            try:
                result = await run_cancellable(step.action(), token)
            except (OperationCancelled, FatalError, asyncio.CancelledError):
                raise
            except Exception as e:
                reason = sanitize_error_message(str(e) or type(e).__name__, max_length=200)
                failures.append(f"{step.name}: {reason}")
                self._notify(step.name, "error", reason)
                continue

            rejection = self.accept(result) if self.accept else None
            if rejection:
                failures.append(f"{step.name}: {rejection}")
                self._notify(step.name, "rejected", rejection)
                continue

            self._notify(step.name, "accepted", None)
            return result

        raise UnreachableError(
            f"{self.label}: all {len(self.steps)} strategies failed",
            attempts=failures,
        )

    def _notify(self, name: str, outcome: str, reason: Optional[str]) -> None:
        if self.on_attempt is not None:
            self.on_attempt(name, outcome, reason)
