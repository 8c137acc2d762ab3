"""
Bounded concurrent batch runner.

Runs N independent jobs through at most W worker tasks sharing one FIFO
queue. Per-job failures are counted, never raised; cancellation stops
workers from dequeuing new jobs and keeps whatever already succeeded.

Invariant once every worker has finished:
    len(results) + failed_count == total   (unless cancelled)
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Generic, List, Optional, Sequence, Tuple, TypeVar

from core.errors.exceptions import FatalError, OperationCancelled
from core.logging.utilities import log_exception, log_with_context
from core.resilience.cancellation import CancellationToken

logger = logging.getLogger(__name__)

J = TypeVar("J")
R = TypeVar("R")

# producer(job, index, token) -> result
Producer = Callable[[J, int, Optional[CancellationToken]], Awaitable[R]]
ProgressCallback = Callable[[int, int], None]


@dataclass
class BatchResult(Generic[R]):
    """Results of one batch in completion order."""

    results: List[R] = field(default_factory=list)
    failed_count: int = 0
    total: int = 0
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return len(self.results) + self.failed_count

    @property
    def drained(self) -> bool:
        """Every job either succeeded or failed."""
        return self.completed == self.total


async def run_batch(
    jobs: Sequence[J],
    producer: Producer,
    concurrency: int = 16,
    on_progress: Optional[ProgressCallback] = None,
    token: Optional[CancellationToken] = None,
) -> BatchResult[R]:
    """
    Run ``producer`` over ``jobs`` with at most ``concurrency`` in flight.

    Args:
        jobs: Independent jobs, dequeued in order
        producer: Async function called as producer(job, index, token)
        concurrency: Maximum simultaneous producers
        on_progress: Called with (completed, total) after every job
        token: Cancellation token checked before each dequeue

    Returns:
        BatchResult with successes in completion order

    Raises:
        ValueError: concurrency < 1
        FatalError: A producer raised a fatal error; raised after in-flight
            jobs drain, no further jobs are started
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    total = len(jobs)
    batch: BatchResult[R] = BatchResult(total=total)
    if total == 0:
        return batch

    queue: Deque[Tuple[int, J]] = deque(enumerate(jobs))
    fatal: List[FatalError] = []

    def should_stop() -> bool:
        if fatal:
            return True
        if token is not None and token.cancelled:
            batch.cancelled = True
            return True
        return False

    async def worker() -> None:
        while queue:
            if should_stop():
                return
            index, job = queue.popleft()
            try:
                result = await producer(job, index, token)
                batch.results.append(result)
            except OperationCancelled:
                batch.cancelled = True
                return
            except FatalError as e:
                fatal.append(e)
                batch.failed_count += 1
            except Exception as e:
                batch.failed_count += 1
                log_exception(
                    logger,
                    e,
                    "Batch job failed",
                    level=logging.DEBUG,
                    include_traceback=False,
                    attempt=index,
                )
            finally:
                if on_progress is not None:
                    on_progress(batch.completed, total)

    worker_count = min(concurrency, total)
    await asyncio.gather(*(worker() for _ in range(worker_count)))

    log_with_context(
        logger,
        logging.DEBUG,
        "Batch finished",
        batch_size=total,
        concurrency=worker_count,
        records_succeeded=len(batch.results),
        records_failed=batch.failed_count,
        cancelled=batch.cancelled,
    )

    if fatal:
        raise fatal[0]
    return batch
