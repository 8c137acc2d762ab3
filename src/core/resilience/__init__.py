"""
Resilience policies.

Three independent pieces that compose around network calls:
    - RetryConfig / retry_async: bounded retries with fixed or linear backoff
    - FallbackChain: ordered alternatives with an acceptance test
    - CancellationToken: cooperative cancellation shared by one run
"""

from core.resilience.cancellation import CancellationToken, run_cancellable
from core.resilience.fallback import FallbackChain, FallbackStep
from core.resilience.retry import DEFAULT_RETRY, RetryConfig, retry_async

__all__ = [
    "CancellationToken",
    "DEFAULT_RETRY",
    "FallbackChain",
    "FallbackStep",
    "RetryConfig",
    "retry_async",
    "run_cancellable",
]
