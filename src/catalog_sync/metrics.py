"""
Prometheus metrics for catalog sync runs.

Provides instrumentation for:
- Fetch attempts per strategy and outcome
- Assets retrieved per mode
- Group outcomes
- Archive sizes
"""

from prometheus_client import Counter, Histogram

# Fetch attempts: outcome is accepted, rejected or error
fetch_attempts_total = Counter(
    "catalog_sync_fetch_attempts_total",
    "Total number of fetch attempts by strategy and outcome",
    ["strategy", "outcome"],
)

# Assets: status is success or failed
assets_total = Counter(
    "catalog_sync_assets_total",
    "Total number of assets processed by mode and status",
    ["mode", "status"],
)

groups_total = Counter(
    "catalog_sync_groups_total",
    "Total number of groups completed by outcome status",
    ["status"],
)

archive_bytes = Histogram(
    "catalog_sync_archive_bytes",
    "Size of assembled archives in bytes",
    buckets=(
        1024 * 1024,
        10 * 1024 * 1024,
        50 * 1024 * 1024,
        100 * 1024 * 1024,
        250 * 1024 * 1024,
        500 * 1024 * 1024,
        1024 * 1024 * 1024,
    ),  # From 1MB to 1GB
)


def record_fetch_attempt(strategy: str, outcome: str) -> None:
    """
    Record one fetch strategy attempt.

    Args:
        strategy: Strategy name (cdn_proxy, cors_relay, raw_relay, direct, ...)
        outcome: accepted, rejected or error
    """
    fetch_attempts_total.labels(strategy=strategy, outcome=outcome).inc()


def record_assets(mode: str, succeeded: int, failed: int) -> None:
    """
    Record asset counts for one group batch.

    Args:
        mode: Retrieval mode (web, drive, gallery, dropbox)
        succeeded: Assets retrieved
        failed: Assets that could not be retrieved
    """
    if succeeded:
        assets_total.labels(mode=mode, status="success").inc(succeeded)
    if failed:
        assets_total.labels(mode=mode, status="failed").inc(failed)


def record_group_outcome(status: str) -> None:
    """
    Record a completed group.

    Args:
        status: Success, Partial or Failed
    """
    groups_total.labels(status=status).inc()


def record_archive_size(size_bytes: int) -> None:
    """Record the size of an assembled archive."""
    archive_bytes.observe(size_bytes)
