"""
Prometheus metrics for the sync pipeline and its background work.
"""

from prometheus_client import Counter, Histogram

SYNC_ACCOUNTS_TOTAL = Counter(
    "spendsync_sync_accounts_total",
    "Per-account sync outcomes",
    ["provider", "outcome"]  # outcome: success, failure
)

SYNC_DURATION = Histogram(
    "spendsync_sync_duration_seconds",
    "Duration of a single account sync",
    ["provider"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120)
)

COST_CACHE_TOTAL = Counter(
    "spendsync_cost_cache_total",
    "Cost data cache lookups",
    ["result"]  # hit, miss, bypass
)

BACKGROUND_TASK_FAILURES = Counter(
    "spendsync_background_task_failures_total",
    "Fire-and-forget tasks that ended with an exception",
    ["task"]
)

SCHEDULED_SYNC_RUNS = Counter(
    "spendsync_scheduled_sync_runs_total",
    "Scheduled auto-sync runs per user",
    ["status"]  # success, partial, failure, error
)
