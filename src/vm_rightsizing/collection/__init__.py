from .batcher import BatchPlan, FleetBatcher, group_batches, partition_fleet
from .executor import ExecutionResult, RetryingExecutor, RetryPolicy, compute_backoff_delay, is_retryable_error
from .metrics_collector import BatchOutcome, CollectionResult, MetricsCollector, match_metrics
from .query_builder import MetricsQueryBuilder, escape_kql_string

__all__ = [
    "BatchPlan",
    "FleetBatcher",
    "group_batches",
    "partition_fleet",
    "ExecutionResult",
    "RetryingExecutor",
    "RetryPolicy",
    "compute_backoff_delay",
    "is_retryable_error",
    "BatchOutcome",
    "CollectionResult",
    "MetricsCollector",
    "match_metrics",
    "MetricsQueryBuilder",
    "escape_kql_string",
]
