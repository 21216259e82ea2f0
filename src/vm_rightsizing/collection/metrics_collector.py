"""Batched metrics collection against the telemetry backend."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from ..clients.azure.log_analytics_client import QueryResult, TelemetryBackend
from ..core.utils import SleepFunc
from ..models.validation import validate_fleet
from ..models.vm_models import Batch, MetricsSample, VMDescriptor
from .batcher import BatchPlan, FleetBatcher
from .executor import RetryingExecutor, RetryPolicy
from .query_builder import MetricsQueryBuilder

logger = structlog.get_logger(__name__)


@dataclass
class BatchOutcome:
    """Settled result of one batch; a failed batch carries no metrics."""
    batch: Batch
    metrics: Dict[str, MetricsSample] = field(default_factory=dict)
    success: bool = True
    attempts: int = 0
    error: Optional[str] = None

    @property
    def batch_index(self) -> int:
        return self.batch.batch_index


@dataclass
class CollectionResult:
    metrics: Dict[str, MetricsSample] = field(default_factory=dict)
    failed_batches: List[int] = field(default_factory=list)
    total_batches: int = 0
    vm_count: int = 0

    def merge(self, outcome: BatchOutcome) -> None:
        self.metrics.update(outcome.metrics)
        if not outcome.success:
            self.failed_batches.append(outcome.batch_index)


def _row_key(row: Mapping[str, Any]) -> Optional[str]:
    computer = row.get("Computer")
    if not computer:
        return None
    return str(computer).strip().lower()


def match_metrics(vm_names: Iterable[str], rows: Sequence[Mapping[str, Any]]) -> Dict[str, MetricsSample]:
    """Map each VM name (lower-cased) to the row reported for it.

    A row matches a VM when its computer name equals the VM name, starts with
    ``<vm>.`` (an FQDN), or has the VM name as its first dotted label.
    Exact matches win over FQDN matches; VMs without a row are omitted.
    """
    by_key: Dict[str, Mapping[str, Any]] = {}
    for row in rows:
        key = _row_key(row)
        if key and key not in by_key:
            by_key[key] = row

    matched: Dict[str, MetricsSample] = {}
    for vm_name in vm_names:
        name = vm_name.strip().lower()
        row = by_key.get(name)
        if row is None:
            for key, candidate in by_key.items():
                if key.startswith(name + ".") or key.split(".", 1)[0] == name:
                    row = candidate
                    break
        if row is not None:
            matched[name] = MetricsSample.from_row(row)
    return matched


class MetricsCollector:
    """Runs one aggregate query per batch, group by group.

    Every batch of a parallel group is dispatched at once and the next group
    only starts after the whole group has settled plus the inter-group delay.
    """

    def __init__(self, backend: TelemetryBackend, batcher: Optional[FleetBatcher] = None,
                 executor: Optional[RetryingExecutor] = None, query_timeout_ms: int = 180000,
                 max_window_days: int = 90, sleep: SleepFunc = asyncio.sleep):
        self.backend = backend
        self.batcher = batcher or FleetBatcher()
        self.executor = executor or RetryingExecutor(RetryPolicy.telemetry(), sleep=sleep, name="telemetry")
        self.query_timeout_ms = query_timeout_ms
        self.max_window_days = max_window_days
        self._sleep = sleep
        self.logger = logger.bind(component="metrics_collector")

    async def _query_batch(self, batch: Batch, query: str) -> BatchOutcome:
        async def run() -> QueryResult:
            return await asyncio.wait_for(
                self.backend.run_query(query, self.query_timeout_ms),
                timeout=self.query_timeout_ms / 1000.0,
            )

        result = await self.executor.execute(run, label=f"batch-{batch.batch_index}")
        if not result.success:
            self.logger.warning(
                f"Batch {batch.batch_index + 1} failed, VMs will report insufficient data",
                vm_count=batch.size,
                attempts=result.attempts,
                error=str(result.error),
            )
            return BatchOutcome(batch=batch, success=False, attempts=result.attempts, error=str(result.error))

        metrics = match_metrics(batch.vm_names, result.value.rows)
        self.logger.debug(
            f"Batch {batch.batch_index + 1} returned metrics for {len(metrics)}/{batch.size} VMs",
            attempts=result.attempts,
        )
        return BatchOutcome(batch=batch, metrics=metrics, attempts=result.attempts)

    async def iter_batch_outcomes(self, plan: BatchPlan, window_days: int = 30,
                                  subscription_id: Optional[str] = None) -> AsyncIterator[BatchOutcome]:
        """Yield each batch outcome as it settles.

        Every batch query is built, and every VM name validated, before the
        first group is dispatched.
        """
        builder = MetricsQueryBuilder(window_days, subscription_id, self.max_window_days)
        queries = {batch.batch_index: builder.build(batch.vm_names) for batch in plan.batches}
        for group_number, group in enumerate(plan.groups):
            if group_number > 0:
                delay = self.batcher.inter_group_delay()
                self.logger.debug(f"Waiting {delay:.1f}s before group {group_number + 1}")
                await self._sleep(delay)

            tasks = [asyncio.create_task(self._query_batch(batch, queries[batch.batch_index])) for batch in group]
            try:
                for next_done in asyncio.as_completed(tasks):
                    yield await next_done
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()

    async def collect(self, vms: Sequence[VMDescriptor], window_days: int = 30,
                      subscription_id: Optional[str] = None) -> CollectionResult:
        """Validate the fleet, then collect every batch. Nothing is queried for an invalid fleet."""
        plan = self.batcher.plan(validate_fleet(vms))
        result = CollectionResult(total_batches=plan.total_batches, vm_count=plan.vm_count)
        async for outcome in self.iter_batch_outcomes(plan, window_days, subscription_id):
            result.merge(outcome)

        self.logger.info(
            f"Collected metrics for {len(result.metrics)}/{plan.vm_count} VMs",
            total_batches=plan.total_batches,
            failed_batches=len(result.failed_batches),
        )
        return result
