"""Tests for batched metrics collection and name matching."""

import asyncio

import pytest

from vm_rightsizing.collection.batcher import FleetBatcher
from vm_rightsizing.collection.executor import RetryingExecutor, RetryPolicy
from vm_rightsizing.collection.metrics_collector import MetricsCollector, match_metrics
from vm_rightsizing.core.exceptions import DataValidationException, TelemetryQueryException
from vm_rightsizing.models.vm_models import VMDescriptor

from .conftest import FakeTelemetryBackend, metrics_row


def build_collector(backend, no_sleep, max_per_batch=30, max_parallel=3):
    batcher = FleetBatcher(max_per_batch=max_per_batch, max_parallel_batches=max_parallel, rng=lambda: 0.0)
    executor = RetryingExecutor(RetryPolicy.telemetry(), sleep=no_sleep, rng=lambda: 0.0)
    return MetricsCollector(backend, batcher=batcher, executor=executor, sleep=no_sleep)


class TestMatchMetrics:

    def test_exact_match(self):
        matched = match_metrics(["web-01"], [metrics_row("web-01", cpu_avg=12.5)])
        assert matched["web-01"].cpu_avg == 12.5

    def test_fqdn_match(self):
        matched = match_metrics(["WEB-01"], [metrics_row("web-01.corp.contoso.com", cpu_max=33)])
        assert matched["web-01"].cpu_max == 33

    def test_exact_match_wins_over_fqdn(self):
        rows = [
            metrics_row("web-01.corp.contoso.com", cpu_avg=1),
            metrics_row("web-01", cpu_avg=2),
        ]
        assert match_metrics(["web-01"], rows)["web-01"].cpu_avg == 2

    def test_prefix_without_dot_is_not_a_match(self):
        assert match_metrics(["web-01"], [metrics_row("web-010")]) == {}

    def test_null_columns_coalesce_to_zero(self):
        row = metrics_row("db-01")
        row.update({"Memory_Avg": None, "Memory_SampleCount": None})
        sample = match_metrics(["db-01"], [row])["db-01"]

        assert sample.mem_avg == 0.0
        assert sample.mem_sample_count == 0

    def test_unmatched_vms_are_omitted(self):
        matched = match_metrics(["web-01", "web-02"], [metrics_row("web-01")])
        assert set(matched) == {"web-01"}


class TestMetricsCollector:

    @pytest.mark.asyncio
    async def test_collects_every_batch(self, make_fleet, no_sleep):
        fleet = make_fleet(95)
        backend = FakeTelemetryBackend({vm.vm_name: metrics_row(vm.vm_name) for vm in fleet})
        result = await build_collector(backend, no_sleep).collect(fleet, window_days=30)

        assert result.total_batches == 4
        assert result.failed_batches == []
        assert len(result.metrics) == 95
        assert len(backend.calls) == 4
        assert sorted(n for call in backend.calls for n in call) == sorted(vm.vm_name for vm in fleet)

    @pytest.mark.asyncio
    async def test_waits_between_groups_only(self, make_fleet, no_sleep):
        fleet = make_fleet(187)
        backend = FakeTelemetryBackend()
        await build_collector(backend, no_sleep).collect(fleet)

        # 7 batches in groups of 3: two inter-group delays, no retries
        assert no_sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_failed_batch_is_isolated(self, make_fleet, no_sleep):
        fleet = make_fleet(60)
        rows = {vm.vm_name: metrics_row(vm.vm_name) for vm in fleet}
        poisoned = fleet[30].vm_name

        def fail(call_no, names):
            if poisoned in names:
                return TelemetryQueryException("Bad request", status_code=400)
            return None

        backend = FakeTelemetryBackend(rows, fail=fail)
        result = await build_collector(backend, no_sleep).collect(fleet)

        assert result.failed_batches == [1]
        assert len(result.metrics) == 30
        assert poisoned not in result.metrics

    @pytest.mark.asyncio
    async def test_rate_limited_batch_recovers(self, make_fleet, no_sleep):
        fleet = make_fleet(10)

        def fail(call_no, names):
            if call_no == 1:
                return TelemetryQueryException("Too many requests", status_code=429, retryable=True)
            return None

        backend = FakeTelemetryBackend({vm.vm_name: metrics_row(vm.vm_name) for vm in fleet}, fail=fail)
        result = await build_collector(backend, no_sleep).collect(fleet)

        assert result.failed_batches == []
        assert len(result.metrics) == 10
        assert len(backend.calls) == 2
        assert no_sleep.delays == [10.0]

    @pytest.mark.asyncio
    async def test_outcomes_stream_per_batch(self, make_fleet, no_sleep):
        fleet = make_fleet(7)
        collector = build_collector(FakeTelemetryBackend(), no_sleep, max_per_batch=2, max_parallel=2)
        plan = collector.batcher.plan(fleet)

        outcomes = [o async for o in collector.iter_batch_outcomes(plan)]

        assert sorted(o.batch_index for o in outcomes) == [0, 1, 2, 3]
        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_group_barrier(self, make_fleet, no_sleep):
        """A group starts only after every batch of the previous group settled."""
        fleet = make_fleet(4)
        in_flight = []
        peak = []

        class SlowBackend:
            async def run_query(self, query_text, timeout_ms):
                in_flight.append(1)
                peak.append(len(in_flight))
                await asyncio.sleep(0)
                in_flight.pop()
                return await FakeTelemetryBackend().run_query(query_text, timeout_ms)

        collector = build_collector(SlowBackend(), no_sleep, max_per_batch=1, max_parallel=2)
        result = await collector.collect(fleet)

        assert result.total_batches == 4
        assert max(peak) <= 2


class TestUpfrontValidation:

    @pytest.mark.asyncio
    async def test_bad_name_in_last_group_stops_collection_before_any_query(self, make_fleet, no_sleep):
        fleet = make_fleet(100)
        fleet[95] = VMDescriptor(vm_name="bad name!")
        backend = FakeTelemetryBackend()

        with pytest.raises(DataValidationException):
            await build_collector(backend, no_sleep).collect(fleet)

        assert backend.calls == []
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_streaming_builds_every_query_first(self, make_fleet, no_sleep):
        fleet = make_fleet(100)
        fleet[95] = VMDescriptor(vm_name="bad name!")
        backend = FakeTelemetryBackend()
        collector = build_collector(backend, no_sleep)
        plan = collector.batcher.plan(fleet)

        with pytest.raises(DataValidationException):
            async for _ in collector.iter_batch_outcomes(plan):
                pass

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_vm_is_rejected(self, make_fleet, no_sleep):
        fleet = make_fleet(3)
        fleet.append(VMDescriptor(vm_name=fleet[0].vm_name.upper()))
        backend = FakeTelemetryBackend()

        with pytest.raises(DataValidationException):
            await build_collector(backend, no_sleep).collect(fleet)

        assert backend.calls == []
