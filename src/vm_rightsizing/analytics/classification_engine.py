# src/vm_rightsizing/analytics/classification_engine.py
"""
Rule-based VM classification aligned with Azure Advisor thresholds
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from ..models.vm_models import (
    ClassificationResult,
    MetricsSample,
    Priority,
    RecommendedAction,
    VMDescriptor,
    VMStatus,
)
from .size_catalog import SizeCatalog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClassificationThresholds:
    """Percent thresholds; a VM must clear ``minimum_samples`` before any other rule applies."""
    under_cpu_max: float = 5.0
    under_cpu_max_alt: float = 20.0
    under_cpu_avg_alt: float = 10.0
    under_mem_max: float = 20.0
    under_mem_avg: float = 10.0
    over_cpu_p95: float = 85.0
    over_cpu_max: float = 95.0
    over_mem_p95: float = 85.0
    over_mem_max: float = 95.0
    minimum_samples: int = 500
    high_priority_savings: float = 100.0
    high_priority_p95: float = 95.0


def _pct(value: float) -> str:
    return f"{value:g}%"


@dataclass
class FleetAnalysis:
    """Aggregated classification of a whole fleet."""
    results: List[ClassificationResult]
    underutilized: List[ClassificationResult] = field(default_factory=list)
    overutilized: List[ClassificationResult] = field(default_factory=list)
    right_sized: List[ClassificationResult] = field(default_factory=list)
    insufficient_data: List[ClassificationResult] = field(default_factory=list)
    ranked_underutilized: List[ClassificationResult] = field(default_factory=list)
    ranked_overutilized: List[ClassificationResult] = field(default_factory=list)
    top_underutilized: List[ClassificationResult] = field(default_factory=list)
    top_overutilized: List[ClassificationResult] = field(default_factory=list)
    total_monthly_savings: float = 0.0
    total_additional_cost: float = 0.0

    @property
    def net_monthly_impact(self) -> float:
        return round(self.total_monthly_savings - self.total_additional_cost, 2)

    @property
    def top_recommendations(self) -> List[ClassificationResult]:
        return self.top_underutilized + self.top_overutilized

    def summary(self) -> Dict[str, Any]:
        return {
            "totalVMs": len(self.results),
            "analyzed": len(self.underutilized) + len(self.overutilized) + len(self.right_sized),
            "underutilized": len(self.underutilized),
            "overutilized": len(self.overutilized),
            "rightSized": len(self.right_sized),
            "insufficientData": len(self.insufficient_data),
            "estimatedMonthlySavings": round(self.total_monthly_savings, 2),
            "estimatedAdditionalCost": round(self.total_additional_cost, 2),
            "netMonthlyImpact": self.net_monthly_impact,
        }


class ClassificationEngine:
    """Pure, deterministic classifier. Same input, same result."""

    def __init__(self, catalog: Optional[SizeCatalog] = None,
                 thresholds: Optional[ClassificationThresholds] = None,
                 top_underutilized: int = 15, top_overutilized: int = 10):
        self.catalog = catalog if catalog is not None else SizeCatalog.default()
        self.thresholds = thresholds or ClassificationThresholds()
        self.top_underutilized_limit = top_underutilized
        self.top_overutilized_limit = top_overutilized
        self.logger = logger.bind(analytics="classification")

    def is_underutilized(self, m: MetricsSample) -> bool:
        t = self.thresholds
        cpu_idle = m.cpu_max < t.under_cpu_max or (m.cpu_max < t.under_cpu_max_alt and m.cpu_avg < t.under_cpu_avg_alt)
        memory_idle = m.mem_max < t.under_mem_max and m.mem_avg < t.under_mem_avg
        return cpu_idle and memory_idle

    def cpu_overutilized(self, m: MetricsSample) -> bool:
        return m.cpu_p95 > self.thresholds.over_cpu_p95 or m.cpu_max > self.thresholds.over_cpu_max

    def memory_overutilized(self, m: MetricsSample) -> bool:
        return m.mem_p95 > self.thresholds.over_mem_p95 or m.mem_max > self.thresholds.over_mem_max

    def classify(self, vm: VMDescriptor, metrics: Optional[MetricsSample]) -> ClassificationResult:
        context = {
            "vm_name": vm.vm_name,
            "resource_group": vm.resource_group,
            "location": vm.location,
            "current_size": vm.current_size,
        }

        if metrics is None:
            return ClassificationResult(
                **context,
                status=VMStatus.INSUFFICIENT_DATA,
                action=RecommendedAction.REVIEW,
                reason="No performance metrics found",
                metrics=MetricsSample(),
            )

        context["metrics"] = metrics
        total = metrics.total_sample_count
        if total < self.thresholds.minimum_samples:
            return ClassificationResult(
                **context,
                status=VMStatus.INSUFFICIENT_DATA,
                action=RecommendedAction.REVIEW,
                reason=f"Only {total} samples - need {self.thresholds.minimum_samples}+ for reliable analysis",
            )

        # underutilized wins when both rule sets could match
        if self.is_underutilized(metrics):
            target = self.catalog.downgrade(vm.current_size)
            savings = 0.0
            if target:
                savings = max(0.0, self.catalog.monthly_cost(vm.current_size) - self.catalog.monthly_cost(target))
            savings = round(savings, 2)
            return ClassificationResult(
                **context,
                status=VMStatus.UNDERUTILIZED,
                action=RecommendedAction.DOWNSIZE,
                recommended_size=target,
                reason=(
                    f"CPU max {_pct(metrics.cpu_max)}, avg {_pct(metrics.cpu_avg)}; "
                    f"Memory max {_pct(metrics.mem_max)}, avg {_pct(metrics.mem_avg)}"
                ),
                estimated_monthly_savings=savings,
                priority=Priority.HIGH if savings > self.thresholds.high_priority_savings else Priority.MEDIUM,
            )

        cpu_hot = self.cpu_overutilized(metrics)
        memory_hot = self.memory_overutilized(metrics)
        if cpu_hot or memory_hot:
            target = self.catalog.upgrade(vm.current_size)
            extra = 0.0
            if target:
                extra = max(0.0, self.catalog.monthly_cost(target) - self.catalog.monthly_cost(vm.current_size))
            reasons = []
            if cpu_hot:
                reasons.append(f"CPU P95 {_pct(metrics.cpu_p95)}, max {_pct(metrics.cpu_max)}")
            if memory_hot:
                reasons.append(f"Memory P95 {_pct(metrics.mem_p95)}, max {_pct(metrics.mem_max)}")
            urgent = max(metrics.cpu_p95, metrics.mem_p95) > self.thresholds.high_priority_p95
            return ClassificationResult(
                **context,
                status=VMStatus.OVERUTILIZED,
                action=RecommendedAction.UPSIZE,
                recommended_size=target,
                reason="; ".join(reasons),
                estimated_additional_cost=round(extra, 2),
                priority=Priority.HIGH if urgent else Priority.MEDIUM,
            )

        return ClassificationResult(
            **context,
            status=VMStatus.RIGHT_SIZED,
            action=RecommendedAction.NONE,
            reason=(
                f"CPU avg {_pct(metrics.cpu_avg)}, max {_pct(metrics.cpu_max)}; "
                f"Memory avg {_pct(metrics.mem_avg)}, max {_pct(metrics.mem_max)}"
            ),
        )

    def classify_fleet(self, vms: Sequence[VMDescriptor],
                       metrics: Mapping[str, MetricsSample]) -> FleetAnalysis:
        """Classify every VM; VMs missing from ``metrics`` are INSUFFICIENT_DATA."""
        results = [self.classify(vm, metrics.get(vm.key)) for vm in vms]
        analysis = FleetAnalysis(results=results)

        buckets = {
            VMStatus.UNDERUTILIZED: analysis.underutilized,
            VMStatus.OVERUTILIZED: analysis.overutilized,
            VMStatus.RIGHT_SIZED: analysis.right_sized,
            VMStatus.INSUFFICIENT_DATA: analysis.insufficient_data,
        }
        for result in results:
            buckets[result.status].append(result)

        analysis.total_monthly_savings = round(sum(r.estimated_monthly_savings for r in analysis.underutilized), 2)
        analysis.total_additional_cost = round(sum(r.estimated_additional_cost for r in analysis.overutilized), 2)

        # ties keep fleet order
        analysis.ranked_underutilized = sorted(
            analysis.underutilized, key=lambda r: r.estimated_monthly_savings, reverse=True
        )
        analysis.ranked_overutilized = sorted(
            analysis.overutilized, key=lambda r: r.metrics.cpu_p95 if r.metrics else 0.0, reverse=True
        )
        analysis.top_underutilized = analysis.ranked_underutilized[:self.top_underutilized_limit]
        analysis.top_overutilized = analysis.ranked_overutilized[:self.top_overutilized_limit]

        self.logger.info(
            f"Classified {len(results)} VMs",
            underutilized=len(analysis.underutilized),
            overutilized=len(analysis.overutilized),
            right_sized=len(analysis.right_sized),
            insufficient_data=len(analysis.insufficient_data),
            monthly_savings=analysis.total_monthly_savings,
        )
        return analysis
