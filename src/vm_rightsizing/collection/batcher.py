"""Fleet partitioning into query batches and parallel groups."""

import random
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from ..core.utils import jitter_seconds
from ..models.vm_models import Batch, VMDescriptor

logger = structlog.get_logger(__name__)


def order_by_resource_group(vms: Sequence[VMDescriptor]) -> List[VMDescriptor]:
    """Stable grouping: resource groups in first-appearance order, input order within a group."""
    groups: "OrderedDict[str, List[VMDescriptor]]" = OrderedDict()
    for vm in vms:
        groups.setdefault((vm.resource_group or "").lower(), []).append(vm)
    return [vm for members in groups.values() for vm in members]


def partition_fleet(vms: Sequence[VMDescriptor], max_per_batch: int = 30) -> List[Batch]:
    if max_per_batch < 1:
        raise ValueError("max_per_batch must be at least 1")

    ordered = order_by_resource_group(vms)
    batches: List[Batch] = []
    for start in range(0, len(ordered), max_per_batch):
        chunk = ordered[start:start + max_per_batch]
        groups = {(vm.resource_group or "").lower() for vm in chunk}
        hint = chunk[0].resource_group if len(groups) == 1 else None
        batches.append(Batch(
            batch_index=len(batches),
            vm_names=[vm.vm_name for vm in chunk],
            resource_group_hint=hint,
        ))
    return batches


def group_batches(batches: Sequence[Batch], max_parallel_batches: int = 3) -> List[List[Batch]]:
    if max_parallel_batches < 1:
        raise ValueError("max_parallel_batches must be at least 1")
    return [list(batches[i:i + max_parallel_batches]) for i in range(0, len(batches), max_parallel_batches)]


@dataclass
class BatchPlan:
    batches: List[Batch]
    groups: List[List[Batch]]
    vm_count: int
    descriptors: Dict[str, VMDescriptor] = field(default_factory=dict)

    @property
    def total_batches(self) -> int:
        return len(self.batches)


class FleetBatcher:
    """Splits a fleet into batches and paces the parallel groups."""

    def __init__(self, max_per_batch: int = 30, max_parallel_batches: int = 3,
                 group_delay_ms: float = 2000.0, jitter_ms: float = 1000.0,
                 rng: Optional[Callable[[], float]] = None):
        if max_per_batch < 1 or max_parallel_batches < 1:
            raise ValueError("batch sizes must be at least 1")
        self.max_per_batch = max_per_batch
        self.max_parallel_batches = max_parallel_batches
        self.group_delay_ms = group_delay_ms
        self.jitter_ms = jitter_ms
        self._rng = rng or random.random
        self.logger = logger.bind(component="fleet_batcher")

    @classmethod
    def from_settings(cls, settings) -> "FleetBatcher":
        return cls(
            max_per_batch=settings.max_per_batch,
            max_parallel_batches=settings.max_parallel_batches,
            group_delay_ms=settings.group_delay_ms,
            jitter_ms=settings.jitter_ms,
        )

    def plan(self, vms: Sequence[VMDescriptor]) -> BatchPlan:
        batches = partition_fleet(vms, self.max_per_batch)
        groups = group_batches(batches, self.max_parallel_batches)
        self.logger.info(
            f"Planned {len(batches)} batches in {len(groups)} parallel groups",
            vm_count=len(vms),
            max_per_batch=self.max_per_batch,
        )
        return BatchPlan(
            batches=batches,
            groups=groups,
            vm_count=len(vms),
            descriptors={vm.key: vm for vm in vms},
        )

    def inter_group_delay(self) -> float:
        """Seconds to wait between parallel groups."""
        return self.group_delay_ms / 1000.0 + jitter_seconds(self.jitter_ms, self._rng)
