"""KQL query construction for aggregate VM performance metrics.

All escaping and parameter validation lives here; callers pass typed values
and never splice strings into query text themselves.
"""

import re
from typing import Iterable, List, Optional

from ..core.exceptions import DataValidationException
from ..models.validation import validate_subscription_id, validate_vm_name, validate_window_days

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

CPU_COUNTER_FILTER = (
    'ObjectName == "Processor" and CounterName == "% Processor Time" and InstanceName == "_Total"'
)
MEMORY_COUNTER_FILTER = (
    'ObjectName == "Memory" and CounterName in ("% Committed Bytes In Use", "% Used Memory")'
)

RESULT_COLUMNS = [
    "Computer",
    "CPU_Avg", "CPU_Max", "CPU_P95", "CPU_SampleCount",
    "Memory_Avg", "Memory_Max", "Memory_P95", "Memory_SampleCount",
]


def escape_kql_string(value) -> str:
    """Escape a value for use inside a double-quoted KQL string literal."""
    if value is None:
        return ""
    text = str(value)
    text = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return _CONTROL_CHARS.sub("", text)


def kql_dynamic_list(values: Iterable[str]) -> str:
    return "dynamic([" + ", ".join(f'"{escape_kql_string(v)}"' for v in values) + "])"


class MetricsQueryBuilder:
    """Builds the per-batch aggregate CPU/memory query."""

    def __init__(self, window_days: int = 30, subscription_id: Optional[str] = None,
                 max_window_days: int = 90):
        self.window_days = validate_window_days(window_days, max_window_days)
        self.subscription_id = validate_subscription_id(subscription_id)
        self.max_window_days = max_window_days

    def _subscription_filter(self) -> str:
        if not self.subscription_id:
            return ""
        return f'| where _ResourceId has "{escape_kql_string(self.subscription_id)}"'

    def build(self, vm_names: Iterable[str]) -> str:
        names: List[str] = [validate_vm_name(name) for name in vm_names]
        if not names:
            raise DataValidationException("vm_names", names, "at least one VM name is required")

        subscription_filter = self._subscription_filter()
        return f"""
let vmList = {kql_dynamic_list(names)};
let timeRange = {self.window_days}d;

let cpuMetrics = Perf
    | where TimeGenerated >= ago(timeRange)
    {subscription_filter}
    | where {CPU_COUNTER_FILTER}
    | where Computer has_any (vmList)
    | summarize
        CPU_Avg = round(avg(CounterValue), 2),
        CPU_Max = round(max(CounterValue), 2),
        CPU_P95 = round(percentile(CounterValue, 95), 2),
        CPU_SampleCount = count()
        by Computer;

let memMetrics = Perf
    | where TimeGenerated >= ago(timeRange)
    {subscription_filter}
    | where {MEMORY_COUNTER_FILTER}
    | where Computer has_any (vmList)
    | summarize
        Memory_Avg = round(avg(CounterValue), 2),
        Memory_Max = round(max(CounterValue), 2),
        Memory_P95 = round(percentile(CounterValue, 95), 2),
        Memory_SampleCount = count()
        by Computer;

cpuMetrics
| join kind=leftouter (memMetrics) on Computer
| project
    Computer,
    CPU_Avg,
    CPU_Max,
    CPU_P95,
    CPU_SampleCount,
    Memory_Avg = coalesce(Memory_Avg, 0.0),
    Memory_Max = coalesce(Memory_Max, 0.0),
    Memory_P95 = coalesce(Memory_P95, 0.0),
    Memory_SampleCount = coalesce(Memory_SampleCount, 0)
""".strip()
