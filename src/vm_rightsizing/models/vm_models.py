"""
Right-sizing data models
VM descriptors, metrics samples, classification results and recommendations
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VMStatus(str, Enum):
    """Classification status enumeration."""
    UNDERUTILIZED = "UNDERUTILIZED"
    OVERUTILIZED = "OVERUTILIZED"
    RIGHT_SIZED = "RIGHT_SIZED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class RecommendedAction(str, Enum):
    """Sizing action enumeration."""
    DOWNSIZE = "DOWNSIZE"
    UPSIZE = "UPSIZE"
    NONE = "NONE"
    REVIEW = "REVIEW"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Confidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Priority(str, Enum):
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RightsizingBaseModel(BaseModel):
    """Base model: immutable, camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class VMDescriptor(RightsizingBaseModel):
    """A VM as supplied by the external inventory service."""

    vm_name: str = Field(
        validation_alias=AliasChoices("vm_name", "vmName", "name"),
        serialization_alias="vmName",
    )
    resource_group: Optional[str] = None
    location: Optional[str] = None
    subscription_id: Optional[str] = None
    current_size: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("current_size", "currentSize", "vmSize", "size"),
        serialization_alias="currentSize",
    )

    @property
    def key(self) -> str:
        """Normalized fleet key."""
        return self.vm_name.strip().lower()


class MetricsSample(RightsizingBaseModel):
    """CPU and memory statistics for one VM over one scan window."""

    cpu_avg: float = 0.0
    cpu_max: float = 0.0
    cpu_p95: float = 0.0
    cpu_sample_count: int = Field(0, ge=0)
    mem_avg: float = 0.0
    mem_max: float = 0.0
    mem_p95: float = 0.0
    mem_sample_count: int = Field(0, ge=0)

    @property
    def total_sample_count(self) -> int:
        return self.cpu_sample_count + self.mem_sample_count

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MetricsSample":
        """Build a sample from an aggregate query row; nulls coalesce to 0."""

        def number(column: str) -> float:
            value = row.get(column)
            return float(value) if value is not None else 0.0

        def count(column: str) -> int:
            value = row.get(column)
            return int(value) if value is not None else 0

        return cls(
            cpu_avg=number("CPU_Avg"),
            cpu_max=number("CPU_Max"),
            cpu_p95=number("CPU_P95"),
            cpu_sample_count=count("CPU_SampleCount"),
            mem_avg=number("Memory_Avg"),
            mem_max=number("Memory_Max"),
            mem_p95=number("Memory_P95"),
            mem_sample_count=count("Memory_SampleCount"),
        )


class ClassificationResult(RightsizingBaseModel):
    """Rule-based verdict for one VM."""

    vm_name: str
    status: VMStatus
    action: RecommendedAction
    recommended_size: Optional[str] = None
    reason: str
    estimated_monthly_savings: float = 0.0
    estimated_additional_cost: float = 0.0
    resource_group: Optional[str] = None
    location: Optional[str] = None
    current_size: Optional[str] = None
    metrics: Optional[MetricsSample] = None
    priority: Optional[Priority] = None


class Recommendation(ClassificationResult):
    """Classification result extended with the AI (or fallback) explanation."""

    recommendation: str
    risk_level: RiskLevel
    risk_explanation: str
    confidence: Confidence
    ai_generated: bool = False

    @classmethod
    def from_classification(cls, result: ClassificationResult, **fields: Any) -> "Recommendation":
        data = result.model_dump()
        data.update(fields)
        return cls(**data)


class Batch(RightsizingBaseModel):
    """A group of VMs queried together in one aggregate backend call."""

    batch_index: int = Field(ge=0)
    vm_names: List[str]
    resource_group_hint: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.vm_names)
