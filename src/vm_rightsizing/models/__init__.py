from .vm_models import (
    Batch,
    ClassificationResult,
    Confidence,
    MetricsSample,
    Priority,
    Recommendation,
    RecommendedAction,
    RiskLevel,
    VMDescriptor,
    VMStatus,
)
from .job_models import Job, JobEvent, JobEventType, JobStatus
from .validation import validate_fleet, validate_subscription_id, validate_vm_name, validate_window_days

__all__ = [
    "Batch",
    "ClassificationResult",
    "Confidence",
    "MetricsSample",
    "Priority",
    "Recommendation",
    "RecommendedAction",
    "RiskLevel",
    "VMDescriptor",
    "VMStatus",
    "Job",
    "JobEvent",
    "JobEventType",
    "JobStatus",
    "validate_fleet",
    "validate_subscription_id",
    "validate_vm_name",
    "validate_window_days",
]
