"""Job and job event models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job-{utcnow().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"


class JobStatus(str, Enum):
    """Job state machine: PENDING -> RUNNING -> COMPLETED | FAILED."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(BaseModel):
    """One fleet scan tracked through the job store."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    job_id: str = Field(default_factory=new_job_id)
    status: JobStatus = JobStatus.PENDING
    total_batches: int = Field(0, ge=0)
    completed_batches: int = Field(0, ge=0)
    failed_batches: int = Field(0, ge=0)
    vm_count: int = Field(0, ge=0)
    scan_window_days: int = 30
    subscription_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    results: Optional[Dict[str, Any]] = None

    def status_payload(self) -> Dict[str, Any]:
        """Shape returned by ``GET /jobs/{id}``."""
        payload: Dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status.value,
            "completedBatches": self.completed_batches,
            "totalBatches": self.total_batches,
            "failedBatches": self.failed_batches,
            "vmCount": self.vm_count,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.error:
            payload["error"] = self.error
        return payload


class JobEventType(str, Enum):
    SUBMITTED = "SUBMITTED"
    STARTED = "STARTED"
    BATCH_COMPLETED = "BATCH_COMPLETED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobEvent(BaseModel):
    """Progress notification published by the job orchestrator."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    event_type: JobEventType
    completed_batches: int = 0
    total_batches: int = 0
    batch_index: Optional[int] = None
    batch_failed: bool = False
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
