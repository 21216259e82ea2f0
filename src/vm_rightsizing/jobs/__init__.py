from .events import JobEventBus
from .orchestrator import JobOrchestrator, build_results_payload
from .poller import JobPoller
from .store import FileJobStore, InMemoryJobStore, JobStore, create_job_store

__all__ = [
    "JobEventBus",
    "JobOrchestrator",
    "build_results_payload",
    "JobPoller",
    "FileJobStore",
    "InMemoryJobStore",
    "JobStore",
    "create_job_store",
]
