"""Client-side job polling."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..core.exceptions import PollTimeoutException
from ..core.utils import SleepFunc
from ..models.job_models import JobStatus

logger = structlog.get_logger(__name__)

StatusFetcher = Callable[[str], Awaitable[Dict[str, Any]]]


class JobPoller:
    """Polls a job at a fixed interval until it finishes or the wait budget runs out.

    Timing out only stops the client from waiting; the job keeps running.
    """

    def __init__(self, fetch_status: StatusFetcher, interval_seconds: float = 5.0,
                 max_wait_seconds: float = 600.0, sleep: SleepFunc = asyncio.sleep):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.fetch_status = fetch_status
        self.interval_seconds = interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self._sleep = sleep
        self.logger = logger.bind(component="job_poller")

    async def wait(self, job_id: str,
                   on_status: Optional[Callable[[Dict[str, Any]], None]] = None) -> Dict[str, Any]:
        """Return the first terminal status payload."""
        waited = 0.0
        last_status: Optional[str] = None
        while True:
            status = await self.fetch_status(job_id)
            last_status = status.get("status")
            if on_status:
                on_status(status)
            if last_status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
                return status

            if waited + self.interval_seconds > self.max_wait_seconds:
                self.logger.warning(f"Gave up polling job {job_id}", waited_seconds=waited, last_status=last_status)
                raise PollTimeoutException(job_id, waited, last_status)

            self.logger.debug(
                f"Job {job_id}: {status.get('completedBatches', 0)}/{status.get('totalBatches', 0)} batches",
                status=last_status,
            )
            await self._sleep(self.interval_seconds)
            waited += self.interval_seconds
