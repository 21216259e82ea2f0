# src/vm_rightsizing/jobs/orchestrator.py
"""
Reliable job orchestrator

A fleet scan runs as a detached job: PENDING -> RUNNING -> COMPLETED | FAILED.
Batch failures degrade the affected VMs to INSUFFICIENT_DATA; only
orchestration errors (storage, merge) fail the job.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import structlog

from ..analytics.ai_recommender import AIRecommender, AugmentationResult, GenerativeModel
from ..analytics.classification_engine import ClassificationEngine, FleetAnalysis
from ..analytics.size_catalog import SizeCatalog
from ..clients.azure.log_analytics_client import TelemetryBackend
from ..collection.batcher import BatchPlan, FleetBatcher
from ..collection.executor import RetryingExecutor, RetryPolicy
from ..collection.metrics_collector import CollectionResult, MetricsCollector
from ..core.exceptions import JobNotFoundException, JobNotReadyException, OrchestrationException
from ..core.utils import BackgroundTaskGroup, SleepFunc
from ..models.job_models import Job, JobEvent, JobEventType, JobStatus, utcnow
from ..models.validation import validate_fleet, validate_subscription_id, validate_window_days
from ..models.vm_models import VMDescriptor, VMStatus
from .events import JobEventBus
from .store import InMemoryJobStore, JobStore, create_job_store

logger = structlog.get_logger(__name__)

Notifier = Callable[[Job], Awaitable[None]]

DETAIL_KEYS = {
    VMStatus.UNDERUTILIZED: "underutilized",
    VMStatus.OVERUTILIZED: "overutilized",
    VMStatus.RIGHT_SIZED: "rightSized",
    VMStatus.INSUFFICIENT_DATA: "insufficientData",
}


def build_results_payload(job: Job, analysis: FleetAnalysis, augmentation: AugmentationResult,
                          collection: CollectionResult) -> Dict[str, Any]:
    """Shape returned by ``GET /jobs/{id}/results``."""
    details: Dict[str, List[Dict[str, Any]]] = {key: [] for key in DETAIL_KEYS.values()}
    for recommendation in augmentation.recommendations:
        details[DETAIL_KEYS[recommendation.status]].append(recommendation.to_payload())

    summary = analysis.summary()
    summary.update({
        "failedBatches": len(collection.failed_batches),
        "aiRecommendations": augmentation.ai_succeeded,
        "executiveSummary": augmentation.executive_summary,
    })
    return {
        "jobId": job.job_id,
        "analyzedAt": datetime.now(timezone.utc).isoformat(),
        "scanWindowDays": job.scan_window_days,
        "summary": summary,
        "recommendations": [r.to_payload() for r in augmentation.top_recommendations],
        "details": details,
        "failedBatches": sorted(collection.failed_batches),
    }


class JobOrchestrator:
    """Submits, runs and exposes fleet scan jobs."""

    def __init__(self, collector: MetricsCollector, engine: ClassificationEngine,
                 recommender: AIRecommender, store: Optional[JobStore] = None,
                 events: Optional[JobEventBus] = None, notifier: Optional[Notifier] = None,
                 max_window_days: int = 90, list_limit: int = 50):
        self.collector = collector
        self.engine = engine
        self.recommender = recommender
        self.store = store if store is not None else InMemoryJobStore()
        self.events = events if events is not None else JobEventBus()
        self.notifier = notifier
        self.max_window_days = max_window_days
        self.list_limit = list_limit
        self._runs = BackgroundTaskGroup("job-runs")
        self._notifications = BackgroundTaskGroup("job-notifications")
        self.logger = logger.bind(component="job_orchestrator")

    @classmethod
    def from_settings(cls, settings, backend: TelemetryBackend, model: Optional[GenerativeModel] = None,
                      catalog: Optional[SizeCatalog] = None, store: Optional[JobStore] = None,
                      notifier: Optional[Notifier] = None, sleep: SleepFunc = asyncio.sleep) -> "JobOrchestrator":
        """Wire the whole pipeline from ``Settings``."""
        c = settings.collection
        ai = settings.ai
        catalog = catalog if catalog is not None else SizeCatalog.default()

        collector = MetricsCollector(
            backend,
            batcher=FleetBatcher.from_settings(c),
            executor=RetryingExecutor(
                RetryPolicy(c.retry_attempts, c.retry_base_delay_ms, c.retry_cap_delay_ms, c.jitter_ms),
                sleep=sleep,
                name="telemetry",
            ),
            query_timeout_ms=c.query_timeout_ms,
            max_window_days=c.max_window_days,
            sleep=sleep,
        )
        recommender = AIRecommender(
            model if ai.enabled else None,
            catalog,
            executor=RetryingExecutor(
                RetryPolicy(ai.retry_attempts, ai.retry_base_delay_ms, ai.retry_cap_delay_ms, c.jitter_ms),
                sleep=sleep,
                name="ai",
            ),
            max_workers=ai.max_workers,
            max_recommendations=ai.max_recommendations,
            top_n_per_category=ai.top_n_per_category,
            max_tokens=ai.max_tokens,
            summary_max_tokens=ai.summary_max_tokens,
            window_days=c.scan_window_days,
        )
        return cls(
            collector,
            ClassificationEngine(catalog),
            recommender,
            store=store if store is not None else create_job_store(settings.jobs),
            events=JobEventBus(max_finished_jobs=settings.jobs.event_history_jobs),
            notifier=notifier,
            max_window_days=c.max_window_days,
            list_limit=settings.jobs.list_limit,
        )

    @property
    def notification_errors(self) -> List[BaseException]:
        return list(self._notifications.errors)

    async def _publish(self, job: Job, event_type: JobEventType, message: str = "",
                       batch_index: Optional[int] = None, batch_failed: bool = False) -> None:
        await self.events.publish(JobEvent(
            job_id=job.job_id,
            event_type=event_type,
            completed_batches=job.completed_batches,
            total_batches=job.total_batches,
            batch_index=batch_index,
            batch_failed=batch_failed,
            message=message,
        ))

    async def submit(self, fleet: Iterable[Union[VMDescriptor, Mapping[str, Any]]],
                     scan_window_days: int = 30, subscription_id: Optional[str] = None) -> Dict[str, Any]:
        """Validate, persist and start a job. Returns before any batch runs."""
        vms = validate_fleet(fleet)
        window = validate_window_days(scan_window_days, self.max_window_days)
        subscription = validate_subscription_id(subscription_id)

        plan = self.collector.batcher.plan(vms)
        job = Job(
            total_batches=plan.total_batches,
            vm_count=plan.vm_count,
            scan_window_days=window,
            subscription_id=subscription,
        )
        await self.store.set(job)
        await self._publish(job, JobEventType.SUBMITTED, f"{plan.vm_count} VMs in {plan.total_batches} batches")

        self._runs.spawn(self._run(job, vms, plan), name=f"run-{job.job_id}")
        self.logger.info(f"Submitted job {job.job_id}", vm_count=plan.vm_count, total_batches=plan.total_batches)
        return {
            "jobId": job.job_id,
            "status": job.status.value,
            "totalBatches": job.total_batches,
            "vmCount": job.vm_count,
        }

    async def _run(self, job: Job, vms: Sequence[VMDescriptor], plan: BatchPlan) -> None:
        job_id = job.job_id
        try:
            job = await self.store.update(job_id, status=JobStatus.RUNNING)
            await self._publish(job, JobEventType.STARTED)

            collection = CollectionResult(total_batches=plan.total_batches, vm_count=plan.vm_count)
            async for outcome in self.collector.iter_batch_outcomes(
                plan, job.scan_window_days, job.subscription_id
            ):
                collection.merge(outcome)
                job = await self.store.increment(job_id, failed=not outcome.success)
                await self._publish(
                    job,
                    JobEventType.BATCH_COMPLETED,
                    outcome.error or "",
                    batch_index=outcome.batch_index,
                    batch_failed=not outcome.success,
                )

            if job.completed_batches != job.total_batches:
                raise OrchestrationException(
                    f"Only {job.completed_batches}/{job.total_batches} batches settled",
                    {"job_id": job_id},
                )

            analysis = self.engine.classify_fleet(vms, collection.metrics)
            augmentation = await self.recommender.augment(analysis, job.scan_window_days)
            results = build_results_payload(job, analysis, augmentation, collection)

            job = await self.store.update(
                job_id, status=JobStatus.COMPLETED, results=results, completed_at=utcnow()
            )
            await self._publish(job, JobEventType.COMPLETED)
            self.logger.info(
                f"Job {job_id} completed",
                vm_count=job.vm_count,
                failed_batches=job.failed_batches,
            )
            self._notify(job)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Job {job_id} failed", error=str(e))
            await self._fail(job, e)

    async def _fail(self, job: Job, error: Exception) -> None:
        try:
            job = await self.store.update(job.job_id, status=JobStatus.FAILED, error=str(error))
        except Exception as store_error:
            self.logger.error(f"Could not record failure of job {job.job_id}", error=str(store_error))
            job = job.model_copy(update={"status": JobStatus.FAILED, "error": str(error)})
        await self._publish(job, JobEventType.FAILED, str(error))
        self._notify(job)

    def _notify(self, job: Job) -> None:
        """Best-effort, non-blocking completion notification."""
        if self.notifier is None:
            return
        self._notifications.spawn(self.notifier(job), name=f"notify-{job.job_id}")

    async def _get(self, job_id: str) -> Job:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundException(job_id)
        return job

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        return (await self._get(job_id)).status_payload()

    async def get_results(self, job_id: str) -> Dict[str, Any]:
        job = await self._get(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReadyException(job_id, job.status.value)
        return job.results or {}

    async def list_jobs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        jobs = await self.store.list(limit or self.list_limit)
        return [job.status_payload() for job in jobs]

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop expired jobs from the store and their event history."""
        purged = await self.store.purge_expired(now)
        for job_id in self.events.job_ids():
            if await self.store.get(job_id) is None:
                self.events.forget(job_id)
        return purged

    async def wait_idle(self) -> None:
        """Wait for every running job and pending notification to settle."""
        await self._runs.drain()
        await self._notifications.drain()
