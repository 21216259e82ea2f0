# src/vm_rightsizing/jobs/store.py
"""Job storage: in-memory and JSON-file backends."""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from ..core.exceptions import JobNotFoundException, StorageException
from ..models.job_models import Job, JobStatus, utcnow

logger = structlog.get_logger(__name__)


class JobStore(ABC):
    """Persistence contract for jobs.

    ``increment`` is the only way batch progress is recorded; implementations
    serialize it so concurrent batch completions never lose an update.
    """

    def __init__(self, retention_hours: int = 24):
        self.retention = timedelta(hours=retention_hours)
        self._lock = asyncio.Lock()
        self.logger = logger.bind(store=self.__class__.__name__)

    @abstractmethod
    async def _read(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def _write(self, job: Job) -> None:
        pass

    @abstractmethod
    async def _remove(self, job_id: str) -> bool:
        pass

    @abstractmethod
    async def _all(self) -> List[Job]:
        pass

    async def get(self, job_id: str) -> Optional[Job]:
        return await self._read(job_id)

    async def set(self, job: Job) -> Job:
        async with self._lock:
            job.updated_at = utcnow()
            await self._write(job)
        return job

    async def update(self, job_id: str, **changes: Any) -> Job:
        async with self._lock:
            job = await self._read(job_id)
            if job is None:
                raise JobNotFoundException(job_id)
            updated = job.model_copy(update={**changes, "updated_at": utcnow()})
            await self._write(updated)
        return updated

    async def increment(self, job_id: str, failed: bool = False) -> Job:
        """Record one settled batch; ``failed`` also bumps the failed counter."""
        async with self._lock:
            job = await self._read(job_id)
            if job is None:
                raise JobNotFoundException(job_id)
            changes: Dict[str, Any] = {
                "completed_batches": job.completed_batches + 1,
                "updated_at": utcnow(),
            }
            if failed:
                changes["failed_batches"] = job.failed_batches + 1
            updated = job.model_copy(update=changes)
            await self._write(updated)
        return updated

    async def list(self, limit: int = 50) -> List[Job]:
        jobs = await self._all()
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return await self._remove(job_id)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete finished jobs older than the retention window."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        purged = 0
        async with self._lock:
            for job in await self._all():
                if job.status.is_terminal and job.updated_at < cutoff:
                    if await self._remove(job.job_id):
                        purged += 1
        if purged:
            self.logger.info(f"Purged {purged} expired jobs")
        return purged


class InMemoryJobStore(JobStore):

    def __init__(self, retention_hours: int = 24):
        super().__init__(retention_hours)
        self._jobs: Dict[str, Job] = {}

    async def _read(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def _write(self, job: Job) -> None:
        self._jobs[job.job_id] = job.model_copy(deep=True)

    async def _remove(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def _all(self) -> List[Job]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]


class FileJobStore(JobStore):
    """One JSON document per job under ``base_path``.

    File I/O runs in worker threads so large result documents never block the
    event loop.
    """

    def __init__(self, base_path: Union[str, Path], retention_hours: int = 24):
        super().__init__(retention_hours)
        self.base_path = Path(base_path)
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageException(f"Cannot create job store directory {self.base_path}: {e}")

    def _path(self, job_id: str) -> Path:
        return self.base_path / f"{job_id}.json"

    def _load(self, path: Path) -> Job:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return Job.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StorageException(f"Cannot read job file {path.name}: {e}")

    def _read_sync(self, job_id: str) -> Optional[Job]:
        path = self._path(job_id)
        if not path.exists():
            return None
        return self._load(path)

    def _write_sync(self, job: Job) -> None:
        path = self._path(job.job_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, 'w', encoding='utf-8') as f:
                f.write(job.model_dump_json(by_alias=True, indent=2))
            tmp.replace(path)
        except OSError as e:
            raise StorageException(f"Cannot write job {job.job_id}: {e}")

    def _remove_sync(self, job_id: str) -> bool:
        path = self._path(job_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageException(f"Cannot delete job {job_id}: {e}")

    def _all_sync(self) -> List[Job]:
        return [self._load(path) for path in sorted(self.base_path.glob("*.json"))]

    async def _read(self, job_id: str) -> Optional[Job]:
        return await asyncio.to_thread(self._read_sync, job_id)

    async def _write(self, job: Job) -> None:
        await asyncio.to_thread(self._write_sync, job)

    async def _remove(self, job_id: str) -> bool:
        return await asyncio.to_thread(self._remove_sync, job_id)

    async def _all(self) -> List[Job]:
        return await asyncio.to_thread(self._all_sync)


def create_job_store(settings) -> JobStore:
    """Store for the configured backend (``JobSettings``)."""
    backend = getattr(settings.storage_backend, "value", settings.storage_backend)
    if backend == "file":
        return FileJobStore(settings.base_path, settings.retention_hours)
    return InMemoryJobStore(settings.retention_hours)
