"""Progress event channel for jobs."""

import asyncio
import inspect
from collections import OrderedDict, defaultdict, deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

import structlog

from ..models.job_models import JobEvent, JobEventType

logger = structlog.get_logger(__name__)

EventHandler = Callable[[JobEvent], Union[None, Awaitable[None]]]

TERMINAL_EVENTS = (JobEventType.COMPLETED, JobEventType.FAILED)


class JobEventBus:
    """Publishes job events to subscribers and keeps a short per-job history.

    A failing subscriber is logged and skipped; it never affects the job or
    the other subscribers. History is kept for at most ``max_finished_jobs``
    finished jobs, oldest dropped first.
    """

    def __init__(self, history_size: int = 100, max_finished_jobs: int = 100):
        self._handlers: List[EventHandler] = []
        self._history: Dict[str, Deque[JobEvent]] = defaultdict(lambda: deque(maxlen=history_size))
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self.max_finished_jobs = max_finished_jobs
        self.logger = logger.bind(component="job_events")

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; returns a callable that unsubscribes it."""
        self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def subscribe_queue(self, job_id: Optional[str] = None) -> Tuple["asyncio.Queue[JobEvent]", Callable[[], None]]:
        """Queue receiving every event (or only ``job_id``'s events), and its unsubscribe callable."""
        queue: "asyncio.Queue[JobEvent]" = asyncio.Queue()

        def enqueue(event: JobEvent) -> None:
            if job_id is None or event.job_id == job_id:
                queue.put_nowait(event)

        return queue, self.subscribe(enqueue)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def publish(self, event: JobEvent) -> None:
        self._history[event.job_id].append(event)
        if event.event_type in TERMINAL_EVENTS:
            self._mark_finished(event.job_id)

        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.warning(
                    "Event handler failed",
                    job_id=event.job_id,
                    event_type=event.event_type.value,
                    error=str(e),
                )

    def _mark_finished(self, job_id: str) -> None:
        self._finished.pop(job_id, None)
        self._finished[job_id] = None
        while len(self._finished) > self.max_finished_jobs:
            oldest, _ = self._finished.popitem(last=False)
            self._history.pop(oldest, None)

    def history(self, job_id: str) -> List[JobEvent]:
        return list(self._history.get(job_id, ()))

    def job_ids(self) -> List[str]:
        return list(self._history)

    def forget(self, job_id: str) -> None:
        self._history.pop(job_id, None)
        self._finished.pop(job_id, None)
