"""Utility functions and helpers."""

import asyncio
import logging.config
import random
import structlog
import yaml
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Set, Union

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


def setup_logging(config_path: Optional[Union[str, Path]] = None, log_level: str = "INFO") -> None:
    """Setup structured logging configuration."""
    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(
            level=getattr(logging, log_level.upper()),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if config_path else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def jitter_seconds(max_jitter_ms: float = 1000.0, rng: Callable[[], float] = random.random) -> float:
    """Random jitter in seconds, uniformly drawn from [0, max_jitter_ms)."""
    return rng() * max_jitter_ms / 1000.0


def unwrap_json_text(text: str) -> str:
    """Strip markdown code fences (```json ... ```) around a JSON payload."""
    raw = (text or "").strip()
    if raw.startswith("```"):
        raw = raw[3:]
        if raw.lower().startswith("json"):
            raw = raw[4:]
        fence_end = raw.rfind("```")
        if fence_end != -1:
            raw = raw[:fence_end]
    return raw.strip()


class BackgroundTaskGroup:
    """Detached, best-effort tasks with their own error channel.

    Tasks spawned here are never awaited by the caller that started them.
    Failures are logged and recorded in ``errors`` instead of propagating.
    """

    def __init__(self, name: str = "background",
                 on_error: Optional[Callable[[str, BaseException], None]] = None):
        self.name = name
        self.on_error = on_error
        self.errors: List[BaseException] = []
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logger.bind(task_group=name)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Schedule ``coro`` as a detached task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.errors.append(error)
        self.logger.warning("Background task failed", task=task.get_name(), error=str(error))
        if self.on_error:
            self.on_error(task.get_name(), error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every task spawned so far to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
