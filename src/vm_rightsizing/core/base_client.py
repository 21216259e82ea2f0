"""Connection lifecycle shared by the telemetry and generative model clients."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

import structlog

from .exceptions import RightsizingException

logger = structlog.get_logger(__name__)


class BaseClient(ABC):
    """Client with an explicit connect/disconnect lifecycle.

    Usable as an async context manager; calls made before ``connect`` fail
    with the client's own error type through ``ensure_connected``.
    """

    def __init__(self, config: Dict[str, Any], name: Optional[str] = None):
        self.config = config
        self.name = name or self.__class__.__name__
        self._connected = False
        self.logger = logger.bind(client=self.name)

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @property
    def is_connected(self) -> bool:
        return self._connected

    def ensure_connected(self, handle: Any,
                         error_cls: Type[RightsizingException] = RightsizingException) -> Any:
        """Return the underlying SDK handle, or raise ``error_cls`` when not connected."""
        if not self._connected or handle is None:
            raise error_cls(f"{self.name} not connected")
        return handle

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
