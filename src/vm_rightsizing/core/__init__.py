from .exceptions import *
from .base_client import BaseClient
from .cache import TTLCache
from .utils import BackgroundTaskGroup, jitter_seconds, setup_logging, unwrap_json_text

__all__ = [
    "BaseClient",
    "TTLCache",
    "BackgroundTaskGroup",
    "RightsizingException",
    "ClientConnectionException",
    "ConfigurationException",
    "DataValidationException",
    "TelemetryQueryException",
    "ModelResponseException",
    "StorageException",
    "OrchestrationException",
    "JobNotFoundException",
    "JobNotReadyException",
    "PollTimeoutException",
    "setup_logging",
    "jitter_seconds",
    "unwrap_json_text",
]
