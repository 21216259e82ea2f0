from .azure import AzureClientFactory, LogAnalyticsClient, QueryResult, TelemetryBackend
from .ai import OpenAIModelClient

__all__ = [
    "AzureClientFactory",
    "LogAnalyticsClient",
    "QueryResult",
    "TelemetryBackend",
    "OpenAIModelClient",
]
