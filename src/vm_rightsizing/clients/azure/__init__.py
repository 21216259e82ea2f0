from .log_analytics_client import LogAnalyticsClient, QueryResult, TelemetryBackend
from .client_factory import AzureClientFactory

__all__ = ["LogAnalyticsClient", "QueryResult", "TelemetryBackend", "AzureClientFactory"]
