# src/vm_rightsizing/clients/azure/log_analytics_client.py
"""Azure Log Analytics client for aggregate performance queries."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import structlog
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.monitor.query import LogsQueryStatus
from azure.monitor.query.aio import LogsQueryClient

from ...core.base_client import BaseClient
from ...core.exceptions import ClientConnectionException, TelemetryQueryException

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class QueryResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    partial: bool = False


@runtime_checkable
class TelemetryBackend(Protocol):
    """Anything that can run an aggregate query and return rows as dicts."""

    async def run_query(self, query_text: str, timeout_ms: int) -> QueryResult:
        ...


class LogAnalyticsClient(BaseClient):
    """Runs KQL against a Log Analytics workspace."""

    def __init__(self, credential, workspace_id: str, config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {}, "LogAnalyticsClient")
        self.credential = credential
        self.workspace_id = workspace_id
        self._logs_client: Optional[LogsQueryClient] = None

    async def connect(self) -> None:
        if not self.workspace_id:
            raise ClientConnectionException("LogAnalytics", "Log Analytics workspace ID not provided")
        try:
            self._logs_client = LogsQueryClient(credential=self.credential)
            self._connected = True
            self.logger.info(f"Log Analytics client initialized with workspace: {self.workspace_id}")
        except ClientAuthenticationError as e:
            raise ClientConnectionException("LogAnalytics", f"Authentication failed: {e}")

    async def disconnect(self) -> None:
        if self._logs_client is not None:
            await self._logs_client.close()
            self._logs_client = None
        self._connected = False
        self.logger.info("Log Analytics client disconnected")

    async def run_query(self, query_text: str, timeout_ms: int) -> QueryResult:
        logs_client = self.ensure_connected(self._logs_client, TelemetryQueryException)

        try:
            response = await logs_client.query_workspace(
                workspace_id=self.workspace_id,
                query=query_text,
                timespan=None,  # window comes from the query's ago() filter
                server_timeout=max(1, int(timeout_ms / 1000)),
            )
        except ClientAuthenticationError as e:
            raise TelemetryQueryException(f"Authentication failed: {e}", status_code=401) from e
        except HttpResponseError as e:
            status = e.status_code
            raise TelemetryQueryException(
                f"Log Analytics query failed: {e.message}",
                status_code=status,
                retryable=status in RETRYABLE_STATUS_CODES,
            ) from e
        except (ServiceRequestError, ServiceResponseError) as e:
            raise TelemetryQueryException(f"Log Analytics request failed: {e}", retryable=True) from e

        if response.status == LogsQueryStatus.PARTIAL:
            self.logger.warning("Partial Log Analytics result", error=str(response.partial_error))
            tables = response.partial_data
            partial = True
        elif response.status == LogsQueryStatus.SUCCESS:
            tables = response.tables
            partial = False
        else:
            raise TelemetryQueryException(f"Unexpected query status: {response.status}")

        if not tables:
            return QueryResult(partial=partial)

        table = tables[0]
        columns = [str(c) for c in table.columns]
        rows = [dict(zip(columns, list(row))) for row in table.rows]
        self.logger.debug(f"Query returned {len(rows)} rows")
        return QueryResult(rows=rows, columns=columns, partial=partial)
