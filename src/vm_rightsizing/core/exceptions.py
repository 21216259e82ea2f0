"""Custom exceptions for the right-sizing pipeline."""

from typing import Optional, Dict, Any


class RightsizingException(Exception):
    """Base exception for the right-sizing pipeline."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ClientConnectionException(RightsizingException):
    """Raised when client connections fail."""

    def __init__(self, client_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.client_type = client_type
        super().__init__(f"{client_type} connection failed: {message}", details)


class DataValidationException(RightsizingException):
    """Raised when input validation fails, before any batch work begins."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Validation failed for {field}: {message}")


class ConfigurationException(RightsizingException):
    """Raised when configuration is invalid."""
    pass


class TelemetryQueryException(RightsizingException):
    """Raised when a telemetry backend query fails.

    ``retryable`` separates transient failures (rate limiting, timeouts)
    from permanent ones (auth failures, malformed queries).
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message, details)


class ModelResponseException(RightsizingException):
    """Raised when a generative model call fails or returns an invalid shape."""
    pass


class StorageException(RightsizingException):
    """Raised when job storage operations fail."""
    pass


class OrchestrationException(RightsizingException):
    """Raised when job orchestration fails."""
    pass


class JobNotFoundException(RightsizingException):
    """Raised when a job id is unknown to the store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobNotReadyException(RightsizingException):
    """Raised when results are requested for a job that has not completed."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status}. Results only available when COMPLETED.")


class PollTimeoutException(RightsizingException):
    """Raised client-side when polling exceeds its maximum wait."""

    def __init__(self, job_id: str, waited_seconds: float, last_status: Optional[str] = None):
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        self.last_status = last_status
        super().__init__(
            f"Gave up waiting for job {job_id} after {waited_seconds:.0f}s (last status: {last_status})"
        )
