# config/settings.py
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from enum import Enum
from dotenv import load_dotenv

# Load .env file explicitly
load_dotenv()


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageBackend(str, Enum):
    MEMORY = "memory"
    FILE = "file"


class AzureSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AZURE_")

    subscription_id: Optional[str] = Field(None, description="Default subscription to filter telemetry by")
    tenant_id: Optional[str] = Field(None, description="Azure tenant ID")
    client_id: Optional[str] = Field(None, description="Azure client ID for service principal")
    client_secret: Optional[str] = Field(None, description="Azure client secret")
    log_analytics_workspace_id: Optional[str] = Field(None, description="Log Analytics workspace ID")
    credential_cache_ttl_seconds: int = Field(3600, description="Lifetime of cached tenant credentials")


class CollectionSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="COLLECTION_")

    max_per_batch: int = Field(30, ge=1, description="VMs per aggregate telemetry query")
    max_parallel_batches: int = Field(3, ge=1, description="Batches dispatched concurrently per group")
    group_delay_ms: int = Field(2000, ge=0, description="Fixed delay between parallel groups")
    jitter_ms: int = Field(1000, ge=0, description="Maximum random jitter added to delays")
    query_timeout_ms: int = Field(180000, ge=1000, description="Per-batch query timeout")
    scan_window_days: int = Field(30, ge=1, description="Default scan window")
    max_window_days: int = Field(90, ge=1, description="Largest scan window accepted")
    retry_attempts: int = Field(3, ge=1, description="Maximum attempts per telemetry batch")
    retry_base_delay_ms: int = Field(5000, ge=0, description="Backoff base delay for telemetry")
    retry_cap_delay_ms: int = Field(60000, ge=0, description="Backoff cap for telemetry")


class AISettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AI_")

    enabled: bool = Field(True, description="Request AI explanations when a model is configured")
    endpoint: Optional[str] = Field(None, description="Azure OpenAI endpoint")
    api_key: Optional[str] = Field(None, description="Azure OpenAI or OpenAI API key")
    deployment: str = Field("gpt-4o-mini", description="Deployment or model name")
    api_version: str = Field("2024-06-01", description="Azure OpenAI API version")
    max_workers: int = Field(5, ge=1, description="Concurrent per-VM model calls")
    max_recommendations: int = Field(50, ge=0, description="Cap on VMs sent to the model")
    top_n_per_category: int = Field(25, ge=0, description="Top underutilized and overutilized VMs considered")
    max_tokens: int = Field(500, ge=1, description="Token budget per VM recommendation")
    summary_max_tokens: int = Field(300, ge=1, description="Token budget for the executive summary")
    retry_attempts: int = Field(5, ge=1, description="Maximum attempts per model call")
    retry_base_delay_ms: int = Field(1000, ge=0, description="Backoff base delay for model calls")
    retry_cap_delay_ms: int = Field(60000, ge=0, description="Backoff cap for model calls")


class JobSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JOBS_")

    storage_backend: StorageBackend = Field(StorageBackend.MEMORY, description="Job store backend")
    base_path: str = Field("./data/jobs", description="Directory for the file job store")
    retention_hours: int = Field(24, ge=1, description="Completed jobs are purged after this window")
    poll_interval_seconds: float = Field(5.0, gt=0, description="Client poll interval")
    max_wait_seconds: float = Field(600.0, gt=0, description="Client-side poll timeout")
    list_limit: int = Field(50, ge=1, description="Maximum jobs returned by list_jobs")
    event_history_jobs: int = Field(100, ge=1, description="Finished jobs whose event history is kept")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    debug: bool = Field(False, description="Debug mode")
    log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
    log_config_path: Optional[str] = Field(None, description="YAML logging config; enables JSON logs")

    azure: AzureSettings = Field(default_factory=lambda: AzureSettings())
    collection: CollectionSettings = Field(default_factory=lambda: CollectionSettings())
    ai: AISettings = Field(default_factory=lambda: AISettings())
    jobs: JobSettings = Field(default_factory=lambda: JobSettings())

    @field_validator('log_level', mode='before')
    @classmethod
    def validate_log_level(cls, v):
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @classmethod
    def create_from_env(cls) -> "Settings":
        """Create settings instance from environment variables."""
        return cls()
