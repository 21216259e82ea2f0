# src/vm_rightsizing/clients/azure/client_factory.py
"""Client factory for the telemetry backend and the generative model."""

from typing import Any, Dict, Optional

import structlog
from azure.identity.aio import ClientSecretCredential, DefaultAzureCredential, get_bearer_token_provider

from ...config.settings import AISettings, AzureSettings
from ...core.cache import TTLCache
from ...core.exceptions import ClientConnectionException, ConfigurationException
from ..ai.openai_client import OpenAIModelClient
from .log_analytics_client import LogAnalyticsClient

logger = structlog.get_logger(__name__)

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"


class AzureClientFactory:
    """Creates connected clients, sharing tenant credentials through an explicit TTL cache."""

    def __init__(self, azure: AzureSettings, ai: Optional[AISettings] = None,
                 credential_cache: Optional[TTLCache] = None):
        self.azure = azure
        self.ai = ai or AISettings()
        self.credential_cache = credential_cache if credential_cache is not None else TTLCache(
            ttl_seconds=azure.credential_cache_ttl_seconds, name="credentials"
        )
        self._clients: Dict[str, Any] = {}
        self.logger = logger.bind(factory="azure")

    @property
    def tenant_key(self) -> str:
        return f"tenant:{self.azure.tenant_id or 'default'}"

    def _new_credential(self):
        try:
            if self.azure.client_id and self.azure.client_secret and self.azure.tenant_id:
                self.logger.info("Using service principal authentication", tenant_id=self.azure.tenant_id)
                return ClientSecretCredential(
                    tenant_id=self.azure.tenant_id,
                    client_id=self.azure.client_id,
                    client_secret=self.azure.client_secret,
                )
            self.logger.info("Using default credential chain")
            return DefaultAzureCredential()
        except ValueError as e:
            raise ClientConnectionException("Azure", f"Failed to create credential: {e}")

    def get_credential(self):
        """Credential for the configured tenant, reused until its cache entry expires."""
        return self.credential_cache.get_or_create(self.tenant_key, self._new_credential)

    async def evict_credential(self) -> None:
        credential = self.credential_cache.evict(self.tenant_key)
        if credential is not None:
            await credential.close()

    async def create_log_analytics_client(self) -> LogAnalyticsClient:
        if not self.azure.log_analytics_workspace_id:
            raise ConfigurationException("AZURE_LOG_ANALYTICS_WORKSPACE_ID is required")
        client = LogAnalyticsClient(
            credential=self.get_credential(),
            workspace_id=self.azure.log_analytics_workspace_id,
            config=self.azure.model_dump(exclude={"client_secret"}),
        )
        await client.connect()
        self._clients["log_analytics"] = client
        return client

    async def create_model_client(self) -> Optional[OpenAIModelClient]:
        """Model client, or None when AI is disabled or not configured (fallback-only mode)."""
        if not self.ai.enabled:
            self.logger.info("AI recommendations disabled")
            return None
        if not self.ai.endpoint and not self.ai.api_key:
            self.logger.warning("No model endpoint or API key configured - using fallback recommendations")
            return None

        token_provider = None
        if self.ai.endpoint and not self.ai.api_key:
            token_provider = get_bearer_token_provider(self.get_credential(), COGNITIVE_SERVICES_SCOPE)

        client = OpenAIModelClient(self.ai.model_dump(), token_provider=token_provider)
        await client.connect()
        self._clients["model"] = client
        return client

    async def disconnect_all(self) -> None:
        for name, client in self._clients.items():
            try:
                await client.disconnect()
                self.logger.info(f"Disconnected {name} client successfully")
            except Exception as e:
                self.logger.warning(f"Error disconnecting {name} client: {e}")
        self._clients = {}

        await self.evict_credential()
        self.logger.info("Azure client factory cleanup completed")
