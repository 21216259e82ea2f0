# src/vm_rightsizing/clients/ai/openai_client.py
"""Azure OpenAI / OpenAI chat completion client."""

from typing import Any, Callable, Dict, Optional

import structlog
from openai import APIStatusError, AsyncAzureOpenAI, AsyncOpenAI

from ...core.base_client import BaseClient
from ...core.exceptions import ClientConnectionException, ConfigurationException, ModelResponseException

logger = structlog.get_logger(__name__)


class OpenAIModelClient(BaseClient):
    """Generative model backed by chat completions.

    Uses Azure OpenAI when an endpoint is configured (API key or Entra ID
    token provider), the public OpenAI API otherwise. Retries are owned by
    the caller's executor, so the SDK's own retries are disabled.
    """

    def __init__(self, config: Dict[str, Any], token_provider: Optional[Callable[..., Any]] = None):
        super().__init__(config, "OpenAIModelClient")
        self.endpoint = config.get("endpoint")
        self.api_key = config.get("api_key")
        self.deployment = config.get("deployment", "gpt-4o-mini")
        self.api_version = config.get("api_version", "2024-06-01")
        self.timeout_seconds = config.get("timeout_seconds", 60.0)
        self.token_provider = token_provider
        self._client = None

    async def connect(self) -> None:
        if self.endpoint:
            if not self.api_key and self.token_provider is None:
                raise ConfigurationException("Azure OpenAI endpoint requires an api_key or a token provider")
            kwargs: Dict[str, Any] = {
                "azure_endpoint": self.endpoint,
                "api_version": self.api_version,
                "max_retries": 0,
                "timeout": self.timeout_seconds,
            }
            if self.api_key:
                kwargs["api_key"] = self.api_key
            else:
                kwargs["azure_ad_token_provider"] = self.token_provider
            try:
                self._client = AsyncAzureOpenAI(**kwargs)
            except Exception as e:
                raise ClientConnectionException("AzureOpenAI", str(e))
            self.logger.info(f"Azure OpenAI client initialized for deployment: {self.deployment}")
        else:
            if not self.api_key:
                raise ConfigurationException("OpenAI api_key is required when no Azure endpoint is set")
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0, timeout=self.timeout_seconds)
            self.logger.info(f"OpenAI client initialized for model: {self.deployment}")
        self._connected = True

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
        self._connected = False
        self.logger.info("Model client disconnected")

    async def complete(self, system_prompt: str, user_prompt: str, max_tokens: int,
                       json_mode: bool = False) -> str:
        client = self.ensure_connected(self._client, ModelResponseException)

        request: Dict[str, Any] = {
            "model": self.deployment,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        try:
            response = await client.chat.completions.create(**request)
        except APIStatusError as e:
            # rate limits stay retryable
            if e.status_code == 429:
                raise
            raise ModelResponseException(
                f"Model request rejected: {e.message}", {"status_code": e.status_code}
            ) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ModelResponseException("No response from model")
        return content
