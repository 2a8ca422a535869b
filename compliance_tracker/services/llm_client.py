"""Chat-completion client for Azure OpenAI."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from ..core.config import Settings, get_settings


logger = logging.getLogger(__name__)


class LLMServiceError(Exception):
    """Raised when the LLM is unavailable or returns an unusable reply."""


class ChatCompletionClient(ABC):
    """Abstract chat-completion provider."""

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
    ) -> str:
        """Return the assistant's reply text. Raises LLMServiceError on failure."""
        pass


class AzureOpenAIClient(ChatCompletionClient):
    """Calls an Azure OpenAI chat deployment over REST."""

    def __init__(
        self,
        endpoint: str | None,
        api_key: str | None,
        deployment: str = "gpt-5.2-chat",
        api_version: str = "2025-04-01-preview",
        max_tokens: int = 16384,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AzureOpenAIClient":
        settings = settings or get_settings()
        return cls(
            endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,
            deployment=settings.azure_openai_deployment,
            api_version=settings.azure_openai_api_version,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.http_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        """Check if Azure OpenAI is configured."""
        return bool(self.endpoint and self.api_key)

    @property
    def url(self) -> str:
        base = (self.endpoint or "").rstrip("/")
        return (
            f"{base}/openai/deployments/{self.deployment}/chat/completions"
            f"?api-version={self.api_version}"
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
    ) -> str:
        if not self.is_configured:
            raise LLMServiceError("LLM service unavailable: Azure OpenAI is not configured")

        # This deployment only supports the default temperature, so none is sent
        payload = {
            "messages": messages,
            "max_completion_tokens": max_tokens or self._max_tokens,
        }
        headers = {"api-key": self.api_key, "Content-Type": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise LLMServiceError(f"Azure OpenAI request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"Azure OpenAI error: {response.status_code} - {response.text[:200]}")
            raise LLMServiceError(f"Azure OpenAI error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise LLMServiceError("Azure OpenAI returned a non-JSON body") from e

        return self._extract_content(data)

    def _extract_content(self, data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMServiceError(f"Unexpected Azure OpenAI response shape: {e}") from e

        if not isinstance(content, str) or not content.strip():
            raise LLMServiceError("Azure OpenAI returned an empty reply")
        return content
