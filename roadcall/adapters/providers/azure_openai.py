"""Azure OpenAI provider adapter.

Implements ProviderPort with a single chat completion against an Azure
OpenAI deployment, using JSON mode for diagnoses and quick tips. Chat replies
can also be streamed. The openai SDK client is synchronous, so every call,
and every streamed chunk, runs in the default executor.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any

import openai

from roadcall.core.errors import ConfigError, ProviderError
from roadcall.core.models import (
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    ProviderHealth,
    QuickTip,
)
from roadcall.core.ports import ProviderPort

from .normalize import (
    DegradedTemplate,
    build_chat_messages,
    build_diagnosis_messages,
    build_quick_tip_messages,
    parse_diagnosis,
    parse_quick_tip,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-10-21"
DEFAULT_DEPLOYMENT = "gpt-4o"

DEGRADED = DegradedTemplate(confidence=0.7, estimated_cost="$200-800")


class AzureOpenAIProvider(ProviderPort):
    """Single-completion adapter for an Azure OpenAI deployment."""

    provider_id = "azure-openai"

    def __init__(
        self,
        endpoint: str | None,
        api_key: str | None,
        deployment: str = DEFAULT_DEPLOYMENT,
        api_version: str = DEFAULT_API_VERSION,
        max_retries: int = 3,
        request_timeout: float = 60.0,
        client: Any | None = None,
    ):
        """Initialize Azure OpenAI adapter.

        Args:
            endpoint: Resource endpoint, e.g. https://<name>.openai.azure.com
            api_key: Resource API key.
            deployment: Deployment name used as the model id.
            api_version: Azure OpenAI REST API version.
            max_retries: SDK-level retries on transient failures.
            request_timeout: SDK request timeout in seconds.
            client: Optional pre-built client, mainly for tests.
        """
        self.endpoint = endpoint
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self.max_retries = max_retries
        self.request_timeout = request_timeout

        # Built on first use so an unconfigured provider never touches the SDK
        self._client: Any | None = client

    def _get_client(self) -> Any:
        """Get or initialize the Azure OpenAI synchronous client."""
        if self._client is None:
            self._client = openai.AzureOpenAI(
                azure_endpoint=self.endpoint,
                api_key=self.api_key,
                api_version=self.api_version,
                max_retries=self.max_retries,
                timeout=self.request_timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()

    def missing_configuration(self) -> list[str]:
        missing = []
        if not self.endpoint:
            missing.append("AZURE_OPENAI_ENDPOINT")
        if not self.api_key:
            missing.append("AZURE_OPENAI_KEY")
        if not self.deployment:
            missing.append("AZURE_OPENAI_DEPLOYMENT")
        return missing

    async def diagnose(self, request: DiagnosisRequest) -> DiagnosisResult:
        content = await self._complete(
            build_diagnosis_messages(request),
            max_tokens=4000,
            temperature=0.3,
            response_format={"type": "json_object"},
        )
        return parse_diagnosis(content, request, self.provider_id, DEGRADED)

    async def chat(self, messages: list[ChatMessage]) -> str:
        content = await self._complete(
            build_chat_messages(messages), max_tokens=2000, temperature=0.1
        )
        if not content or not content.strip():
            raise ProviderError(self.provider_id, "empty chat reply")
        return content

    async def chat_stream(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Stream the reply with stream=True, yielding each content delta.

        The SDK stream is a blocking iterator, so each chunk is pulled in
        the executor.

        Raises:
            ConfigError: If endpoint, key, or deployment is missing.
            ProviderError: If the SDK raises while opening or reading.
        """
        client = self._require_client()
        loop = asyncio.get_running_loop()
        kwargs: dict[str, Any] = {
            "model": self.deployment,
            "messages": build_chat_messages(messages),
            "max_tokens": 2000,
            "temperature": 0.1,
            "stream": True,
        }

        try:
            stream = await loop.run_in_executor(
                None, lambda: client.chat.completions.create(**kwargs)
            )
        except openai.OpenAIError as e:
            raise self._provider_error(e) from e

        chunks = iter(stream)
        try:
            while True:
                try:
                    chunk = await loop.run_in_executor(None, next, chunks, None)
                except openai.OpenAIError as e:
                    raise self._provider_error(e) from e
                if chunk is None:
                    break
                text = _delta_text(chunk)
                if text:
                    yield text
        finally:
            if hasattr(stream, "close"):
                stream.close()

    async def quick_tip(self, symptom: str) -> QuickTip:
        content = await self._complete(
            build_quick_tip_messages(symptom),
            max_tokens=150,
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        return parse_quick_tip(content, self.provider_id)

    async def probe(self) -> ProviderHealth:
        """Request a tiny completion and time it."""
        started = time.perf_counter()
        try:
            await self._complete(
                [{"role": "user", "content": "Hello"}], max_tokens=10, temperature=0.0
            )
        except Exception as e:
            return ProviderHealth(
                provider=self.provider_id,
                healthy=False,
                latency_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
                checked_at=datetime.now(timezone.utc),
            )
        return ProviderHealth(
            provider=self.provider_id,
            healthy=True,
            latency_ms=(time.perf_counter() - started) * 1000,
            checked_at=datetime.now(timezone.utc),
        )

    async def _complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
        response_format: dict[str, str] | None = None,
    ) -> str | None:
        """Run one chat completion in the executor.

        Raises:
            ConfigError: If endpoint, key, or deployment is missing.
            ProviderError: If the SDK raises (after its own retries).
        """
        client = self._require_client()
        loop = asyncio.get_running_loop()

        kwargs: dict[str, Any] = {
            "model": self.deployment,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format is not None:
            kwargs["response_format"] = response_format

        def _call_azure_openai() -> str | None:
            """Synchronous wrapper for the Azure OpenAI API call."""
            response = client.chat.completions.create(**kwargs)
            if response.choices and response.choices[0].message:
                return response.choices[0].message.content
            return None

        try:
            return await loop.run_in_executor(None, _call_azure_openai)
        except openai.OpenAIError as e:
            raise self._provider_error(e) from e

    def _require_client(self) -> Any:
        missing = self.missing_configuration()
        if missing:
            raise ConfigError(self.provider_id, missing)
        return self._get_client()

    def _provider_error(self, e: openai.OpenAIError) -> ProviderError:
        if isinstance(e, openai.APIStatusError):
            return ProviderError(self.provider_id, f"HTTP {e.status_code}: {e.message}")
        return ProviderError(self.provider_id, f"request failed: {e}")


def _delta_text(chunk: Any) -> str | None:
    """Return the content delta of one streamed chunk, if it carries any."""
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return None
    content = getattr(getattr(choices[0], "delta", None), "content", None)
    return content if isinstance(content, str) else None
