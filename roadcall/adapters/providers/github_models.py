"""GitHub Models provider adapter.

Implements ProviderPort by calling the GitHub Models inference REST API,
an OpenAI-compatible chat completions endpoint authenticated with a
GitHub token.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

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
    completion_text,
    parse_diagnosis,
    parse_quick_tip,
)

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://models.inference.ai.azure.com"
DEFAULT_MODEL = "gpt-4o-mini"
GITHUB_API_VERSION = "2022-11-28"

DEGRADED = DegradedTemplate(confidence=0.7, estimated_cost="$200-800")


class GitHubModelsProvider(ProviderPort):
    """REST inference adapter for GitHub Models."""

    provider_id = "github-models"

    def __init__(
        self,
        token: str | None,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        request_timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize GitHub Models adapter.

        Args:
            token: GitHub token with access to GitHub Models.
            endpoint: Inference API base URL.
            model: Model id (e.g., 'gpt-4o', 'gpt-4o-mini').
            request_timeout: httpx timeout in seconds. The orchestrator's
                per-attempt timeout normally fires first.
            client: Optional pre-built client, mainly for tests.
        """
        self.token = token
        self.endpoint = (endpoint or "").rstrip("/")
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=request_timeout)

    async def __aenter__(self) -> "GitHubModelsProvider":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the httpx client and clean up resources."""
        await self.client.aclose()

    def missing_configuration(self) -> list[str]:
        missing = []
        if not self.token:
            missing.append("GITHUB_TOKEN")
        if not self.endpoint:
            missing.append("GITHUB_MODELS_ENDPOINT")
        return missing

    async def diagnose(self, request: DiagnosisRequest) -> DiagnosisResult:
        content = await self._complete(
            build_diagnosis_messages(request), max_tokens=2000, temperature=0.3
        )
        return parse_diagnosis(content, request, self.provider_id, DEGRADED)

    async def chat(self, messages: list[ChatMessage]) -> str:
        content = await self._complete(
            build_chat_messages(messages), max_tokens=1000, temperature=0.7
        )
        if not content or not content.strip():
            raise ProviderError(self.provider_id, "empty chat reply")
        return content

    async def quick_tip(self, symptom: str) -> QuickTip:
        content = await self._complete(
            build_quick_tip_messages(symptom), max_tokens=150, temperature=0.2
        )
        return parse_quick_tip(content, self.provider_id)

    async def probe(self) -> ProviderHealth:
        """Send a one-word completion and time it."""
        started = time.perf_counter()
        try:
            await self._complete(
                [{"role": "user", "content": "ping"}], max_tokens=5, temperature=0.0
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
    ) -> str | None:
        """POST a chat completion and return the reply content.

        Raises:
            ConfigError: If the token or endpoint is missing.
            ProviderError: On transport errors, non-2xx status, or a body
                that is not JSON.
        """
        missing = self.missing_configuration()
        if missing:
            raise ConfigError(self.provider_id, missing)

        try:
            response = await self.client.post(
                f"{self.endpoint}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                    "X-GitHub-Api-Version": GITHUB_API_VERSION,
                },
                json={
                    "model": self.model,
                    "messages": messages,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                self.provider_id,
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_id, f"request failed: {e!r}") from e

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(self.provider_id, "response body was not JSON") from e

        return completion_text(payload)
