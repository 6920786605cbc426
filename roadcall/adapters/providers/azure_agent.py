"""Azure AI Foundry agent provider adapter.

Implements ProviderPort by running a conversation turn against a
preconfigured Azure AI Foundry agent through the Agents REST API:

1. Post the user message to the configured thread
2. Create a run of the agent on that thread
3. Poll the run until it reaches a terminal status
4. List the thread messages and take the agent's reply

Authentication is either a static bearer token or the Azure AD
client-credentials flow (tenant id, client id, client secret).
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from roadcall.core.errors import ConfigError, ProviderError, ProviderTimeoutError
from roadcall.core.models import (
    ChatMessage,
    DiagnosisRequest,
    DiagnosisResult,
    ProviderHealth,
    QuickTip,
)
from roadcall.core.ports import ProviderPort

from .normalize import (
    SYSTEM_PROMPT,
    DegradedTemplate,
    build_diagnosis_prompt,
    build_quick_tip_prompt,
    parse_diagnosis,
    parse_quick_tip,
)

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v1"
TOKEN_SCOPE = "https://ai.azure.com/.default"
TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
# Refresh the AD token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 60.0

PENDING_STATUSES = frozenset({"queued", "in_progress", "requires_action"})
FAILED_STATUSES = frozenset({"failed", "cancelled", "expired"})

DEGRADED = DegradedTemplate(
    confidence=0.6,
    recommendation="Please consult a professional technician for detailed analysis",
)


class AzureAgentProvider(ProviderPort):
    """Agent-conversation adapter for Azure AI Foundry."""

    provider_id = "azure-ai-foundry"

    def __init__(
        self,
        endpoint: str | None,
        agent_id: str | None,
        thread_id: str | None,
        api_key: str | None = None,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_version: str = DEFAULT_API_VERSION,
        poll_interval_ms: int = 1000,
        poll_timeout_ms: int = 60000,
        request_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Azure AI Foundry agent adapter.

        Args:
            endpoint: Project endpoint (AZURE_PROJECTS_ENDPOINT).
            agent_id: Id of the preconfigured agent.
            thread_id: Id of the conversation thread to post into.
            api_key: Static bearer token. Takes precedence over the
                client-credentials settings when both are present.
            tenant_id: Azure AD tenant for the client-credentials flow.
            client_id: Service principal application id.
            client_secret: Service principal secret.
            api_version: Agents REST API version.
            poll_interval_ms: Delay between run status polls.
            poll_timeout_ms: Give up polling after this long.
            request_timeout: httpx timeout in seconds per request.
            client: Optional pre-built client, mainly for tests.
        """
        self.endpoint = (endpoint or "").rstrip("/")
        self.agent_id = agent_id
        self.thread_id = thread_id
        self.api_key = api_key
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_version = api_version
        self.poll_interval_ms = poll_interval_ms
        self.poll_timeout_ms = poll_timeout_ms
        self.client = client or httpx.AsyncClient(timeout=request_timeout)

        self._token: str | None = None
        self._token_expires_at = 0.0

    async def close(self) -> None:
        """Close the httpx client and clean up resources."""
        await self.client.aclose()

    def missing_configuration(self) -> list[str]:
        missing = []
        if not self.endpoint:
            missing.append("AZURE_PROJECTS_ENDPOINT")
        if not self.agent_id:
            missing.append("AZURE_AGENT_ID")
        if not self.thread_id:
            missing.append("AZURE_THREAD_ID")
        if not self.api_key and not self._has_client_credentials():
            missing.append("AZURE_AGENT_API_KEY or AZURE_TENANT_ID/AZURE_CLIENT_ID/AZURE_CLIENT_SECRET")
        return missing

    def _has_client_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    async def diagnose(self, request: DiagnosisRequest) -> DiagnosisResult:
        prompt = f"{SYSTEM_PROMPT}\n\n{build_diagnosis_prompt(request)}"
        reply = await self.run_conversation(prompt)
        return parse_diagnosis(reply, request, self.provider_id, DEGRADED)

    async def chat(self, messages: list[ChatMessage]) -> str:
        """Send the latest user message; the agent thread holds the history."""
        user_messages = [m for m in messages if m.role == "user"]
        latest = user_messages[-1] if user_messages else messages[-1]
        reply = await self.run_conversation(latest.content)
        if not reply or not reply.strip():
            raise ProviderError(self.provider_id, "empty chat reply")
        return reply

    async def quick_tip(self, symptom: str) -> QuickTip:
        reply = await self.run_conversation(build_quick_tip_prompt(symptom))
        return parse_quick_tip(reply, self.provider_id)

    async def probe(self) -> ProviderHealth:
        """Fetch the agent definition and time it.

        Cheaper than a conversation turn and exercises auth plus endpoint.
        """
        started = time.perf_counter()
        try:
            missing = self.missing_configuration()
            if missing:
                raise ConfigError(self.provider_id, missing)
            await self._request("GET", f"/assistants/{self.agent_id}")
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

    async def run_conversation(self, user_message: str) -> str | None:
        """Run one agent turn and return the agent's reply text.

        Raises:
            ConfigError: If endpoint, ids, or credentials are missing.
            ProviderError: If a request fails or the run ends unsuccessfully.
            ProviderTimeoutError: If the run does not finish within
                poll_timeout_ms.
        """
        missing = self.missing_configuration()
        if missing:
            raise ConfigError(self.provider_id, missing)

        thread = f"/threads/{self.thread_id}"
        await self._request(
            "POST", f"{thread}/messages", json={"role": "user", "content": user_message}
        )
        run = await self._request(
            "POST", f"{thread}/runs", json={"assistant_id": self.agent_id}
        )
        run_id = run.get("id")
        if not run_id:
            raise ProviderError(self.provider_id, "run creation returned no id")

        run = await self._wait_for_run(thread, run_id, run)

        listing = await self._request(
            "GET", f"{thread}/messages", params={"order": "desc", "limit": "20"}
        )
        return _latest_agent_text(listing, run_id)

    async def _wait_for_run(
        self, thread: str, run_id: str, run: dict[str, Any]
    ) -> dict[str, Any]:
        """Poll the run until it leaves the pending statuses."""
        deadline = time.monotonic() + self.poll_timeout_ms / 1000
        status = run.get("status", "queued")

        while status in PENDING_STATUSES:
            if time.monotonic() >= deadline:
                raise ProviderTimeoutError(self.poll_timeout_ms, self.provider_id)
            await asyncio.sleep(self.poll_interval_ms / 1000)
            run = await self._request("GET", f"{thread}/runs/{run_id}")
            status = run.get("status", "")

        if status in FAILED_STATUSES:
            last_error = run.get("last_error") or {}
            detail = last_error.get("message") if isinstance(last_error, dict) else last_error
            raise ProviderError(
                self.provider_id, f"run {status}: {detail or 'no error detail'}"
            )
        if status != "completed":
            raise ProviderError(self.provider_id, f"run ended with unexpected status '{status}'")
        logger.debug(f"Agent run {run_id} completed")
        return run

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        token = await self._get_token()
        query = {"api-version": self.api_version}
        if params:
            query.update(params)

        try:
            response = await self.client.request(
                method,
                f"{self.endpoint}{path}",
                headers={"Authorization": f"Bearer {token}"},
                json=json,
                params=query,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                self.provider_id,
                f"{method} {path} returned HTTP {e.response.status_code}: {e.response.text[:200]}",
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_id, f"{method} {path} failed: {e!r}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(self.provider_id, f"{method} {path} returned non-JSON body") from e
        if not isinstance(body, dict):
            raise ProviderError(self.provider_id, f"{method} {path} returned unexpected body")
        return body

    async def _get_token(self) -> str:
        """Return a bearer token, refreshing the AD token when near expiry."""
        if self.api_key:
            return self.api_key

        if self._token and time.monotonic() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
            return self._token

        try:
            response = await self.client.post(
                TOKEN_URL.format(tenant=self.tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": TOKEN_SCOPE,
                },
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                self.provider_id, f"token request returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(self.provider_id, f"token request failed: {e!r}") from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise ProviderError(self.provider_id, "token response had no access_token")

        self._token = token
        self._token_expires_at = time.monotonic() + float(payload.get("expires_in", 3600))
        logger.debug("Acquired Azure AD token for agent requests")
        return token


def _latest_agent_text(listing: dict[str, Any], run_id: str) -> str | None:
    """Text of the newest assistant message, preferring ones from run_id.

    Expects the listing in descending order.
    """
    messages = [m for m in listing.get("data", []) if isinstance(m, dict)]
    replies = [m for m in messages if m.get("role") == "assistant"]
    from_run = [m for m in replies if m.get("run_id") == run_id]

    for message in from_run or replies:
        for part in message.get("content", []):
            if isinstance(part, dict) and part.get("type") == "text":
                text = part.get("text") or {}
                value = text.get("value") if isinstance(text, dict) else None
                if isinstance(value, str):
                    return value
    return None
