"""Tests for the Azure OpenAI adapter with a mocked SDK client."""

import json
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from roadcall.adapters.providers.azure_openai import AzureOpenAIProvider
from roadcall.core.errors import ConfigError, ParseError, ProviderError
from roadcall.core.models import ChatMessage, DiagnosisRequest, TruckModel


def _response(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def mock_openai_client():
    """Create a mock Azure OpenAI client."""
    mock = MagicMock()
    # The SDK client is synchronous, not async
    mock.chat.completions.create = MagicMock()
    return mock


@pytest.fixture
def adapter(mock_openai_client) -> AzureOpenAIProvider:
    return AzureOpenAIProvider(
        endpoint="https://fleet.openai.azure.com",
        api_key="test-key-12345",
        deployment="gpt-4o",
        client=mock_openai_client,
    )


@pytest.fixture
def request_() -> DiagnosisRequest:
    return DiagnosisRequest(
        truck=TruckModel(make="Mack", model="Pinnacle", year=2017, engine="Mack MP8"),
        symptoms=("Air pressure drops overnight",),
    )


@pytest.mark.asyncio
async def test_diagnose_uses_json_mode(adapter, mock_openai_client, request_) -> None:
    mock_openai_client.chat.completions.create.return_value = _response(
        json.dumps(
            {
                "diagnosis": "Leaking air dryer purge valve",
                "possibleCauses": ["Purge valve stuck open"],
                "recommendations": ["Soap-test the air dryer"],
                "confidence": 0.75,
            }
        )
    )

    result = await adapter.diagnose(request_)

    assert result.provider == "azure-openai"
    assert result.possible_causes == ("Purge valve stuck open",)
    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 4000


@pytest.mark.asyncio
async def test_chat_has_no_json_mode(adapter, mock_openai_client) -> None:
    mock_openai_client.chat.completions.create.return_value = _response("Check the gladhands.")

    reply = await adapter.chat([ChatMessage(role="user", content="Trailer brakes dragging")])

    assert reply == "Check the gladhands."
    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert "response_format" not in kwargs


@pytest.mark.asyncio
async def test_status_error_maps_to_provider_error(adapter, mock_openai_client, request_) -> None:
    request = httpx.Request("POST", "https://fleet.openai.azure.com/openai/deployments/gpt-4o")
    response = httpx.Response(500, request=request)
    mock_openai_client.chat.completions.create.side_effect = openai.InternalServerError(
        "server error", response=response, body=None
    )

    with pytest.raises(ProviderError, match="HTTP 500"):
        await adapter.diagnose(request_)


@pytest.mark.asyncio
async def test_connection_error_maps_to_provider_error(adapter, mock_openai_client, request_) -> None:
    request = httpx.Request("POST", "https://fleet.openai.azure.com")
    mock_openai_client.chat.completions.create.side_effect = openai.APIConnectionError(
        request=request
    )

    with pytest.raises(ProviderError, match="request failed"):
        await adapter.diagnose(request_)


@pytest.mark.asyncio
async def test_missing_configuration_is_config_error(request_) -> None:
    adapter = AzureOpenAIProvider(endpoint=None, api_key=None)

    assert adapter.missing_configuration() == ["AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_KEY"]
    with pytest.raises(ConfigError):
        await adapter.diagnose(request_)


@pytest.mark.asyncio
async def test_probe_never_raises(adapter, mock_openai_client) -> None:
    mock_openai_client.chat.completions.create.side_effect = openai.OpenAIError("boom")

    health = await adapter.probe()

    assert health.provider == "azure-openai"
    assert not health.healthy
    assert "boom" in (health.error or "")


def _chunk(content: str | None) -> MagicMock:
    chunk = MagicMock()
    chunk.choices = [MagicMock()]
    chunk.choices[0].delta.content = content
    return chunk


@pytest.mark.asyncio
async def test_chat_stream_yields_content_deltas(adapter, mock_openai_client) -> None:
    no_choices = MagicMock()
    no_choices.choices = []
    mock_openai_client.chat.completions.create.return_value = [
        no_choices,
        _chunk("Bleed "),
        _chunk(None),
        _chunk("the tanks."),
    ]

    chunks = [c async for c in adapter.chat_stream([ChatMessage(role="user", content="Wet air")])]

    assert chunks == ["Bleed ", "the tanks."]
    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["messages"][0]["role"] == "system"


@pytest.mark.asyncio
async def test_chat_stream_maps_sdk_errors(adapter, mock_openai_client) -> None:
    mock_openai_client.chat.completions.create.side_effect = openai.OpenAIError("reset")

    with pytest.raises(ProviderError, match="request failed"):
        async for _ in adapter.chat_stream([ChatMessage(role="user", content="Hi")]):
            pass


@pytest.mark.asyncio
async def test_chat_stream_requires_configuration() -> None:
    adapter = AzureOpenAIProvider(endpoint=None, api_key="k")

    with pytest.raises(ConfigError):
        async for _ in adapter.chat_stream([ChatMessage(role="user", content="Hi")]):
            pass


@pytest.mark.asyncio
async def test_quick_tip_uses_json_mode(adapter, mock_openai_client) -> None:
    mock_openai_client.chat.completions.create.return_value = _response(
        json.dumps({"tip": "Check the air dryer purge valve", "severity": "HIGH"})
    )

    tip = await adapter.quick_tip("Air pressure drops overnight")

    assert tip.tip == "Check the air dryer purge valve"
    assert tip.severity == "high"
    assert tip.provider == "azure-openai"
    kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 150
    assert "Air pressure drops overnight" in kwargs["messages"][0]["content"]


@pytest.mark.asyncio
async def test_quick_tip_empty_reply_is_parse_error(adapter, mock_openai_client) -> None:
    mock_openai_client.chat.completions.create.return_value = _response(None)

    with pytest.raises(ParseError):
        await adapter.quick_tip("Air leak")
