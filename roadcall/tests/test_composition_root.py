"""Integration tests for the composition root.

These tests verify that the bootstrap process correctly loads configuration,
instantiates adapters, initializes core services, and wires dependencies.
"""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from roadcall.adapters.providers.azure_agent import AzureAgentProvider
from roadcall.adapters.providers.azure_openai import AzureOpenAIProvider
from roadcall.adapters.providers.github_models import GitHubModelsProvider
from roadcall.config import Settings, load_settings
from roadcall.core.models import PROVIDER_ORDER, DiagnosisRequest, TruckModel
from roadcall.main import build_application, build_providers, bootstrap
from roadcall.tests.fakes import FakeProviderPort


class TestConfigurationLoading:
    """Test configuration loading and validation."""

    def test_load_settings_with_defaults(self) -> None:
        """Load settings with default values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.primary_provider == "azure-ai-foundry"
        assert settings.fallback_enabled is True
        assert settings.provider_timeout_ms == 30000
        assert settings.cache_max_size == 100
        assert settings.cache_ttl_seconds == 1800
        assert settings.offline_cache_ttl_seconds == 300
        assert settings.run_mode == "cli"
        assert settings.log_level == "INFO"

    def test_load_settings_from_env(self) -> None:
        """Load settings from environment variables."""
        with patch.dict(
            os.environ,
            {
                "PRIMARY_PROVIDER": "github-models",
                "FALLBACK_ENABLED": "false",
                "PROVIDER_TIMEOUT_MS": "5000",
                "AZURE_OPENAI_ENDPOINT": "https://fleet.openai.azure.com/",
                "RUN_MODE": "probe",
            },
        ):
            settings = load_settings()
            assert settings.primary_provider == "github-models"
            assert settings.fallback_enabled is False
            assert settings.provider_timeout_ms == 5000
            assert settings.azure_openai_endpoint == "https://fleet.openai.azure.com"
            assert settings.run_mode == "probe"

    def test_load_settings_from_env_file(self) -> None:
        """Load settings from an explicit .env file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            env_file = Path(tmpdir) / ".env"
            env_file.write_text("CACHE_MAX_SIZE=7\nLOG_LEVEL=DEBUG\n")
            settings = load_settings(str(env_file))
        assert settings.cache_max_size == 7
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "name, value",
        [
            ("PROVIDER_TIMEOUT_MS", "0"),
            ("CACHE_MAX_SIZE", "-1"),
            ("OFFLINE_CACHE_TTL_SECONDS", "0"),
            ("HEALTH_CHECK_INTERVAL_SECONDS", "-5"),
            ("AZURE_OPENAI_MAX_RETRIES", "-1"),
            ("PRIMARY_PROVIDER", "bedrock"),
            ("GITHUB_MODELS_ENDPOINT", "models.example.com"),
        ],
    )
    def test_load_settings_rejects_invalid_values(self, name, value) -> None:
        with patch.dict(os.environ, {name: value}):
            with pytest.raises(Exception):  # ValidationError
                load_settings()

    def test_orchestrator_config_from_settings(self) -> None:
        settings = Settings(primary_provider="azure-openai", provider_timeout_ms=1500)
        config = settings.orchestrator_config()
        assert config.primary_provider == "azure-openai"
        assert config.timeout_ms == 1500


class TestWiring:
    """Test adapter instantiation and dependency wiring."""

    def test_build_providers_creates_one_adapter_per_id(self) -> None:
        settings = Settings(github_token="ghp_test")
        providers = build_providers(settings)

        assert list(providers) == list(PROVIDER_ORDER)
        assert isinstance(providers["azure-ai-foundry"], AzureAgentProvider)
        assert isinstance(providers["azure-openai"], AzureOpenAIProvider)
        assert isinstance(providers["github-models"], GitHubModelsProvider)
        assert providers["github-models"].missing_configuration() == []
        assert "AZURE_PROJECTS_ENDPOINT" in providers["azure-ai-foundry"].missing_configuration()

    @pytest.mark.asyncio
    async def test_build_application_wires_fakes(self) -> None:
        settings = Settings(primary_provider="azure-openai", cache_max_size=5)
        fakes = {p: FakeProviderPort(p) for p in PROVIDER_ORDER}

        app = build_application(settings, providers=fakes)
        request = DiagnosisRequest(
            truck=TruckModel(make="Volvo", model="VNR", year=2020, engine="Volvo D11"),
            symptoms=("Turbo whistle",),
        )
        envelope = await app.orchestrator.diagnose(request)
        await app.close()

        assert envelope.provider == "azure-openai"
        assert app.orchestrator.get_cache_stats().max_size == 5
        assert app.monitor.providers == list(fakes.values())
        assert all(f.closed for f in fakes.values())

    @pytest.mark.asyncio
    async def test_health_check_runs_monitor_cycle(self) -> None:
        fakes = {p: FakeProviderPort(p) for p in PROVIDER_ORDER}
        fakes["github-models"].healthy = False
        app = build_application(Settings(), providers=fakes)

        records = await app.orchestrator.check_health()
        await app.close()

        assert [r.provider for r in records] == list(PROVIDER_ORDER)
        assert app.registry.is_known_unhealthy("github-models")
        assert all(f.probe_calls == 1 for f in fakes.values())


@pytest.mark.asyncio
async def test_bootstrap_probe_mode_prints_report(capsys) -> None:
    fakes = {p: FakeProviderPort(p) for p in PROVIDER_ORDER}
    fakes["azure-openai"].healthy = False

    with patch("roadcall.main.build_providers", return_value=fakes), patch(
        "roadcall.main.configure_logging"
    ):
        await bootstrap(Settings(run_mode="probe", log_level="ERROR"))

    report = json.loads(capsys.readouterr().out)
    assert report["overall"] == "degraded"
    assert [p["healthy"] for p in report["providers"]] == [True, False, True]
    assert all(f.closed for f in fakes.values())
