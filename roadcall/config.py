"""Configuration loading for the roadcall orchestration layer.

This module provides centralized configuration management:
- Load settings from environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to provider credentials and orchestration tuning
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from roadcall.core.models import OrchestratorConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Orchestration
    primary_provider: Literal["azure-ai-foundry", "azure-openai", "github-models"] = Field(
        default="azure-ai-foundry",
        description="Provider attempted first for every request",
    )
    fallback_enabled: bool = Field(
        default=True,
        description="Cascade to the remaining providers when the primary fails",
    )
    provider_timeout_ms: int = Field(
        default=30000,
        description="Per-attempt provider timeout in milliseconds",
    )

    # Response cache
    cache_max_size: int = Field(
        default=100,
        description="Maximum number of cached diagnoses",
    )
    cache_ttl_seconds: float = Field(
        default=1800,
        description="Lifetime of a cached provider diagnosis in seconds",
    )
    offline_cache_ttl_seconds: float = Field(
        default=300,
        description="Lifetime of a cached offline diagnosis in seconds",
    )

    # Health monitor
    health_check_interval_seconds: float = Field(
        default=60,
        description="Interval between provider health probe cycles",
    )
    health_probe_timeout_ms: int = Field(
        default=5000,
        description="Timeout for a single provider health probe",
    )

    # Azure AI Foundry agent
    azure_projects_endpoint: str = Field(
        default="",
        description="Azure AI Foundry project endpoint",
    )
    azure_agent_id: str = Field(
        default="",
        description="Id of the preconfigured diagnosis agent",
    )
    azure_thread_id: str = Field(
        default="",
        description="Id of the agent conversation thread",
    )
    azure_agent_api_key: str = Field(
        default="",
        description="Static bearer token for the Agents API",
    )
    azure_tenant_id: str = Field(
        default="",
        description="Azure AD tenant for service principal authentication",
    )
    azure_client_id: str = Field(
        default="",
        description="Service principal application id",
    )
    azure_client_secret: str = Field(
        default="",
        description="Service principal secret",
    )
    azure_agent_api_version: str = Field(
        default="v1",
        description="Agents REST API version",
    )
    azure_agent_poll_interval_ms: int = Field(
        default=1000,
        description="Delay between agent run status polls",
    )
    azure_agent_poll_timeout_ms: int = Field(
        default=60000,
        description="Give up on an agent run after this long",
    )

    # Azure OpenAI
    azure_openai_endpoint: str = Field(
        default="",
        description="Azure OpenAI resource endpoint",
    )
    azure_openai_key: str = Field(
        default="",
        description="Azure OpenAI API key",
    )
    azure_openai_api_version: str = Field(
        default="2024-10-21",
        description="Azure OpenAI REST API version",
    )
    azure_openai_deployment: str = Field(
        default="gpt-4o",
        description="Azure OpenAI deployment name",
    )
    azure_openai_max_retries: int = Field(
        default=3,
        description="SDK-level retries for Azure OpenAI calls",
    )

    # GitHub Models
    github_models_endpoint: str = Field(
        default="https://models.inference.ai.azure.com",
        description="GitHub Models inference endpoint",
    )
    github_token: str = Field(
        default="",
        description="GitHub token with GitHub Models access",
    )
    github_models_model: str = Field(
        default="gpt-4o-mini",
        description="GitHub Models model id",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    # Run mode
    run_mode: Literal["cli", "daemon", "probe"] = Field(
        default="cli",
        description="Run mode",
    )

    # Development
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging",
    )

    @field_validator(
        "provider_timeout_ms",
        "cache_max_size",
        "health_probe_timeout_ms",
        "azure_agent_poll_interval_ms",
        "azure_agent_poll_timeout_ms",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Ensure counts and millisecond durations are positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator(
        "cache_ttl_seconds",
        "offline_cache_ttl_seconds",
        "health_check_interval_seconds",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Ensure second durations are positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("azure_openai_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Ensure retry count is non-negative."""
        if v < 0:
            raise ValueError("azure_openai_max_retries must be non-negative")
        return v

    @field_validator("azure_projects_endpoint", "azure_openai_endpoint", "github_models_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Ensure endpoints, when set, are absolute https URLs."""
        v = v.strip().rstrip("/")
        if v and not v.startswith(("https://", "http://")):
            raise ValueError(f"endpoint must be an http(s) URL, got '{v}'")
        return v

    def orchestrator_config(self) -> OrchestratorConfig:
        """Build the initial immutable orchestrator configuration."""
        return OrchestratorConfig(
            primary_provider=self.primary_provider,
            fallback_enabled=self.fallback_enabled,
            timeout_ms=self.provider_timeout_ms,
        )


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
