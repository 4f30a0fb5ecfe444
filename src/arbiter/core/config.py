"""
Configuration management for Arbiter.

Supports environment variables, .env files, and YAML configuration.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Credentials and endpoints for every backend the gateway can reach."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Anthropic (native Messages API)
    anthropic_api_key: SecretStr | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com",
        alias="ANTHROPIC_BASE_URL"
    )

    # OpenAI-compatible hosts
    groq_api_key: SecretStr | None = Field(default=None, alias="GROQ_API_KEY")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        alias="GROQ_BASE_URL"
    )

    cerebras_api_key: SecretStr | None = Field(default=None, alias="CEREBRAS_API_KEY")
    cerebras_base_url: str = Field(
        default="https://api.cerebras.ai/v1",
        alias="CEREBRAS_BASE_URL"
    )

    openrouter_api_key: SecretStr | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL"
    )
    openrouter_referer: str = Field(
        default="https://github.com/llm-arbiter/llm-arbiter",
        alias="OPENROUTER_REFERER"
    )
    openrouter_title: str = Field(default="LLM Arbiter", alias="OPENROUTER_TITLE")

    together_api_key: SecretStr | None = Field(default=None, alias="TOGETHER_API_KEY")
    together_base_url: str = Field(
        default="https://api.together.xyz/v1",
        alias="TOGETHER_BASE_URL"
    )

    # Raw SSE endpoints
    deepseek_api_key: SecretStr | None = Field(default=None, alias="DEEPSEEK_API_KEY")
    deepseek_url: str = Field(
        default="https://api.deepseek.com/chat/completions",
        alias="DEEPSEEK_URL"
    )

    minimax_api_key: SecretStr | None = Field(default=None, alias="MINIMAX_API_KEY")
    minimax_group_id: str | None = Field(default=None, alias="MINIMAX_GROUP_ID")
    minimax_url: str = Field(
        default="https://api.minimax.io/v1/text/chatcompletion_v2",
        alias="MINIMAX_URL"
    )

    def secret(self, name: str) -> str | None:
        """Return the plain value of a SecretStr field, or None when unset."""
        value = getattr(self, name)
        if value is None:
            return None
        return value.get_secret_value() or None

    @property
    def configured_backends(self) -> list[str]:
        """Backends with credentials present."""
        backends = []
        for backend in ("anthropic", "groq", "cerebras", "openrouter", "together", "deepseek"):
            if self.secret(f"{backend}_api_key"):
                backends.append(backend)
        if self.secret("minimax_api_key") and self.minimax_group_id:
            backends.append("minimax")
        return backends


class ArbiterSettings(BaseSettings):
    """Orchestration defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ARBITER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Per-call limits
    default_timeout: float = Field(default=90.0, gt=0)
    synthesis_timeout: float = Field(default=120.0, gt=0)
    default_max_tokens: int = Field(default=4096, gt=0)

    # Context budget applied before every dispatch
    context_token_budget: int = Field(default=8000, gt=0)

    # Wind tunnel (single-model streaming)
    wind_tunnel_max_tokens: int = Field(default=1024, gt=0)
    wind_tunnel_anthropic_max_tokens: int = Field(default=512, gt=0)
    assumed_response_tokens: int = Field(default=500, gt=0)

    # Peer review
    chairman_model: str = "anthropic/claude-sonnet-4.5"
    baseline_model: str = "anthropic/claude-sonnet-4.5"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}. Must be 'json' or 'console'")
        return v


class ServerSettings(BaseSettings):
    """API server settings."""

    model_config = SettingsConfigDict(
        env_prefix="ARBITER_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Combined application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    arbiter: ArbiterSettings = Field(default_factory=ArbiterSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
