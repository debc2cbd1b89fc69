from __future__ import annotations

import os

from pydantic import BaseModel, Field, field_validator, model_validator


class InstanceConfig(BaseModel):
    name: str = "plangate"


class ProviderConfig(BaseModel):
    enabled: bool = True
    api_key: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    model: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)

    def resolve_api_key(self) -> str | None:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.getenv(self.api_key_env) or None
        return None


def _default_provider_entries() -> dict[str, ProviderConfig]:
    return {
        "longcat": ProviderConfig(api_key_env="LONGCAT_API_KEY"),
        "deepseek": ProviderConfig(api_key_env="DEEPSEEK_API_KEY"),
        "openai": ProviderConfig(api_key_env="OPENAI_API_KEY"),
        "gemini": ProviderConfig(api_key_env="GEMINI_API_KEY"),
        "groq": ProviderConfig(api_key_env="GROQ_API_KEY"),
        "iflow": ProviderConfig(api_key_env="IFLOW_API_KEY"),
        "claude": ProviderConfig(api_key_env="ANTHROPIC_API_KEY"),
        "ollama": ProviderConfig(base_url="http://localhost:11434"),
    }


class ProvidersConfig(BaseModel):
    selected: str = "longcat"
    default: str = "longcat"
    fallback_order: list[str] = Field(default_factory=list)
    max_tokens: int = Field(default=8000, ge=100, le=65536)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    entries: dict[str, ProviderConfig] = Field(default_factory=_default_provider_entries)

    @field_validator("selected", "default")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("fallback_order")
    @classmethod
    def _lower_all(cls, value: list[str]) -> list[str]:
        return [v.strip().lower() for v in value if v.strip()]

    @field_validator("entries")
    @classmethod
    def _lower_keys(cls, value: dict[str, ProviderConfig]) -> dict[str, ProviderConfig]:
        return {k.strip().lower(): v for k, v in value.items()}

    @model_validator(mode="after")
    def _default_is_enabled(self) -> ProvidersConfig:
        entry = self.entries.get(self.default)
        if entry is None or not entry.enabled:
            raise ValueError(f"default provider '{self.default}' must be configured and enabled")
        return self

    def enabled_ids(self) -> list[str]:
        return sorted(k for k, v in self.entries.items() if v.enabled)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: float = Field(default=1.0, ge=0.0)


class BreakerConfig(BaseModel):
    enabled: bool = True
    failure_threshold: int = Field(default=5, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    open_duration_seconds: float = Field(default=30.0, ge=0)


class CacheConfig(BaseModel):
    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0)
    max_entries: int = Field(default=500, ge=1)
    single_flight: bool = False


class ResilienceConfig(BaseModel):
    retry: RetryConfig = Field(default_factory=RetryConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class TelemetryConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = True


class HttpConfig(BaseModel):
    max_connections: int = Field(default=20, ge=1)
    max_keepalive_connections: int = Field(default=10, ge=0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0)


class GatewayConfig(BaseModel):
    instance: InstanceConfig = Field(default_factory=InstanceConfig)
    environment: str = "dev"
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
