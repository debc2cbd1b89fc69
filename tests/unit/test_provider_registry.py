from __future__ import annotations

import pytest

from plangate.core.config.schema import GatewayConfig, ProviderConfig, ProvidersConfig
from plangate.core.providers.base import ProviderAdapter, ProviderRequest, ProviderResponse
from plangate.core.providers.http_adapter import HttpProviderAdapter
from plangate.core.providers.registry import ProviderRegistry, build_adapters, build_registry


class EchoAdapter(ProviderAdapter):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        return ProviderResponse(content=request.prompt, model=request.model, provider_id=self.provider_id)


def test_resolution_is_case_insensitive_and_total():
    registry = ProviderRegistry([EchoAdapter("acme"), EchoAdapter("default")], default="default")

    assert registry.resolve("ACME") == "acme"
    assert registry.resolve("  Acme ") == "acme"
    assert registry.resolve("unknown-vendor") == "default"
    assert registry.resolve(None) == "default"
    assert registry.get("nope").provider_id == "default"
    assert "ACME" in registry
    assert registry.configured() == ["acme", "default"]


def test_default_must_be_registered():
    with pytest.raises(ValueError):
        ProviderRegistry([EchoAdapter("acme")], default="default")


def test_build_registry_from_default_config():
    registry = build_registry(GatewayConfig())
    assert registry.default == "longcat"
    assert registry.configured() == sorted(["longcat", "deepseek", "openai", "gemini", "groq", "iflow", "claude", "ollama"])
    adapter = registry.get("claude")
    assert isinstance(adapter, HttpProviderAdapter)
    assert adapter.max_tokens == 8000
    assert adapter.temperature == 0.7


def test_build_adapters_skips_disabled_and_applies_overrides():
    cfg = GatewayConfig(
        providers=ProvidersConfig(
            selected="openai",
            default="openai",
            max_tokens=1200,
            entries={
                "openai": ProviderConfig(api_key="sk-test", model="gpt-test", timeout_seconds=15),
                "groq": ProviderConfig(enabled=False),
            },
        )
    )
    adapters = build_adapters(cfg)
    assert [a.provider_id for a in adapters] == ["openai"]
    openai = adapters[0]
    assert openai.model == "gpt-test"
    assert openai.max_tokens == 1200
    assert openai.timeout_seconds == 15
    assert openai.has_credentials is True


def test_build_adapters_rejects_unknown_vendor():
    cfg = GatewayConfig(
        providers=ProvidersConfig(
            entries={"longcat": ProviderConfig(), "mystery": ProviderConfig()},
        )
    )
    with pytest.raises(ValueError, match="Unknown vendor"):
        build_adapters(cfg)
