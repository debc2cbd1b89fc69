from __future__ import annotations

from collections.abc import Iterable

import httpx

from plangate.core.config.schema import GatewayConfig, HttpConfig
from plangate.core.providers.base import ProviderAdapter
from plangate.core.providers.http_adapter import HttpProviderAdapter
from plangate.core.providers.vendors import VENDOR_SPECS
from plangate.core.telemetry.logging import get_logger


def build_http_client(cfg: HttpConfig | None = None) -> httpx.AsyncClient:
    cfg = cfg or HttpConfig()
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=cfg.max_connections,
            max_keepalive_connections=cfg.max_keepalive_connections,
        ),
        timeout=httpx.Timeout(60.0, connect=cfg.connect_timeout_seconds),
    )


class ProviderRegistry:
    """Total mapping from provider name to adapter.

    Lookups are case-insensitive and never come back empty: an unknown or
    disabled name resolves to the default provider.
    """

    def __init__(self, adapters: Iterable[ProviderAdapter], *, default: str) -> None:
        self.logger = get_logger("plangate.providers.registry")
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)
        self.default = default.strip().lower()
        if self.default not in self._adapters:
            raise ValueError(f"default provider '{default}' is not registered")

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.provider_id.lower()] = adapter

    def configured(self) -> list[str]:
        return sorted(self._adapters.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._adapters

    def resolve(self, name: str | None) -> str:
        key = (name or "").strip().lower()
        if key in self._adapters:
            return key
        self.logger.warning("unknown_provider", requested=name, substitute=self.default)
        return self.default

    def get(self, name: str | None) -> ProviderAdapter:
        return self._adapters[self.resolve(name)]

    def adapters(self) -> dict[str, ProviderAdapter]:
        return dict(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()


def build_adapters(cfg: GatewayConfig, client: httpx.AsyncClient | None = None) -> list[ProviderAdapter]:
    adapters: list[ProviderAdapter] = []
    for provider_id, entry in cfg.providers.entries.items():
        if not entry.enabled:
            continue
        spec = VENDOR_SPECS.get(provider_id)
        if spec is None:
            raise ValueError(f"Unknown vendor in configuration: {provider_id}")
        adapters.append(
            HttpProviderAdapter(
                spec,
                api_key=entry.resolve_api_key(),
                model=entry.model,
                base_url=entry.base_url,
                max_tokens=cfg.providers.max_tokens,
                temperature=cfg.providers.temperature,
                timeout_seconds=entry.timeout_seconds,
                client=client,
            )
        )
    return adapters


def build_registry(cfg: GatewayConfig, client: httpx.AsyncClient | None = None) -> ProviderRegistry:
    return ProviderRegistry(build_adapters(cfg, client), default=cfg.providers.default)
