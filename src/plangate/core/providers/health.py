from __future__ import annotations

from time import perf_counter

from pydantic import BaseModel

from plangate.core.config.schema import GatewayConfig
from plangate.core.providers.http_adapter import HttpProviderAdapter
from plangate.core.providers.registry import ProviderRegistry


class ProviderCheckResult(BaseModel):
    provider: str
    enabled: bool
    ok: bool
    latency_ms: float | None = None
    error: str | None = None


def provider_health_summary(planner) -> dict[str, bool]:
    return {name: planner.is_healthy(name) for name in planner.registry.configured()}


async def check_configured_providers(
    cfg: GatewayConfig,
    registry: ProviderRegistry,
    skip_tests: bool = False,
) -> dict[str, ProviderCheckResult]:
    results: dict[str, ProviderCheckResult] = {}
    for name in sorted(cfg.providers.entries):
        entry = cfg.providers.entries[name]
        if not entry.enabled or name not in registry:
            results[name] = ProviderCheckResult(provider=name, enabled=False, ok=False, error="disabled")
            continue
        if skip_tests:
            results[name] = ProviderCheckResult(provider=name, enabled=True, ok=False, error="skipped")
            continue

        adapter = registry.get(name)
        if isinstance(adapter, HttpProviderAdapter) and not adapter.has_credentials:
            env_name = entry.api_key_env or "api_key"
            results[name] = ProviderCheckResult(
                provider=name, enabled=True, ok=False, error=f"missing api key ({env_name})"
            )
            continue

        started = perf_counter()
        ok = await adapter.is_healthy()
        results[name] = ProviderCheckResult(
            provider=name,
            enabled=True,
            ok=ok,
            latency_ms=round((perf_counter() - started) * 1000, 2),
            error=None if ok else "probe failed",
        )
    return results
