from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import httpx

from plangate.core.cache.response_cache import ResponseCache
from plangate.core.config.schema import GatewayConfig
from plangate.core.providers.base import ModelParams, ProviderResponse
from plangate.core.providers.registry import ProviderRegistry, build_http_client, build_registry
from plangate.core.resilience.client import ResilientClient
from plangate.core.resilience.fallback import FallbackHandler
from plangate.core.runtime.circuit_breaker import BreakerRegistry
from plangate.core.runtime.errors import ProviderError, compact_error_summary
from plangate.core.runtime.retries import RetryExecutor, RetryPolicy
from plangate.core.runtime.workers import WorkerLoop
from plangate.core.telemetry.logging import get_logger
from plangate.core.telemetry.tracing import TraceContext, trace_event

ResponseParser = Callable[[str], Any]


@dataclass(frozen=True, slots=True)
class PlanResult:
    response: ProviderResponse
    plan: Any


class Planner:
    """Entry point of the gateway: one prompt in, one plan (or None) out.

    Every planning call runs on the planner's worker loop, so the shared
    HTTP client is only ever driven from one event loop.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        selected: str | None = None,
        cache: ResponseCache | None = None,
        breakers: BreakerRegistry | None = None,
        retry: RetryExecutor | None = None,
        fallback_order: Sequence[str] = (),
        single_flight: bool = False,
        response_parser: ResponseParser | None = None,
        http_client: httpx.AsyncClient | None = None,
        worker: WorkerLoop | None = None,
    ) -> None:
        self.logger = get_logger("plangate.orchestrator.planner")
        self.registry = registry
        self.selected = (selected or registry.default).strip().lower()
        self.cache = cache or ResponseCache()
        self.breakers = breakers or BreakerRegistry()
        self.retry = retry or RetryExecutor()
        self.fallback = FallbackHandler()
        self.fallback_order = [name.strip().lower() for name in fallback_order if name.strip()]
        self.response_parser = response_parser
        self.worker = worker or WorkerLoop()
        self._http_client = http_client
        self._clients: dict[str, ResilientClient] = {
            name: ResilientClient(
                adapter,
                cache=self.cache,
                breakers=self.breakers,
                retry=self.retry,
                single_flight=single_flight,
            )
            for name, adapter in registry.adapters().items()
        }

    @property
    def default_provider(self) -> str:
        return self.registry.default

    def resolve_provider(self, name: str | None) -> str:
        if name is None:
            name = self.selected
        return self.registry.resolve(name)

    def client(self, name: str | None) -> ResilientClient:
        return self._clients[self.resolve_provider(name)]

    def fallback_chain(self, provider_id: str) -> list[str]:
        chain: list[str] = []
        for name in [provider_id, *self.fallback_order, self.default_provider]:
            if name in self._clients and name not in chain:
                chain.append(name)
        return chain

    async def aplan(
        self,
        prompt: str,
        provider: str | None = None,
        params: ModelParams | None = None,
    ) -> PlanResult | None:
        """Awaitable planning call usable from any event loop.

        The work itself always runs on the worker loop; a caller on another
        loop awaits it through a wrapped future. Cancelling the caller
        cancels the planning task.
        """
        provider_id = self.resolve_provider(provider)
        return await self.worker.run(self._run(prompt, self.fallback_chain(provider_id), params))

    def plan_async(
        self,
        prompt: str,
        provider: str | None = None,
        params: ModelParams | None = None,
    ) -> Future[PlanResult | None]:
        provider_id = self.resolve_provider(provider)
        return self.worker.submit(self._run(prompt, self.fallback_chain(provider_id), params))

    def plan(
        self,
        prompt: str,
        provider: str | None = None,
        params: ModelParams | None = None,
    ) -> PlanResult | None:
        """Blocking variant of ``plan_async``.

        When the resolved provider's chain yields nothing, one more attempt
        is made against the default provider alone. Must not be called from
        the worker loop's own thread.
        """
        provider_id = self.resolve_provider(provider)
        result = self.worker.submit(self._run(prompt, self.fallback_chain(provider_id), params)).result()
        if result is not None or provider_id == self.default_provider:
            return result
        self.logger.info("plan_default_retry", requested=provider_id, default=self.default_provider)
        return self.worker.submit(self._run(prompt, [self.default_provider], params)).result()

    async def _run(self, prompt: str, chain: list[str], params: ModelParams | None) -> PlanResult | None:
        trace = TraceContext(provider_id=chain[0])
        clients = [self._clients[name] for name in chain]
        try:
            response = await self.fallback.execute(clients, prompt, params, trace=trace)
        except ProviderError as err:
            self.logger.warning("plan_failed", request_id=trace.request_id, chain=chain, **err.to_log_fields())
            return None

        plan = self._parse(response, trace)
        if plan is None:
            return None
        trace_event(
            self.logger,
            trace.for_provider(response.provider_id, response.model),
            event="plan_ready",
            status="ok",
            extra={"from_cache": response.from_cache, "latency_ms": response.latency_ms},
        )
        return PlanResult(response=response, plan=plan)

    def _parse(self, response: ProviderResponse, trace: TraceContext) -> Any:
        if self.response_parser is None:
            return response.content
        try:
            plan = self.response_parser(response.content)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "plan_parse_failed",
                request_id=trace.request_id,
                provider_id=response.provider_id,
                error=compact_error_summary(exc),
            )
            return None
        if plan is None:
            self.logger.warning("plan_parse_empty", request_id=trace.request_id, provider_id=response.provider_id)
        return plan

    def is_healthy(self, provider: str | None) -> bool:
        return self.client(provider).is_available()

    async def probe_health(self, provider: str | None) -> bool:
        return await self.worker.run(self.client(provider).is_healthy())

    def provider_status(self) -> dict[str, dict]:
        out: dict[str, dict] = {}
        for name in sorted(self._clients):
            client = self._clients[name]
            out[name] = {
                "health": client.is_available(),
                "default": name == self.default_provider,
                "model": client.adapter.model,
                "breaker": client.breaker.snapshot(),
            }
        return out

    def cache_stats(self) -> dict:
        return self.cache.stats()

    async def _aclose(self) -> None:
        await self.registry.aclose()
        if self._http_client is not None:
            await self._http_client.aclose()

    async def aclose(self) -> None:
        if self.worker.running:
            await self.worker.run(self._aclose())
        else:
            await self._aclose()

    def close(self) -> None:
        if self.worker.running:
            self.worker.submit(self._aclose()).result()
        else:
            asyncio.run(self._aclose())
        self.worker.stop()


def build_planner(
    cfg: GatewayConfig,
    *,
    client: httpx.AsyncClient | None = None,
    response_parser: ResponseParser | None = None,
) -> Planner:
    """Wires registry, cache, breakers and retry from a loaded config.

    When no client is passed, one shared ``httpx.AsyncClient`` is created
    and owned by the planner.
    """
    owned_client = None
    if client is None:
        client = owned_client = build_http_client(cfg.http)
    resilience = cfg.resilience
    return Planner(
        build_registry(cfg, client),
        selected=cfg.providers.selected,
        cache=ResponseCache(
            ttl_seconds=resilience.cache.ttl_seconds,
            max_entries=resilience.cache.max_entries,
            enabled=resilience.cache.enabled,
        ),
        breakers=BreakerRegistry(
            failure_threshold=resilience.breaker.failure_threshold,
            window_seconds=resilience.breaker.window_seconds,
            open_duration_seconds=resilience.breaker.open_duration_seconds,
            enabled=resilience.breaker.enabled,
        ),
        retry=RetryExecutor(
            RetryPolicy(
                max_attempts=resilience.retry.max_attempts,
                initial_delay_seconds=resilience.retry.initial_delay_seconds,
            )
        ),
        fallback_order=cfg.providers.fallback_order,
        single_flight=resilience.cache.single_flight,
        response_parser=response_parser,
        http_client=owned_client,
    )
