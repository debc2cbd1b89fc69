from __future__ import annotations

import json
import threading

import httpx
import pytest

from plangate.core.config.schema import GatewayConfig, ProviderConfig, ProvidersConfig, ResilienceConfig, RetryConfig
from plangate.core.orchestrator.planner import Planner, PlanResult, build_planner
from plangate.core.providers.base import ModelParams, ProviderAdapter, ProviderRequest, ProviderResponse
from plangate.core.providers.registry import ProviderRegistry
from plangate.core.runtime.circuit_breaker import BreakerRegistry
from plangate.core.runtime.errors import ProviderError
from plangate.core.runtime.retries import RetryExecutor, RetryPolicy


class ScriptedAdapter(ProviderAdapter):
    def __init__(self, provider_id: str, outcomes: list, model: str = "m1") -> None:
        self.provider_id = provider_id
        self.model = model
        self.outcomes = list(outcomes)
        self.calls: list[ProviderRequest] = []

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        self.calls.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(content=outcome, model=request.model, provider_id=self.provider_id, latency_ms=7)


async def _no_sleep(_delay: float) -> None:
    return None


def _planner(acme: ScriptedAdapter, default: ScriptedAdapter, **kwargs) -> Planner:
    return Planner(
        ProviderRegistry([acme, default], default="default"),
        retry=RetryExecutor(RetryPolicy(max_attempts=3, initial_delay_seconds=1.0), sleep=_no_sleep),
        **kwargs,
    )


@pytest.fixture
def closing():
    planners: list[Planner] = []

    def _track(planner: Planner) -> Planner:
        planners.append(planner)
        return planner

    yield _track
    for planner in planners:
        planner.close()


def test_plan_async_falls_back_to_default_after_retries():
    acme = ScriptedAdapter("acme", [ProviderError.from_status("acme", 503)])
    default = ScriptedAdapter("default", ["default plan"])
    planner = _planner(acme, default)
    try:
        fut = planner.plan_async("mine 5 iron", "acme", ModelParams(system_prompt="sys"))
        result = fut.result(timeout=5)
    finally:
        planner.close()

    assert isinstance(result, PlanResult)
    assert result.plan == "default plan"
    assert result.response.provider_id == "default"
    assert len(acme.calls) == 3
    assert len(default.calls) == 1


@pytest.mark.asyncio
async def test_aplan_resolves_unknown_provider_to_default(closing):
    acme = ScriptedAdapter("acme", ["acme plan"])
    default = ScriptedAdapter("default", ["default plan"])
    planner = closing(_planner(acme, default))

    assert planner.resolve_provider("ACME") == "acme"
    assert planner.resolve_provider("who-knows") == "default"
    result = await planner.aplan("x", "who-knows")
    assert result.plan == "default plan"
    assert acme.calls == []


@pytest.mark.asyncio
async def test_aplan_from_caller_loop_runs_on_worker_thread(closing):
    seen: list[int] = []

    class ThreadRecordingAdapter(ScriptedAdapter):
        async def send(self, request: ProviderRequest) -> ProviderResponse:
            seen.append(threading.get_ident())
            return await super().send(request)

    acme = ThreadRecordingAdapter("acme", ["acme plan"])
    planner = closing(_planner(acme, ScriptedAdapter("default", ["d"])))

    result = await planner.aplan("x", "acme")
    assert result.plan == "acme plan"
    assert await planner.probe_health("acme") is True
    assert planner.worker.owns_current_loop() is False
    assert seen and threading.get_ident() not in seen

    second = await planner.aplan("y", "acme")
    assert second.plan == "acme plan"
    assert len(set(seen)) == 1


@pytest.mark.asyncio
async def test_total_failure_yields_none_and_logs(capsys, closing):
    acme = ScriptedAdapter("acme", [ProviderError.from_status("acme", 400)])
    default = ScriptedAdapter("default", [ProviderError.from_status("default", 401)])
    planner = closing(_planner(acme, default))

    assert await planner.aplan("x", "acme") is None
    out = capsys.readouterr().out
    assert '"event": "plan_failed"' in out
    assert '"error_type": "auth_error"' in out
    assert '"provider_id": "default"' in out


def test_sync_plan_retries_default_once_more():
    acme = ScriptedAdapter("acme", [ProviderError.from_status("acme", 400)])
    default = ScriptedAdapter("default", [ProviderError.from_status("default", 400), "second chance"])
    planner = _planner(acme, default)
    try:
        result = planner.plan("x", "acme")
    finally:
        planner.close()

    assert result is not None
    assert result.plan == "second chance"
    assert len(default.calls) == 2


def test_sync_plan_on_default_does_not_retry():
    acme = ScriptedAdapter("acme", ["unused"])
    default = ScriptedAdapter("default", [ProviderError.from_status("default", 400)])
    planner = _planner(acme, default)
    try:
        assert planner.plan("x", "default") is None
    finally:
        planner.close()
    assert len(default.calls) == 1


@pytest.mark.asyncio
async def test_repeat_plan_is_served_from_cache(closing):
    acme = ScriptedAdapter("acme", ["acme plan"])
    planner = closing(_planner(acme, ScriptedAdapter("default", ["d"])))

    first = await planner.aplan("build a hut", "acme")
    second = await planner.aplan("build a hut", "acme")
    assert first.response.from_cache is False
    assert second.response.from_cache is True
    assert second.response.latency_ms == 0
    assert len(acme.calls) == 1
    assert planner.cache_stats()["hits"] == 1


@pytest.mark.asyncio
async def test_open_breaker_marks_provider_unhealthy_and_is_skipped(closing):
    acme = ScriptedAdapter("acme", [ProviderError.from_status("acme", 500)])
    default = ScriptedAdapter("default", ["default plan"])
    planner = closing(_planner(acme, default, breakers=BreakerRegistry(failure_threshold=1, open_duration_seconds=60)))

    assert planner.is_healthy("acme") is True
    await planner.aplan("first", "acme")
    assert planner.is_healthy("acme") is False
    assert await planner.probe_health("acme") is False
    assert await planner.probe_health("default") is True

    await planner.aplan("second", "acme")
    assert len(acme.calls) == 3

    status = planner.provider_status()
    assert status["acme"]["breaker"]["state"] == "open"
    assert status["default"]["default"] is True


@pytest.mark.asyncio
async def test_response_parser_shapes_the_plan(closing):
    acme = ScriptedAdapter("acme", ['{"steps": ["mine", "craft"]}', "not json"])
    planner = closing(_planner(acme, ScriptedAdapter("default", ["nope"]), response_parser=json.loads))

    result = await planner.aplan("a", "acme")
    assert result.plan == {"steps": ["mine", "craft"]}
    assert await planner.aplan("b", "acme") is None


@pytest.mark.asyncio
async def test_fallback_order_is_consulted_before_default(closing):
    acme = ScriptedAdapter("acme", [ProviderError.from_status("acme", 400)])
    backup = ScriptedAdapter("backup", ["backup plan"])
    default = ScriptedAdapter("default", ["default plan"])
    planner = closing(
        Planner(
            ProviderRegistry([acme, backup, default], default="default"),
            fallback_order=["Backup", "ghost"],
            retry=RetryExecutor(RetryPolicy(max_attempts=1)),
        )
    )

    assert planner.fallback_chain("acme") == ["acme", "backup", "default"]
    assert planner.fallback_chain("default") == ["default", "backup"]
    result = await planner.aplan("x", "acme")
    assert result.response.provider_id == "backup"
    assert default.calls == []


def test_build_planner_end_to_end_over_http():
    hits: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hits.append(request.url.host)
        if request.url.host == "api.groq.com":
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"choices": [{"message": {"content": "longcat plan"}}], "usage": {"total_tokens": 4}})

    cfg = GatewayConfig(
        providers=ProvidersConfig(
            selected="groq",
            default="longcat",
            entries={"longcat": ProviderConfig(api_key="lc"), "groq": ProviderConfig(api_key="gq")},
        ),
        resilience=ResilienceConfig(retry=RetryConfig(max_attempts=3, initial_delay_seconds=0.0)),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    planner = build_planner(cfg, client=client)
    try:
        result = planner.plan_async("mine 5 iron").result(timeout=10)
        planner.worker.submit(client.aclose()).result(timeout=5)
    finally:
        planner.close()
    assert client.is_closed

    assert result.plan == "longcat plan"
    assert result.response.tokens_used == 4
    assert hits.count("api.groq.com") == 3
    assert hits[-1] == "api.longcat.chat"
