from __future__ import annotations

import asyncio

from plangate.core.cache.fingerprint import fingerprint
from plangate.core.cache.response_cache import ResponseCache
from plangate.core.providers.base import ModelParams, ProviderAdapter, ProviderRequest, ProviderResponse
from plangate.core.runtime.circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitState
from plangate.core.runtime.errors import ProviderError
from plangate.core.runtime.retries import RetryExecutor
from plangate.core.telemetry.logging import get_logger
from plangate.core.telemetry.tracing import TraceContext, trace_event


class ResilientClient:
    """Cache, circuit breaker and retry wrapped around one adapter.

    The cache and breaker registry are shared by every client built from the
    same planner; only the adapter is per-client.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        *,
        cache: ResponseCache,
        breakers: BreakerRegistry,
        retry: RetryExecutor,
        single_flight: bool = False,
    ) -> None:
        self.adapter = adapter
        self.cache = cache
        self.breakers = breakers
        self.retry = retry
        self.single_flight = single_flight
        self.logger = get_logger("plangate.resilience.client")
        self._in_flight: dict[str, asyncio.Future[ProviderResponse | None]] = {}

    @property
    def provider_id(self) -> str:
        return self.adapter.provider_id

    @property
    def breaker(self) -> CircuitBreaker:
        return self.breakers.for_key(self.provider_id)

    def is_available(self) -> bool:
        return self.breaker.peek_state() is not CircuitState.OPEN

    async def is_healthy(self) -> bool:
        return self.is_available() and await self.adapter.is_healthy()

    async def send(
        self,
        prompt: str,
        params: ModelParams | None = None,
        *,
        trace: TraceContext | None = None,
    ) -> ProviderResponse:
        request = self.adapter.build_request(prompt, params)
        trace = (trace or TraceContext(provider_id=self.provider_id)).for_provider(self.provider_id, request.model)
        key = fingerprint(self.provider_id, request)

        cached = self.cache.get(key)
        if cached is not None:
            trace_event(self.logger, trace, event="cache_hit", status="ok")
            return cached.as_cache_hit()

        if not self.single_flight:
            return await self._call(key, request, trace)

        while True:
            pending = self._in_flight.get(key)
            if pending is None:
                return await self._lead(key, request, trace)
            trace_event(self.logger, trace, event="single_flight_join", status="waiting")
            shared = await asyncio.shield(pending)
            if shared is not None:
                return shared
            # The leader was cancelled; the next waiter to wake takes over.

    async def _lead(self, key: str, request: ProviderRequest, trace: TraceContext) -> ProviderResponse:
        future: asyncio.Future[ProviderResponse | None] = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            response = await self._call(key, request, trace)
        except asyncio.CancelledError:
            future.set_result(None)
            raise
        except BaseException as exc:
            future.set_exception(exc)
            # Mark retrieved so an unjoined failure does not warn at GC.
            future.exception()
            raise
        else:
            future.set_result(response)
            return response
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    async def _call(self, key: str, request: ProviderRequest, trace: TraceContext) -> ProviderResponse:
        breaker = self.breaker
        admission = breaker.acquire()
        if admission is None:
            trace_event(self.logger, trace, event="breaker_rejected", status="circuit_open")
            raise ProviderError.circuit_open(self.provider_id)

        def _on_attempt(attempt: int, status: str, error: ProviderError | None) -> None:
            extra = {"attempt": attempt}
            if error is not None:
                extra.update(error.to_log_fields())
            trace_event(self.logger, trace, event="provider_attempt", status=status, extra=extra)

        try:
            response = await self.retry.run(
                lambda: self.adapter.send(request),
                provider_id=self.provider_id,
                on_attempt=_on_attempt,
            )
        except ProviderError as err:
            state = breaker.record_failure(admission)
            if state is CircuitState.OPEN:
                trace_event(self.logger, trace, event="breaker_open", status="open", extra=err.to_log_fields())
            raise
        except BaseException:
            breaker.release(admission)
            raise

        breaker.record_success(admission)
        self.cache.put(key, response)
        return response
