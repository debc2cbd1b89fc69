from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from plangate.core.providers.base import ModelParams, ProviderResponse
from plangate.core.resilience.client import ResilientClient
from plangate.core.runtime.errors import ProviderError
from plangate.core.telemetry.logging import get_logger
from plangate.core.telemetry.tracing import TraceContext, trace_event


class FallbackHandler:
    """Tries resilient clients in the given order; first success wins.

    A client whose breaker is OPEN is skipped without being called and counts
    as a ``CIRCUIT_OPEN`` failure. When every candidate fails, only the last
    error is raised. A model override in ``params`` applies to the first
    candidate only; later candidates use their own configured model.
    """

    def __init__(self) -> None:
        self.logger = get_logger("plangate.resilience.fallback")

    async def execute(
        self,
        clients: Sequence[ResilientClient],
        prompt: str,
        params: ModelParams | None = None,
        *,
        trace: TraceContext | None = None,
    ) -> ProviderResponse:
        if not clients:
            raise ValueError("fallback chain is empty")

        trace = trace or TraceContext(provider_id=clients[0].provider_id)
        params = params or ModelParams()
        fallback_params = replace(params, model=None)
        last_error: ProviderError | None = None
        for position, client in enumerate(clients):
            step_trace = trace.for_provider(client.provider_id)
            if not client.is_available():
                last_error = ProviderError.circuit_open(client.provider_id)
                trace_event(self.logger, step_trace, event="fallback_skip", status="circuit_open", extra={"position": position})
                continue
            try:
                response = await client.send(prompt, params if position == 0 else fallback_params, trace=trace)
            except ProviderError as err:
                last_error = err
                trace_event(
                    self.logger,
                    step_trace,
                    event="fallback_candidate_failed",
                    status="error",
                    extra={"position": position, **err.to_log_fields()},
                )
                continue
            if position > 0:
                trace_event(self.logger, step_trace, event="fallback_used", status="ok", extra={"position": position})
            return response

        if last_error is None:
            raise ValueError("fallback chain yielded no candidates")
        raise last_error
