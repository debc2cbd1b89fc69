from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

_TRACE_EVENTS: deque[dict[str, Any]] = deque(maxlen=500)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(slots=True)
class TraceContext:
    """Identifies one planning request as it moves through the gateway."""

    provider_id: str
    model: str = ""
    request_id: str = field(default_factory=new_request_id)
    phase: str = "plan"

    def for_provider(self, provider_id: str, model: str = "") -> TraceContext:
        return TraceContext(provider_id=provider_id, model=model, request_id=self.request_id, phase=self.phase)


def trace_event(logger, ctx: TraceContext, event: str, status: str, extra: dict[str, Any] | None = None) -> None:
    payload = {
        "request_id": ctx.request_id,
        "provider_id": ctx.provider_id,
        "model": ctx.model,
        "phase": ctx.phase,
        "status": status,
    }
    if extra:
        payload.update(extra)
    _TRACE_EVENTS.append({"event": event, **payload})
    logger.info(event, **payload)


def recent_traces(request_id: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
    items = list(_TRACE_EVENTS)
    if request_id is not None:
        items = [i for i in items if i.get("request_id") == request_id]
    return items[-limit:]
