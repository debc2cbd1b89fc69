from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class ModelParams:
    system_prompt: str = ""
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None


@dataclass(frozen=True, slots=True)
class ProviderRequest:
    prompt: str
    model: str
    max_tokens: int
    temperature: float
    system_prompt: str = ""


@dataclass(frozen=True, slots=True)
class ProviderResponse:
    content: str
    model: str
    provider_id: str
    tokens_used: int = 0
    latency_ms: int = 0
    from_cache: bool = False

    def as_cache_hit(self) -> ProviderResponse:
        return replace(self, from_cache=True, latency_ms=0)


class ProviderAdapter(ABC):
    """One LLM backend behind the uniform async contract.

    ``send`` issues exactly one outbound call and raises ``ProviderError`` on
    failure. Adapters hold no per-call state and may be shared.
    """

    provider_id: str
    model: str = ""
    max_tokens: int = 1024
    temperature: float = 0.7

    @abstractmethod
    async def send(self, request: ProviderRequest) -> ProviderResponse:
        raise NotImplementedError

    async def is_healthy(self) -> bool:
        return True

    def build_request(self, prompt: str, params: ModelParams | None = None) -> ProviderRequest:
        params = params or ModelParams()
        return ProviderRequest(
            prompt=prompt,
            system_prompt=params.system_prompt or "",
            model=params.model or self.model,
            max_tokens=params.max_tokens if params.max_tokens is not None else self.max_tokens,
            temperature=params.temperature if params.temperature is not None else self.temperature,
        )

    async def aclose(self) -> None:
        return None
