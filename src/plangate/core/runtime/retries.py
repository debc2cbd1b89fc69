from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from plangate.core.runtime.errors import ProviderError, as_provider_error

T = TypeVar("T")

AttemptHook = Callable[[int, str, ProviderError | None], None]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_seconds: float = 1.0


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Wait before the attempt that follows ``attempt`` (1-based): d, 2d, 4d, ..."""
    if attempt <= 0:
        return 0.0
    return policy.initial_delay_seconds * (2 ** (attempt - 1))


def should_retry(error: ProviderError, attempt: int, policy: RetryPolicy) -> bool:
    return error.retryable and attempt < max(1, policy.max_attempts)


class RetryExecutor:
    """Runs one logical provider call with bounded exponential backoff.

    The last ``ProviderError`` is re-raised unchanged once attempts run out or
    a non-retryable error shows up. Waiting uses ``sleep`` (``asyncio.sleep``
    by default) so only the call in flight is suspended.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    def _wait(self, retry_state: RetryCallState) -> float:
        return backoff_delay(self.policy, retry_state.attempt_number)

    def _retry(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        exc = outcome.exception()
        return isinstance(exc, ProviderError) and should_retry(exc, retry_state.attempt_number, self.policy)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        provider_id: str,
        on_attempt: AttemptHook | None = None,
    ) -> T:
        attempt_no = 0

        async def _attempt() -> T:
            nonlocal attempt_no
            attempt_no += 1
            try:
                value = await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                err = as_provider_error(exc, provider_id=provider_id)
                if on_attempt:
                    on_attempt(attempt_no, "error", err)
                if err is exc:
                    raise
                raise err from exc
            if on_attempt:
                on_attempt(attempt_no, "ok", None)
            return value

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.policy.max_attempts)),
            wait=self._wait,
            retry=self._retry,
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(_attempt)
