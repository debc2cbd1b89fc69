from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from enum import Enum

import httpx


class ErrorType(str, Enum):
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    AUTH_ERROR = "auth_error"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    CIRCUIT_OPEN = "circuit_open"


# Used only when no HTTP status is available.
_RETRYABLE_TYPES = frozenset({ErrorType.SERVER_ERROR, ErrorType.RATE_LIMIT, ErrorType.TIMEOUT})


def is_retryable_status(status_code: int, extra_statuses: Iterable[int] = ()) -> bool:
    return status_code == 429 or 500 <= status_code <= 599 or status_code in set(extra_statuses)


def is_retryable(error_type: ErrorType, status_code: int | None = None, extra_statuses: Iterable[int] = ()) -> bool:
    if error_type in {ErrorType.INVALID_RESPONSE, ErrorType.CIRCUIT_OPEN}:
        return False
    if status_code is not None:
        return is_retryable_status(status_code, extra_statuses)
    return error_type in _RETRYABLE_TYPES


def error_type_for_status(status_code: int, server_error_statuses: Iterable[int] = ()) -> ErrorType:
    if status_code == 429:
        return ErrorType.RATE_LIMIT
    if status_code in {401, 403}:
        return ErrorType.AUTH_ERROR
    if status_code == 408:
        return ErrorType.TIMEOUT
    if status_code >= 500 or status_code in set(server_error_statuses):
        return ErrorType.SERVER_ERROR
    return ErrorType.CLIENT_ERROR


class ProviderError(Exception):
    """Typed failure of a single provider call.

    ``retryable`` is derived from the error type, the HTTP status and the
    vendor's extra retryable statuses; it cannot be passed in.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType,
        provider_id: str,
        status_code: int | None = None,
        extra_retryable_statuses: Iterable[int] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.provider_id = provider_id
        self.status_code = status_code
        self.retryable = is_retryable(error_type, status_code, extra_retryable_statuses)

    @classmethod
    def from_status(
        cls,
        provider_id: str,
        status_code: int,
        *,
        body: str = "",
        extra_retryable_statuses: Iterable[int] = (),
    ) -> ProviderError:
        extra = tuple(extra_retryable_statuses)
        message = f"{provider_id} API error: HTTP {status_code}"
        if body:
            message = f"{message}: {_compact_message(body, max_len=200)}"
        return cls(
            message,
            error_type=error_type_for_status(status_code, extra),
            provider_id=provider_id,
            status_code=status_code,
            extra_retryable_statuses=extra,
        )

    @classmethod
    def circuit_open(cls, provider_id: str) -> ProviderError:
        return cls(
            f"circuit breaker open for {provider_id}",
            error_type=ErrorType.CIRCUIT_OPEN,
            provider_id=provider_id,
        )

    def to_log_fields(self) -> dict:
        return {
            "error_type": self.error_type.value,
            "provider_id": self.provider_id,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "error": _compact_message(self.message),
        }

    def __repr__(self) -> str:
        return (
            f"ProviderError(error_type={self.error_type.value!r}, provider_id={self.provider_id!r}, "
            f"status_code={self.status_code!r}, retryable={self.retryable!r})"
        )


def _compact_message(message: str, max_len: int = 220) -> str:
    msg = re.sub(r"\s+", " ", message)
    return msg.strip()[:max_len]


def as_provider_error(exc: BaseException, *, provider_id: str) -> ProviderError:
    """Classify an arbitrary exception raised below an adapter boundary."""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        error_type = ErrorType.TIMEOUT
    elif isinstance(exc, httpx.TransportError):
        error_type = ErrorType.SERVER_ERROR
    elif isinstance(exc, (ValueError, KeyError, IndexError, TypeError)):
        error_type = ErrorType.INVALID_RESPONSE
    else:
        lowered = f"{exc.__class__.__name__} {exc}".lower()
        if any(k in lowered for k in ["unauthorized", "forbidden", "auth"]):
            error_type = ErrorType.AUTH_ERROR
        elif any(k in lowered for k in ["unavailable", "connection", "reset"]):
            error_type = ErrorType.SERVER_ERROR
        else:
            error_type = ErrorType.CLIENT_ERROR

    err = ProviderError(
        f"{provider_id}: {compact_error_summary(exc)}",
        error_type=error_type,
        provider_id=provider_id,
    )
    err.__cause__ = exc
    return err


def compact_error_summary(exc: BaseException, max_len: int = 220) -> str:
    return f"{exc.__class__.__name__}: {_compact_message(str(exc), max_len=max_len)}"
