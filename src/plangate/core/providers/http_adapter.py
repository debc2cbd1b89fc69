from __future__ import annotations

import json
from time import perf_counter

import httpx

from plangate.core.providers.base import ProviderAdapter, ProviderRequest, ProviderResponse
from plangate.core.providers.vendors import VendorSpec
from plangate.core.runtime.errors import ErrorType, ProviderError, as_provider_error
from plangate.core.telemetry.logging import get_logger


class HttpProviderAdapter(ProviderAdapter):
    """Generic JSON-over-HTTP adapter driven by a ``VendorSpec``."""

    def __init__(
        self,
        spec: VendorSpec,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.spec = spec
        self.provider_id = spec.provider_id
        self.api_key = (api_key or "").strip() or None
        self.model = (model or "").strip() or spec.default_model
        self.base_url = ((base_url or "").strip() or spec.base_url).rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds or spec.timeout_seconds
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger(f"plangate.providers.{self.provider_id}")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) or not self.spec.requires_api_key

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self.spec.extra_headers}
        if self.spec.auth_header and self.api_key:
            headers[self.spec.auth_header] = f"{self.spec.auth_prefix}{self.api_key}"
        return headers

    async def send(self, request: ProviderRequest) -> ProviderResponse:
        if not self.has_credentials:
            raise ProviderError(
                f"{self.provider_id} API key is not configured",
                error_type=ErrorType.AUTH_ERROR,
                provider_id=self.provider_id,
            )

        url = self.spec.url_for(self.base_url, request.model)
        started = perf_counter()
        try:
            resp = await self.client.post(
                url,
                json=self.spec.build_body(request),
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise as_provider_error(exc, provider_id=self.provider_id) from exc
        latency_ms = int((perf_counter() - started) * 1000)

        if not 200 <= resp.status_code < 300:
            self.logger.warning(
                "provider_http_error",
                provider_id=self.provider_id,
                status_code=resp.status_code,
                body=resp.text[:200],
            )
            raise ProviderError.from_status(
                self.provider_id,
                resp.status_code,
                body=resp.text,
                extra_retryable_statuses=self.spec.extra_retryable_statuses,
            )

        return self._parse(resp, request, latency_ms)

    def _parse(self, resp: httpx.Response, request: ProviderRequest, latency_ms: int) -> ProviderResponse:
        try:
            body = resp.json()
            if not isinstance(body, dict):
                raise ValueError("response body is not a JSON object")
            content = self.spec.extract_content(body)
            tokens = self.spec.extract_tokens(body)
        except (json.JSONDecodeError, ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            err = ProviderError(
                f"Failed to parse {self.provider_id} response: {exc}",
                error_type=ErrorType.INVALID_RESPONSE,
                provider_id=self.provider_id,
            )
            raise err from exc

        return ProviderResponse(
            content=content,
            model=request.model,
            provider_id=self.provider_id,
            tokens_used=tokens,
            latency_ms=latency_ms,
        )

    async def is_healthy(self) -> bool:
        if not self.has_credentials:
            return False
        if self.spec.health_method is None:
            return True
        try:
            resp = await self.client.request(
                self.spec.health_method,
                self.base_url,
                timeout=self.spec.health_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            self.logger.debug("health_probe_failed", provider_id=self.provider_id, error=str(exc))
            return False
        return resp.status_code == 200

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
