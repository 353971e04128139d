from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from rydora_gateway.environment import EnvironmentResolver
from rydora_gateway.errors import UpstreamStatusError, UpstreamUnavailableError

LOOKUP_TIMEOUT_SECONDS = 10.0
UPDATE_TIMEOUT_SECONDS = 15.0
DEFAULT_TIMEOUT_SECONDS = 30.0
HEAVY_TIMEOUT_SECONDS = 60.0

USER_AGENT = "Rydora-App/1.0"
_MAX_LOGGED_BODY_CHARS = 500

logger = logging.getLogger("uvicorn.error")


def _request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_message = str(exc).strip() or repr(exc)
    return {
        "error": error_message,
        "error_type": exc.__class__.__name__.strip() or "RequestError",
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            return response.json()
        except ValueError:
            return response.text
    try:
        return response.json()
    except ValueError:
        return response.text


def summarize_body(body: Any) -> str:
    text = body if isinstance(body, str) else repr(body)
    if len(text) > _MAX_LOGGED_BODY_CHARS:
        return text[:_MAX_LOGGED_BODY_CHARS] + "..."
    return text


@dataclass(slots=True)
class UpstreamResponse:
    status_code: int
    body: Any
    content: bytes
    headers: httpx.Headers
    path: str


class UpstreamClient:
    """httpx client bound to one provider base URL for one outbound call."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> UpstreamResponse:
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                path,
                params=_drop_empty_params(params),
                json=json,
                headers=headers,
            )
        except httpx.RequestError as exc:
            details = _request_error_details(exc)
            logger.warning(
                "upstream_request_error operation=%s method=%s path=%s error_type=%s "
                "is_timeout=%s error=%s",
                operation,
                method,
                path,
                details["error_type"],
                details["is_timeout"],
                details["error"],
            )
            raise UpstreamUnavailableError(
                operation=operation,
                path=path,
                error_type=details["error_type"],
                is_timeout=details["is_timeout"],
            ) from exc

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        body = _decode_body(response)
        logger.info(
            "upstream_response operation=%s method=%s base_url=%s path=%s status=%d elapsed_ms=%.2f",
            operation,
            method,
            self.base_url,
            path,
            response.status_code,
            elapsed_ms,
        )
        if response.status_code >= 400:
            raise UpstreamStatusError(
                status_code=response.status_code,
                body=body,
                path=path,
            )
        return UpstreamResponse(
            status_code=response.status_code,
            body=body,
            content=response.content,
            headers=response.headers,
            path=path,
        )

    async def get(self, path: str, **kwargs: Any) -> UpstreamResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> UpstreamResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> UpstreamResponse:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> UpstreamResponse:
        return await self.request("DELETE", path, **kwargs)


class UpstreamClientFactory:
    """Creates a fresh client per outbound call.

    Clients are never shared across calls because the base URL depends on the
    environment header of the request that triggered the call.
    """

    def __init__(
        self,
        resolver: EnvironmentResolver,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.resolver = resolver
        self.default_timeout_seconds = default_timeout_seconds
        self.transport = transport

    def create(self, base_url: str, timeout_seconds: float | None = None) -> UpstreamClient:
        return UpstreamClient(
            base_url=base_url,
            timeout_seconds=timeout_seconds or self.default_timeout_seconds,
            transport=self.transport,
        )

    def for_environment(
        self,
        environment_hint: str | None,
        timeout_seconds: float | None = None,
    ) -> UpstreamClient:
        return self.create(self.resolver.resolve(environment_hint), timeout_seconds)

    def external(self, timeout_seconds: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds or self.default_timeout_seconds),
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )


def _drop_empty_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    cleaned = {
        key: value
        for key, value in params.items()
        if value is not None and not (isinstance(value, str) and not value.strip())
    }
    return cleaned or None
