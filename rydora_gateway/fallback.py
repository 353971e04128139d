from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from rydora_gateway.errors import (
    UpstreamError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from rydora_gateway.upstream import UpstreamClient, UpstreamResponse, summarize_body

logger = logging.getLogger("uvicorn.error")


def should_try_next_path(exc: UpstreamError) -> bool:
    if isinstance(exc, UpstreamStatusError):
        return exc.is_not_found
    if isinstance(exc, UpstreamUnavailableError):
        return exc.is_timeout
    return False


class PathFallbackInvoker:
    """Issues one logical GET against an ordered list of candidate paths.

    A 404 or a timeout moves on to the next candidate; any other failure ends
    the chain immediately. Each candidate is tried at most once. When every
    candidate is exhausted the last observed error is raised.
    """

    async def invoke(
        self,
        client: UpstreamClient,
        paths: Sequence[str],
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> UpstreamResponse:
        if not paths:
            raise ValueError(f"No candidate paths configured for '{operation}'.")

        total = len(paths)
        for attempt, path in enumerate(paths, start=1):
            logger.info(
                "upstream_attempt operation=%s attempt=%d/%d base_url=%s path=%s",
                operation,
                attempt,
                total,
                client.base_url,
                path,
            )
            try:
                return await client.get(
                    path,
                    operation=operation,
                    params=params,
                    headers=headers,
                )
            except UpstreamError as exc:
                if not should_try_next_path(exc):
                    _log_chain_stop(operation, path, exc)
                    raise
                if attempt == total:
                    _log_chain_exhausted(operation, paths, exc)
                    raise
                logger.info(
                    "upstream_fallback operation=%s path=%s reason=%s",
                    operation,
                    path,
                    "timeout" if isinstance(exc, UpstreamUnavailableError) else "not_found",
                )

        raise RuntimeError(f"Fallback chain for '{operation}' ended without a result.")


def _log_chain_stop(operation: str, path: str, exc: UpstreamError) -> None:
    if isinstance(exc, UpstreamStatusError):
        logger.warning(
            "upstream_chain_stopped operation=%s path=%s status=%d body=%s",
            operation,
            path,
            exc.status_code,
            summarize_body(exc.body),
        )
        return
    logger.warning(
        "upstream_chain_stopped operation=%s path=%s error=%s",
        operation,
        path,
        exc,
    )


def _log_chain_exhausted(
    operation: str,
    paths: Sequence[str],
    exc: UpstreamError,
) -> None:
    status = exc.status_code if isinstance(exc, UpstreamStatusError) else None
    body = summarize_body(exc.body) if isinstance(exc, UpstreamStatusError) else None
    logger.warning(
        "upstream_chain_exhausted operation=%s paths=%s last_status=%s last_body=%s last_error=%s",
        operation,
        ",".join(paths),
        status,
        body,
        exc,
    )
