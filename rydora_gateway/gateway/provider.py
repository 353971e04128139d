from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from rydora_gateway.errors import UpstreamStatusError
from rydora_gateway.fallback import PathFallbackInvoker
from rydora_gateway.gateway.credentials import CredentialSelector
from rydora_gateway.gateway.sessions import SessionData
from rydora_gateway.normalizer import RecordKind, empty_for_shape, normalize
from rydora_gateway.operations import ListShape, OperationCatalog, UpstreamOperation
from rydora_gateway.upstream import UpstreamClientFactory, UpstreamResponse

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True, slots=True)
class CallContext:
    """Per-request inputs that decide where a provider call goes and as whom."""

    session: SessionData | None
    headers: Mapping[str, str]
    environment_hint: str | None


class ProviderGateway:
    def __init__(
        self,
        catalog: OperationCatalog,
        client_factory: UpstreamClientFactory,
        credential_selector: CredentialSelector,
        invoker: PathFallbackInvoker | None = None,
    ) -> None:
        self.catalog = catalog
        self.client_factory = client_factory
        self.credential_selector = credential_selector
        self.invoker = invoker or PathFallbackInvoker()

    def operation(self, name: str) -> UpstreamOperation:
        return self.catalog[name]

    def forward_headers(self, context: CallContext) -> dict[str, str]:
        credential = self.credential_selector.select(context.session, context.headers)
        return credential.as_headers()

    async def call(
        self,
        name: str,
        context: CallContext,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        **path_values: Any,
    ) -> UpstreamResponse:
        operation = self.catalog[name]
        paths = operation.render_paths(**path_values)
        headers = self.forward_headers(context)
        async with self.client_factory.for_environment(
            context.environment_hint, operation.timeout_seconds
        ) as client:
            if operation.method == "GET":
                return await self.invoker.invoke(
                    client,
                    paths,
                    operation=operation.description,
                    params=params,
                    headers=headers,
                )
            return await client.request(
                operation.method,
                paths[0],
                operation=operation.description,
                params=params,
                json=json,
                headers=headers,
            )

    async def fetch_list(
        self,
        name: str,
        context: CallContext,
        *,
        kind: RecordKind | None = None,
        page: int = 1,
        params: dict[str, Any] | None = None,
        **path_values: Any,
    ) -> Any:
        """Fetch a list operation and shape it for the frontend.

        Envelope operations are normalized through the record table for
        ``kind``; array operations pass the provider body through. A 404 on
        either becomes the empty value for that shape. Raw operations keep
        the provider's 404.
        """
        operation = self.catalog[name]
        try:
            response = await self.call(name, context, params=params, **path_values)
        except UpstreamStatusError as exc:
            if not exc.is_not_found or operation.list_shape is ListShape.RAW:
                raise
            logger.info(
                "upstream_not_found_as_empty operation=%s shape=%s",
                name,
                operation.list_shape.value,
            )
            return empty_for_shape(operation.list_shape, page)

        if operation.list_shape is ListShape.ENVELOPE and kind is not None:
            return normalize(response.body, kind, page)
        return response.body
