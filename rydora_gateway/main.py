from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from rydora_gateway.environment import EnvironmentResolver, ProviderEndpoints
from rydora_gateway.errors import (
    AuthenticationError,
    ConfigurationError,
    SessionStoreError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from rydora_gateway.fallback import PathFallbackInvoker
from rydora_gateway.gateway.auth import SessionAuthenticator
from rydora_gateway.gateway.credentials import CredentialSelector
from rydora_gateway.gateway.provider import ProviderGateway
from rydora_gateway.gateway.sessions import (
    RequestSession,
    SessionBackend,
    SessionData,
    build_session_store,
)
from rydora_gateway.operations import load_operation_catalog
from rydora_gateway.routes import auth as auth_routes
from rydora_gateway.routes import general as general_routes
from rydora_gateway.routes import provider as provider_routes
from rydora_gateway.settings import Settings, get_settings
from rydora_gateway.upstream import UpstreamClientFactory, summarize_body

app = FastAPI(
    title="Rydora Gateway",
    description="Session-authenticating proxy in front of the Rydora fleet API.",
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


@app.middleware("http")
async def session_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    store: SessionBackend | None = getattr(app.state, "session_store", None)
    settings: Settings | None = getattr(app.state, "settings", None)
    if store is None or settings is None:
        return await call_next(request)

    cookie_value = request.cookies.get(settings.session_cookie_name)
    data: SessionData | None = None
    if cookie_value:
        try:
            data = await store.get(cookie_value)
        except Exception as exc:
            # Requests proceed unauthenticated while the store is down.
            logger.warning(
                "session_store_unavailable operation=get error_type=%s error=%s",
                exc.__class__.__name__,
                exc,
            )
    # Unknown ids are dropped so a login always mints a fresh one.
    session = RequestSession(
        session_id=cookie_value if data is not None else None,
        data=data or SessionData(),
    )
    request.state.session = session

    response = await call_next(request)

    if session.retired_session_id is not None:
        try:
            await store.delete(session.retired_session_id)
        except Exception as exc:
            logger.warning(
                "session_store_unavailable operation=retire error_type=%s error=%s",
                exc.__class__.__name__,
                exc,
            )

    if session.modified and session.session_id is not None:
        try:
            await store.set(session.session_id, session.data)
        except Exception as exc:
            logger.error(
                "session_store_unavailable operation=set error_type=%s error=%s",
                exc.__class__.__name__,
                exc,
            )
            return JSONResponse(status_code=500, content={"message": "Could not save session"})
        response.set_cookie(
            key=settings.session_cookie_name,
            value=session.session_id,
            max_age=settings.session_ttl_seconds,
            path="/",
            domain=settings.session_cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite=settings.cookie_samesite,
        )
    elif session.destroyed and cookie_value:
        response.delete_cookie(
            key=settings.session_cookie_name,
            path="/",
            domain=settings.session_cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite=settings.cookie_samesite,
        )
    return response


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    catalog = load_operation_catalog(settings.upstream_paths_config_path)
    resolver = EnvironmentResolver(ProviderEndpoints.from_settings(settings))
    client_factory = UpstreamClientFactory(
        resolver=resolver,
        default_timeout_seconds=settings.upstream_timeout_seconds,
    )
    session_store = build_session_store(
        ttl_seconds=max(1, settings.session_ttl_seconds),
        redis_url=settings.redis_url,
        logger=logger,
    )
    app.state.settings = settings
    app.state.resolver = resolver
    app.state.client_factory = client_factory
    app.state.session_store = session_store
    app.state.provider_gateway = ProviderGateway(
        catalog=catalog,
        client_factory=client_factory,
        credential_selector=CredentialSelector.default(settings.static_api_key),
        invoker=PathFallbackInvoker(),
    )
    app.state.authenticator = SessionAuthenticator(
        settings=settings,
        client_factory=client_factory,
        session_store=session_store,
    )
    logger.info(
        (
            "startup complete app_env=%s base_url=%s operations=%d fallback_operations=%d "
            "session_store=%s "
            "static_api_key=%s local_auth_fallback=%s"
        ),
        settings.app_env,
        resolver.resolve(None),
        len(catalog),
        sum(1 for operation in catalog.values() if operation.uses_fallback),
        session_store.__class__.__name__,
        settings.static_api_key is not None,
        app.state.authenticator.local_fallback_enabled,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    session_store: SessionBackend | None = getattr(app.state, "session_store", None)
    if session_store is not None:
        await session_store.close()
    logger.info("shutdown complete")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


app.include_router(auth_routes.router)
app.include_router(general_routes.router)
app.include_router(provider_routes.router)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(_: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"message": exc.message},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(UpstreamStatusError)
async def upstream_status_handler(request: Request, exc: UpstreamStatusError) -> JSONResponse:
    logger.warning(
        "upstream_error_forwarded route=%s path=%s status=%d body=%s",
        request.url.path,
        exc.path,
        exc.status_code,
        summarize_body(exc.body),
    )
    return JSONResponse(status_code=exc.status_code, content=exc.body)


@app.exception_handler(UpstreamUnavailableError)
async def upstream_unavailable_handler(
    request: Request, exc: UpstreamUnavailableError
) -> JSONResponse:
    logger.warning(
        "upstream_unavailable route=%s path=%s error_type=%s is_timeout=%s",
        request.url.path,
        exc.path,
        exc.error_type,
        exc.is_timeout,
    )
    return JSONResponse(
        status_code=500,
        content={"reason": -1, "message": f"Failed to {exc.operation}"},
    )


@app.exception_handler(SessionStoreError)
async def session_store_handler(_: Request, exc: SessionStoreError) -> JSONResponse:
    logger.error("session_store_error message=%s cause=%r", exc.message, exc.__cause__)
    return JSONResponse(status_code=500, content={"message": exc.message})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(_: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    path = request.url.path
    if exc.status_code == 404 and path.startswith("/api/"):
        message = "API route not found" if exc.detail == "Not Found" else exc.detail
        return JSONResponse(status_code=404, content={"message": message, "path": path})
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content={"message": "Route not found", "path": path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )

