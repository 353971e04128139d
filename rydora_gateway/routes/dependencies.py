from __future__ import annotations

from typing import Any

from fastapi import Request

from rydora_gateway.environment import ENVIRONMENT_HEADER
from rydora_gateway.gateway.auth import SessionAuthenticator
from rydora_gateway.gateway.provider import CallContext, ProviderGateway
from rydora_gateway.gateway.sessions import RequestSession


def request_session(request: Request) -> RequestSession:
    session: RequestSession | None = getattr(request.state, "session", None)
    if session is None:
        session = RequestSession(session_id=None)
        request.state.session = session
    return session


def environment_hint(request: Request) -> str | None:
    return request.headers.get(ENVIRONMENT_HEADER)


def call_context(request: Request) -> CallContext:
    session = request_session(request)
    return CallContext(
        session=session.data,
        headers=request.headers,
        environment_hint=environment_hint(request),
    )


def provider_gateway(request: Request) -> ProviderGateway:
    return request.app.state.provider_gateway


def session_authenticator(request: Request) -> SessionAuthenticator:
    return request.app.state.authenticator


async def json_payload(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return await request.json()
    except ValueError:
        return None


async def json_object(request: Request) -> dict[str, Any]:
    payload = await json_payload(request)
    return payload if isinstance(payload, dict) else {}
