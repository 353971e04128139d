from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from rydora_gateway.routes.dependencies import (
    environment_hint,
    json_object,
    request_session,
    session_authenticator,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
async def login(request: Request) -> dict[str, Any]:
    payload = await json_object(request)
    email = payload.get("email")
    password = payload.get("password")
    if not isinstance(email, str) or not email.strip() or not isinstance(password, str) or not password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    result = await session_authenticator(request).login(
        request_session(request),
        email.strip(),
        password,
        environment_hint(request),
    )
    return result.to_response()


@router.post("/logout")
async def logout(request: Request) -> dict[str, str]:
    await session_authenticator(request).logout(request_session(request))
    return {"message": "Logged out successfully"}


@router.post("/clear-session")
async def clear_session(request: Request) -> dict[str, str]:
    await session_authenticator(request).clear(request_session(request))
    return {"message": "Session cleared for environment change"}


@router.get("/me")
async def me(request: Request) -> dict[str, Any]:
    user = await session_authenticator(request).current_user(
        request_session(request),
        request.headers,
        environment_hint(request),
    )
    return {"user": user}


@router.get("/test")
async def auth_test() -> dict[str, str]:
    return {
        "message": "Auth API is working",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
