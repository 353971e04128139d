from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request

from rydora_gateway.environment import Environment, EnvironmentResolver
from rydora_gateway.routes.dependencies import environment_hint

SERVICE_NAME = "Rydora-US API"
APP_NAME = "Rydora"
APP_VERSION = "1.0.0"

router = APIRouter(prefix="/api", tags=["general"])


@router.get("/health")
async def api_health() -> dict[str, str]:
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
    }


@router.get("/config")
async def app_config() -> dict[str, Any]:
    return {
        "appName": APP_NAME,
        "version": APP_VERSION,
        "features": {
            "ezPass": True,
            "parkingViolations": True,
            "nycViolations": True,
            "payments": True,
        },
    }


@router.get("/rydora-api-config")
async def rydora_api_config(request: Request) -> dict[str, Any]:
    resolver: EnvironmentResolver = request.app.state.resolver
    hint = environment_hint(request)
    endpoints = resolver.endpoints
    # Base URLs only. The API key is never exposed here.
    return {
        "environment": Environment.parse(hint).value,
        "currentRydoraApiUrl": resolver.resolve(hint),
        "allConfigs": {
            "baseUrl": endpoints.default,
            "baseUrlDev": endpoints.development or endpoints.default,
            "baseUrlProd": endpoints.production or endpoints.default,
        },
    }
