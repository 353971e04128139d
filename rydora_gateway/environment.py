from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from rydora_gateway.settings import Settings

ENVIRONMENT_HEADER = "x-environment"

logger = logging.getLogger("uvicorn.error")


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, hint: str | None) -> Environment:
        if hint is not None and hint.strip().lower() == cls.PRODUCTION.value:
            return cls.PRODUCTION
        return cls.DEVELOPMENT


@dataclass(frozen=True, slots=True)
class ProviderEndpoints:
    default: str
    development: str | None = None
    production: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> ProviderEndpoints:
        return cls(
            default=settings.rydora_api_base_url,
            development=settings.rydora_api_base_dev_url,
            production=settings.rydora_api_base_url_prod,
        )


class EnvironmentResolver:
    """Maps the per-request environment hint onto a provider base URL."""

    def __init__(self, endpoints: ProviderEndpoints) -> None:
        self._endpoints = endpoints

    @property
    def endpoints(self) -> ProviderEndpoints:
        return self._endpoints

    def resolve(self, hint: str | None) -> str:
        environment = Environment.parse(hint)
        if environment is Environment.PRODUCTION:
            selected = self._endpoints.production
        else:
            selected = self._endpoints.development
        base_url = (selected or self._endpoints.default).rstrip("/")
        logger.debug(
            "environment_resolved environment=%s base_url=%s",
            environment.value,
            base_url,
        )
        return base_url
