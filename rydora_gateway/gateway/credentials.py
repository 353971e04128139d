from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rydora_gateway.gateway.sessions import SessionData

logger = logging.getLogger("uvicorn.error")


class CredentialSource(str, Enum):
    SESSION_TOKEN = "session_token"
    CLIENT_BEARER = "client_bearer"
    STATIC_API_KEY = "static_api_key"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class Credential:
    source: CredentialSource
    token: str | None = None

    @property
    def authorization(self) -> str | None:
        if self.token is None:
            return None
        return f"Bearer {self.token}"

    def as_headers(self) -> dict[str, str]:
        authorization = self.authorization
        if authorization is None:
            return {}
        return {"Authorization": authorization}


NO_CREDENTIAL = Credential(source=CredentialSource.NONE)


class CredentialStrategy(Protocol):
    source: CredentialSource

    def resolve(
        self,
        session: SessionData | None,
        headers: Mapping[str, str],
    ) -> str | None: ...


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    auth_header = headers.get("authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SessionTokenStrategy:
    source = CredentialSource.SESSION_TOKEN

    def resolve(
        self,
        session: SessionData | None,
        headers: Mapping[str, str],
    ) -> str | None:
        if session is None or not session.provider_token:
            return None
        return session.provider_token


class ClientBearerStrategy:
    source = CredentialSource.CLIENT_BEARER

    def resolve(
        self,
        session: SessionData | None,
        headers: Mapping[str, str],
    ) -> str | None:
        return extract_bearer_token(headers)


class StaticApiKeyStrategy:
    source = CredentialSource.STATIC_API_KEY

    def __init__(self, api_key: str | None) -> None:
        self._api_key = api_key

    def resolve(
        self,
        session: SessionData | None,
        headers: Mapping[str, str],
    ) -> str | None:
        return self._api_key or None


class CredentialSelector:
    """Picks the one credential forwarded upstream, first match wins."""

    def __init__(self, strategies: Sequence[CredentialStrategy]) -> None:
        self._strategies = tuple(strategies)

    @classmethod
    def default(cls, static_api_key: str | None) -> CredentialSelector:
        return cls(
            [
                SessionTokenStrategy(),
                ClientBearerStrategy(),
                StaticApiKeyStrategy(static_api_key),
            ]
        )

    @property
    def sources(self) -> list[CredentialSource]:
        return [strategy.source for strategy in self._strategies]

    def select(
        self,
        session: SessionData | None,
        headers: Mapping[str, str],
    ) -> Credential:
        for strategy in self._strategies:
            token = strategy.resolve(session, headers)
            if token:
                logger.debug("credential_selected source=%s", strategy.source.value)
                return Credential(source=strategy.source, token=token)
        logger.debug("credential_selected source=%s", CredentialSource.NONE.value)
        return NO_CREDENTIAL
