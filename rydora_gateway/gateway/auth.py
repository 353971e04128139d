from __future__ import annotations

import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from rydora_gateway.errors import (
    AuthenticationError,
    UpstreamError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from rydora_gateway.gateway.credentials import extract_bearer_token
from rydora_gateway.gateway.sessions import RequestSession, SessionBackend
from rydora_gateway.settings import Settings
from rydora_gateway.upstream import (
    DEFAULT_TIMEOUT_SECONDS,
    LOOKUP_TIMEOUT_SECONDS,
    UpstreamClientFactory,
)

SIGNIN_PATH = "/UserAuth/signin"
WHOAMI_PATH = "/UserAuth/me"
LOCAL_TOKEN_TYPE = "mock-rydora-token"
LOCAL_TOKEN_ALGORITHM = "HS256"
LOCAL_TOKEN_LIFETIME = timedelta(hours=24)
DEFAULT_IMAGE_URL = "/images/rydora-logo.png"

logger = logging.getLogger("uvicorn.error")

# (field, default) pairs applied to the provider sign-in result.
PROFILE_DEFAULTS: tuple[tuple[str, Any], ...] = (
    ("firstName", "User"),
    ("lastName", "User"),
    ("middleName", None),
    ("nickName", ""),
    ("phone", ""),
    ("addressLine1", ""),
    ("addressLine2", None),
    ("city", ""),
    ("cityId", ""),
    ("stateId", 1),
    ("birthDate", None),
    ("employerId", ""),
    ("isOwner", False),
    ("isRenter", False),
    ("isEmployee", False),
    ("isAdmin", False),
    ("isEmployeeRequestAccepted", False),
    ("isCompany", False),
    ("imageURL", DEFAULT_IMAGE_URL),
)
PROFILE_FIELDS: tuple[str, ...] = ("id", "email", *(name for name, _ in PROFILE_DEFAULTS))


def _value_or(result: Mapping[str, Any], key: str, default: Any) -> Any:
    value = result.get(key)
    return default if value is None or value == "" else value


def profile_from_signin(result: Mapping[str, Any], email: str) -> dict[str, Any]:
    profile: dict[str, Any] = {
        "id": _value_or(result, "id", 1),
        "email": _value_or(result, "email", email),
    }
    for name, default in PROFILE_DEFAULTS:
        profile[name] = _value_or(result, name, default)
    return profile


def signin_result(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict) or payload.get("reason") != 0:
        return None
    result = payload.get("result")
    return result if isinstance(result, dict) and result else None


def profile_from_whoami(result: Mapping[str, Any]) -> dict[str, Any]:
    return {name: result.get(name) for name in PROFILE_FIELDS}


@dataclass(frozen=True, slots=True)
class LocalUser:
    id: int
    email: str
    password: str
    first_name: str
    last_name: str
    phone: str
    address_line1: str
    city: str
    state_id: int
    is_owner: bool
    is_admin: bool
    image_url: str

    def profile(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "addressLine1": self.address_line1,
            "city": self.city,
            "stateId": self.state_id,
            "isOwner": self.is_owner,
            "isAdmin": self.is_admin,
            "imageURL": self.image_url,
        }


DEFAULT_LOCAL_USERS: tuple[LocalUser, ...] = (
    LocalUser(
        id=1,
        email="admin@rydora.com",
        password="password",
        first_name="Admin",
        last_name="User",
        phone="347-444-2424",
        address_line1="34 Middletown Ave",
        city="Atlantic Highlands",
        state_id=1,
        is_owner=True,
        is_admin=True,
        image_url="/images/_img0011.jpg",
    ),
)


class LocalCredentialTable:
    """Development-only credential table used when the provider is unreachable."""

    def __init__(self, users: tuple[LocalUser, ...] | list[LocalUser] = DEFAULT_LOCAL_USERS) -> None:
        self._users = {user.email.lower(): user for user in users}

    def authenticate(self, email: str, password: str) -> LocalUser | None:
        user = self._users.get(email.strip().lower())
        if user is None or not password:
            return None
        if not hmac.compare_digest(user.password.encode("utf-8"), password.encode("utf-8")):
            return None
        return user


def issue_local_token(user: LocalUser, secret: str, now: datetime | None = None) -> str:
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "userId": user.id,
        "email": user.email,
        "isOwner": user.is_owner,
        "type": LOCAL_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + LOCAL_TOKEN_LIFETIME).timestamp()),
    }
    return jwt.encode(claims, secret, algorithm=LOCAL_TOKEN_ALGORITHM)


def decode_local_token(token: str, secret: str) -> dict[str, Any]:
    claims = jwt.decode(token, secret, algorithms=[LOCAL_TOKEN_ALGORITHM])
    if claims.get("type") != LOCAL_TOKEN_TYPE:
        raise jwt.InvalidTokenError("Not a locally issued token.")
    return claims


@dataclass(slots=True)
class LoginResult:
    token: str
    user: dict[str, Any]
    via_fallback: bool = False

    def to_response(self) -> dict[str, Any]:
        return {"success": True, "token": self.token, "user": self.user}


class SessionAuthenticator:
    """Owns the login, logout and identity lookups for one browser session."""

    def __init__(
        self,
        settings: Settings,
        client_factory: UpstreamClientFactory,
        session_store: SessionBackend,
        local_credentials: LocalCredentialTable | None = None,
    ) -> None:
        self._settings = settings
        self._client_factory = client_factory
        self._session_store = session_store
        self._local_credentials = local_credentials
        if local_credentials is None and settings.mock_auth_active:
            self._local_credentials = LocalCredentialTable()

    @property
    def local_fallback_enabled(self) -> bool:
        return self._local_credentials is not None

    async def login(
        self,
        session: RequestSession,
        email: str,
        password: str,
        environment_hint: str | None,
    ) -> LoginResult:
        try:
            payload = await self._provider_signin(email, password, environment_hint)
        except UpstreamStatusError as exc:
            if exc.status_code < 500:
                logger.info("login_rejected status=%d", exc.status_code)
                raise AuthenticationError() from exc
            return self._login_locally(session, email, password, exc)
        except UpstreamUnavailableError as exc:
            return self._login_locally(session, email, password, exc)

        result = signin_result(payload)
        if result is None:
            logger.info("login_rejected reason=business_failure")
            raise AuthenticationError()

        user = profile_from_signin(result, email)
        token = result.get("token")
        session.establish(user=user, provider_token=token if isinstance(token, str) else None)
        logger.info("login_succeeded source=provider has_token=%s", bool(token))
        return LoginResult(token=token or "", user=user)

    async def _provider_signin(
        self,
        email: str,
        password: str,
        environment_hint: str | None,
    ) -> Any:
        headers = {"X-API-Key": self._settings.rydora_api_key}
        async with self._client_factory.for_environment(
            environment_hint, DEFAULT_TIMEOUT_SECONDS
        ) as client:
            response = await client.post(
                SIGNIN_PATH,
                operation="sign in",
                json={"email": email, "password": password},
                headers=headers,
            )
        return response.body

    def _login_locally(
        self,
        session: RequestSession,
        email: str,
        password: str,
        cause: UpstreamError,
    ) -> LoginResult:
        if self._local_credentials is None:
            if isinstance(cause, UpstreamUnavailableError):
                raise cause
            status = cause.status_code if isinstance(cause, UpstreamStatusError) else None
            raise UpstreamUnavailableError(
                operation="sign in",
                path=SIGNIN_PATH,
                error_type=f"HTTP {status}",
            ) from cause

        logger.warning("login_fallback reason=%s", cause.__class__.__name__)
        user = self._local_credentials.authenticate(email, password)
        if user is None:
            raise AuthenticationError()
        token = issue_local_token(user, self._settings.jwt_secret)
        profile = user.profile()
        session.establish(user=profile)
        return LoginResult(token=token, user=profile, via_fallback=True)

    async def current_user(
        self,
        session: RequestSession,
        headers: Mapping[str, str],
        environment_hint: str | None,
    ) -> dict[str, Any]:
        token = extract_bearer_token(headers)
        if token:
            if session.user is not None and session.provider_token == token:
                return session.user
            profile = None
            if not self._is_local_token(token):
                profile = await self._validate_token(token, environment_hint)
            if profile is not None:
                session.establish(user=profile, provider_token=token)
                return profile

        if session.user is None:
            raise AuthenticationError("Not authenticated")
        return session.user

    def _is_local_token(self, token: str) -> bool:
        if self._local_credentials is None:
            return False
        try:
            decode_local_token(token, self._settings.jwt_secret)
        except jwt.InvalidTokenError:
            return False
        return True

    async def _validate_token(
        self,
        token: str,
        environment_hint: str | None,
    ) -> dict[str, Any] | None:
        try:
            async with self._client_factory.for_environment(
                environment_hint, LOOKUP_TIMEOUT_SECONDS
            ) as client:
                response = await client.get(
                    WHOAMI_PATH,
                    operation="validate token",
                    headers={"Authorization": f"Bearer {token}"},
                )
        except UpstreamError as exc:
            logger.info("token_validation_failed error=%s", exc.__class__.__name__)
            return None
        body = response.body
        if isinstance(body, dict) and isinstance(body.get("result"), dict):
            return profile_from_whoami(body["result"])
        return None

    async def logout(self, session: RequestSession) -> None:
        await session.destroy(self._session_store, "Could not log out, please try again")
        logger.info("session_destroyed reason=logout")

    async def clear(self, session: RequestSession) -> None:
        await session.destroy(self._session_store, "Could not clear session")
        logger.info("session_destroyed reason=environment_change")
