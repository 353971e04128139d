from __future__ import annotations

import asyncio
import json
import secrets
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from redis.asyncio import from_url as redis_from_url

from rydora_gateway.errors import SessionStoreError

if TYPE_CHECKING:
    import logging


@dataclass(slots=True)
class SessionData:
    user: dict[str, Any] | None = None
    provider_token: str | None = None


class SessionBackend(Protocol):
    async def get(self, session_id: str) -> SessionData | None: ...

    async def set(self, session_id: str, data: SessionData) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def close(self) -> None: ...


class AsyncKeyValueStore(Protocol):
    async def get(self, key: str) -> bytes | str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class KeyValueStoreFactory(Protocol):
    def __call__(self, redis_url: str) -> AsyncKeyValueStore: ...


class InMemorySessionStore:
    """Process-local session storage. Only valid for a single instance."""

    def __init__(self, ttl_seconds: int) -> None:
        self._ttl_seconds = ttl_seconds
        self._lock = asyncio.Lock()
        self._sessions: dict[str, tuple[float, SessionData]] = {}

    async def get(self, session_id: str) -> SessionData | None:
        async with self._lock:
            self._prune_locked()
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            _, data = entry
            return SessionData(user=data.user, provider_token=data.provider_token)

    async def set(self, session_id: str, data: SessionData) -> None:
        expires_at = time.time() + self._ttl_seconds
        snapshot = SessionData(user=data.user, provider_token=data.provider_token)
        async with self._lock:
            self._sessions[session_id] = (expires_at, snapshot)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def close(self) -> None:
        async with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def _prune_locked(self) -> None:
        now = time.time()
        expired = [key for key, (until, _) in self._sessions.items() if now >= until]
        for key in expired:
            self._sessions.pop(key, None)


class KeyValueSessionStore:
    def __init__(
        self,
        kv_store: AsyncKeyValueStore,
        ttl_seconds: int,
        key_prefix: str = "rydora:session:",
    ) -> None:
        self._kv_store = kv_store
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix

    async def get(self, session_id: str) -> SessionData | None:
        raw = await self._kv_store.get(self._key(session_id))
        if not raw:
            return None
        return _deserialize_session(raw)

    async def set(self, session_id: str, data: SessionData) -> None:
        await self._kv_store.set(
            self._key(session_id),
            _serialize_session(data),
            ttl_seconds=self._ttl_seconds,
        )

    async def delete(self, session_id: str) -> None:
        await self._kv_store.delete(self._key(session_id))

    async def close(self) -> None:
        await self._kv_store.close()

    def _key(self, session_id: str) -> str:
        return f"{self._key_prefix}{session_id}"


class RedisAsyncKeyValueStore:
    def __init__(self, redis_client: Any) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> bytes | str | None:
        value = await self._redis.get(key)
        if isinstance(value, (bytes, str)):
            return value
        return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def close(self) -> None:
        await self._redis.aclose()


def build_redis_key_value_store(redis_url: str) -> AsyncKeyValueStore:
    client = redis_from_url(redis_url, decode_responses=False)
    return RedisAsyncKeyValueStore(redis_client=client)


def build_session_store(
    ttl_seconds: int,
    redis_url: str | None = None,
    logger: logging.Logger | None = None,
    create_key_value_store: KeyValueStoreFactory | None = None,
) -> SessionBackend:
    if not redis_url:
        return InMemorySessionStore(ttl_seconds=ttl_seconds)

    factory = create_key_value_store or build_redis_key_value_store
    try:
        kv_store = factory(redis_url)
    except (RuntimeError, ValueError) as exc:
        if logger is not None:
            logger.warning(
                "session_redis_unavailable reason=%s fallback=in_memory",
                str(exc),
            )
        return InMemorySessionStore(ttl_seconds=ttl_seconds)
    return KeyValueSessionStore(kv_store=kv_store, ttl_seconds=ttl_seconds)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass(slots=True)
class RequestSession:
    """The session attached to one inbound request.

    Mutations are tracked so the middleware only writes back (and only issues
    a cookie) when a route actually changed something.
    """

    session_id: str | None
    data: SessionData = field(default_factory=SessionData)
    modified: bool = False
    destroyed: bool = False
    retired_session_id: str | None = None

    @property
    def user(self) -> dict[str, Any] | None:
        return self.data.user

    @property
    def provider_token(self) -> str | None:
        return self.data.provider_token

    def establish(
        self,
        user: dict[str, Any],
        provider_token: str | None = None,
    ) -> None:
        # A fresh id on every sign-in; the previous one is dropped by the middleware.
        previous = None if self.destroyed else self.session_id
        if previous is not None and self.retired_session_id is None:
            self.retired_session_id = previous
        self.session_id = new_session_id()
        self.destroyed = False
        self.data = SessionData(user=user, provider_token=provider_token)
        self.modified = True

    async def destroy(self, store: SessionBackend, failure_message: str) -> None:
        # In-memory state is cleared before the store call so a failing backend
        # can never leave the caller looking logged in.
        session_id = self.session_id
        self.data = SessionData()
        self.modified = False
        self.destroyed = True
        if session_id is None:
            return
        try:
            await store.delete(session_id)
        except Exception as exc:
            raise SessionStoreError(failure_message) from exc


def _serialize_session(data: SessionData) -> str:
    payload = {"user": data.user, "provider_token": data.provider_token}
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def _deserialize_session(raw: bytes | str) -> SessionData | None:
    try:
        decoded = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        payload = json.loads(decoded)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    token = payload.get("provider_token")
    return SessionData(
        user=user if isinstance(user, dict) else None,
        provider_token=token if isinstance(token, str) else None,
    )
