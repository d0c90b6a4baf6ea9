"""Server-side session storage and lifecycle."""

import json
import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from fastapi import Request
from jose import jws
from jose.exceptions import JWSError
from pydantic import ValidationError
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, delete, insert, select
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pocketid_dashboard.config import Settings
from pocketid_dashboard.auth.crypto import TokenCipher, is_encrypted
from pocketid_dashboard.auth.errors import SessionIntegrityError
from pocketid_dashboard.auth.models import SessionData, utcnow

logger = logging.getLogger(__name__)

COOKIE_SIGNING_ALGORITHM = "HS256"


class SessionStore(ABC):
    """Abstract base class for session storage.

    Stores are generic key/blob maps; each entry carries the time after
    which it may be garbage collected.
    """

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get(self, session_id: str) -> str | None:
        pass

    @abstractmethod
    async def set(self, session_id: str, blob: str, expires_at: datetime) -> None:
        pass

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def sweep_expired(self, now: datetime | None = None) -> int:
        pass


class InMemorySessionStore(SessionStore):
    """In-memory session store for development."""

    def __init__(self):
        self._sessions: dict[str, tuple[str, datetime]] = {}

    async def get(self, session_id: str) -> str | None:
        if session_id not in self._sessions:
            return None

        blob, expires_at = self._sessions[session_id]
        if utcnow() > expires_at:
            del self._sessions[session_id]
            return None

        return blob

    async def set(self, session_id: str, blob: str, expires_at: datetime) -> None:
        self._sessions[session_id] = (blob, expires_at)

    async def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if expires_at < now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Redis-backed session store. Expiry is handled by Redis TTLs."""

    def __init__(self, redis_url: str):
        import redis.asyncio as redis
        self._redis = redis.from_url(redis_url, decode_responses=True)
        self._session_prefix = "pocketid:session:"

    async def close(self) -> None:
        await self._redis.aclose()

    async def get(self, session_id: str) -> str | None:
        return await self._redis.get(f"{self._session_prefix}{session_id}")

    async def set(self, session_id: str, blob: str, expires_at: datetime) -> None:
        ttl_seconds = max(1, int((expires_at - utcnow()).total_seconds()))
        await self._redis.setex(f"{self._session_prefix}{session_id}", ttl_seconds, blob)

    async def destroy(self, session_id: str) -> None:
        await self._redis.delete(f"{self._session_prefix}{session_id}")

    async def sweep_expired(self, now: datetime | None = None) -> int:
        return 0


metadata = MetaData()

sessions_table = Table(
    "sessions",
    metadata,
    Column("sid", String(255), primary_key=True),
    Column("sess", Text, nullable=False),
    Column("expired", DateTime, nullable=False, index=True),
)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DatabaseSessionStore(SessionStore):
    """Relational session store (``sessions`` table) via SQLAlchemy."""

    def __init__(self, database_url: str, engine: AsyncEngine | None = None):
        self._database_url = database_url
        self._engine = engine or create_async_engine(database_url)

    async def initialize(self) -> None:
        url = make_url(self._database_url)
        if url.drivername.startswith("sqlite") and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def get(self, session_id: str) -> str | None:
        query = select(sessions_table.c.sess, sessions_table.c.expired).where(
            sessions_table.c.sid == session_id
        )
        async with self._engine.connect() as conn:
            row = (await conn.execute(query)).first()

        if row is None:
            return None
        if row.expired < _naive_utc(utcnow()):
            await self.destroy(session_id)
            return None
        return row.sess

    async def set(self, session_id: str, blob: str, expires_at: datetime) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(delete(sessions_table).where(sessions_table.c.sid == session_id))
            await conn.execute(
                insert(sessions_table).values(
                    sid=session_id, sess=blob, expired=_naive_utc(expires_at)
                )
            )

    async def destroy(self, session_id: str) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(delete(sessions_table).where(sessions_table.c.sid == session_id))

    async def sweep_expired(self, now: datetime | None = None) -> int:
        cutoff = _naive_utc(now or utcnow())
        async with self._engine.begin() as conn:
            result = await conn.execute(
                delete(sessions_table).where(sessions_table.c.expired < cutoff)
            )
        return result.rowcount or 0


def create_session_store(settings: Settings) -> SessionStore:
    """Build the session store selected by ``SESSION_BACKEND``."""
    if settings.session_backend == "redis":
        if not settings.redis_url:
            raise ValueError("SESSION_BACKEND=redis requires REDIS_URL")
        return RedisSessionStore(settings.redis_url)
    if settings.session_backend == "database":
        return DatabaseSessionStore(settings.database_url)

    if settings.is_production:
        logger.warning("Using in-memory session store - not suitable for production")
    return InMemorySessionStore()


def has_valid_user(record: dict[str, Any]) -> bool:
    """True when the raw record carries a user with a non-empty id."""
    user = record.get("user")
    return isinstance(user, dict) and isinstance(user.get("id"), str) and bool(user["id"])


class SessionCodec:
    """Converts between stored session records and the decrypted view.

    ``decode`` decrypts the token set; ``encode`` re-encrypts it whenever
    both a user and a token set are present.
    """

    def __init__(self, cipher: TokenCipher):
        self._cipher = cipher

    def decode(self, record: dict[str, Any]) -> SessionData:
        token_set = record.get("tokenSet")
        if token_set is not None:
            token_set = self._cipher.decrypt(token_set)
            if is_encrypted(token_set) or (isinstance(token_set, dict) and "encrypted" in token_set):
                raise SessionIntegrityError("Stored token set could not be decrypted")
            record = {**record, "tokenSet": token_set}

        try:
            return SessionData.model_validate(record)
        except ValidationError as e:
            raise SessionIntegrityError(f"Malformed session record: {e.error_count()} errors") from e

    def encode(self, data: SessionData) -> dict[str, Any]:
        record = data.model_dump(mode="json", by_alias=True, exclude_none=True)
        if data.user is not None and data.token_set is not None:
            record["tokenSet"] = self._cipher.encrypt(record["tokenSet"])
        return record


class SessionManager:
    """Manages session records, identifiers and cookie signing."""

    def __init__(self, store: SessionStore, settings: Settings):
        self.settings = settings
        self._store = store
        self.codec = SessionCodec(TokenCipher(settings.session_secret))

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.settings.session_max_age_seconds)

    def generate_session_id(self) -> str:
        """Generate a secure random session ID."""
        return secrets.token_urlsafe(32)

    def sign(self, session_id: str) -> str:
        return jws.sign(
            {"sid": session_id}, self.settings.session_secret, algorithm=COOKIE_SIGNING_ALGORITHM
        )

    def unsign(self, cookie_value: str) -> str | None:
        """Return the session id from a signed cookie, or None if tampered."""
        try:
            payload = jws.verify(
                cookie_value, self.settings.session_secret, algorithms=[COOKIE_SIGNING_ALGORITHM]
            )
            session_id = json.loads(payload).get("sid")
        except (JWSError, ValueError, AttributeError) as e:
            logger.warning(f"Rejected session cookie: {e}")
            return None
        return session_id if isinstance(session_id, str) and session_id else None

    async def load_record(self, session_id: str) -> dict[str, Any] | None:
        """Read the raw (still encrypted) record."""
        blob = await self._store.get(session_id)
        if blob is None:
            return None
        try:
            record = json.loads(blob)
        except ValueError as e:
            raise SessionIntegrityError("Stored session is not valid JSON") from e
        if not isinstance(record, dict):
            raise SessionIntegrityError("Stored session is not an object")
        return record

    async def load(self, session_id: str) -> SessionData | None:
        record = await self.load_record(session_id)
        if record is None:
            return None
        return self.codec.decode(record)

    async def save(self, session_id: str, data: SessionData) -> None:
        blob = json.dumps(self.codec.encode(data))
        await self._store.set(session_id, blob, utcnow() + self.max_age)

    async def update(self, session_id: str, mutate: Callable[[SessionData], None]) -> bool:
        """Read-modify-write a stored session. False if it no longer exists."""
        data = await self.load(session_id)
        if data is None:
            return False
        mutate(data)
        await self.save(session_id, data)
        return True

    async def destroy(self, session_id: str) -> None:
        await self._store.destroy(session_id)
        logger.info("Destroyed session")


class SessionContext:
    """Typed per-request view of the caller's session.

    Created by the session middleware and threaded to handlers through
    ``request.state.session``. Changes are persisted at the end of the
    request unless a handler saved or destroyed the session explicitly.
    """

    def __init__(
        self,
        manager: SessionManager,
        session_id: str | None = None,
        data: SessionData | None = None,
    ):
        self.manager = manager
        self.id = session_id
        self.data = data or SessionData()
        self.destroyed = False
        self.issued = False
        self._snapshot = self.data.model_dump()

    @property
    def changed(self) -> bool:
        return self.data.model_dump() != self._snapshot

    async def save(self) -> None:
        if self.destroyed:
            return
        if self.id is None:
            if self.data.is_empty:
                return
            self.id = self.manager.generate_session_id()
            self.issued = True
        await self.manager.save(self.id, self.data)
        self._snapshot = self.data.model_dump()

    async def destroy(self) -> None:
        if self.id is not None:
            await self.manager.destroy(self.id)
        self.id = None
        self.data = SessionData()
        self.destroyed = True
        self._snapshot = self.data.model_dump()

    async def regenerate(self) -> None:
        """Issue a new session id, carrying every field forward."""
        if self.id is None and self.data.is_empty:
            return

        data = self.data.model_copy(deep=True)
        if self.id is not None:
            await self.manager.destroy(self.id)

        self.id = self.manager.generate_session_id()
        self.data = data
        self.destroyed = False
        self.issued = True
        await self.manager.save(self.id, self.data)
        self._snapshot = self.data.model_dump()


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager
