"""Anonymous per-browser sessions keyed by a hashed client IP.

A "user" is identified by a salted SHA-256 of their IP address; each browser
holds an opaque session token in an HTTP-only cookie. Playlists created
through a session are attributed to its user for owner filtering.
"""

import asyncio
import hashlib
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from hyde.errors import StorageError
from hyde.storage import ObjectStore

SESSION_COOKIE_NAME = "hyde_session"
SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 365  # 1 year in seconds

_USER_PREFIX = "users/"
_SESSION_PREFIX = "sessions/"


def hash_ip(ip: str, salt: str) -> str:
    """Hash an IP address, salted with a server-side secret."""
    return hashlib.sha256(f"{salt}:{ip}".encode("utf-8")).hexdigest()


def generate_session_token() -> str:
    """Generate a cryptographically secure 64-character hex token."""
    return secrets.token_hex(32)


def get_client_ip(headers: Mapping[str, str]) -> str:
    """Extract the client IP from proxy headers, falling back to localhost."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    vercel_forwarded_for = headers.get("x-vercel-forwarded-for")
    if vercel_forwarded_for:
        return vercel_forwarded_for.split(",")[0].strip()

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip

    cf_connecting_ip = headers.get("cf-connecting-ip")
    if cf_connecting_ip:
        return cf_connecting_ip

    return "127.0.0.1"


@dataclass(frozen=True)
class SessionInfo:
    """A validated session and the user it belongs to."""

    session_id: str
    token: str
    user_id: str
    user_created_at: datetime
    session_created_at: datetime
    user_agent: str | None = None

    def to_dict(self) -> dict:
        return {
            "user": {"id": self.user_id, "created_at": self.user_created_at.isoformat()},
            "session": {"id": self.session_id, "created_at": self.session_created_at.isoformat()},
        }


class SessionManager:
    """Create, validate and touch sessions stored in the object store."""

    def __init__(self, store: ObjectStore, secret: str) -> None:
        self._store = store
        self._secret = secret
        self._lock = asyncio.Lock()

    async def _get_or_create_user(self, ip_hash: str) -> dict:
        key = f"{_USER_PREFIX}{ip_hash}.json"
        user = await asyncio.to_thread(self._store.read_json, key)
        now = datetime.now().isoformat()
        if user is None:
            user = {"id": str(uuid.uuid4()), "ip_hash": ip_hash, "created_at": now}
        user["last_seen_at"] = now
        await asyncio.to_thread(self._store.write_json, key, user)
        return user

    async def resolve(self, token: str | None) -> SessionInfo | None:
        """Return the session for ``token``, or None if it is unknown."""
        if not token:
            return None
        session = await asyncio.to_thread(
            self._store.read_json, f"{_SESSION_PREFIX}{token}.json"
        )
        if session is None:
            return None
        return SessionInfo(
            session_id=session["id"],
            token=token,
            user_id=session["user_id"],
            user_created_at=datetime.fromisoformat(session["user_created_at"]),
            session_created_at=datetime.fromisoformat(session["created_at"]),
            user_agent=session.get("user_agent"),
        )

    async def touch(self, token: str) -> None:
        """Update a session's ``last_seen_at``."""
        key = f"{_SESSION_PREFIX}{token}.json"
        async with self._lock:
            session = await asyncio.to_thread(self._store.read_json, key)
            if session is None:
                return
            session["last_seen_at"] = datetime.now().isoformat()
            await asyncio.to_thread(self._store.write_json, key, session)

    async def init_session(
        self,
        token: str | None,
        ip: str,
        user_agent: str | None = None,
    ) -> tuple[SessionInfo, bool]:
        """Validate an existing session or create a new one.

        Returns:
            Tuple of (session, is_new_session).
        """
        existing = await self.resolve(token)
        if existing is not None:
            await self.touch(existing.token)
            return existing, False

        async with self._lock:
            user = await self._get_or_create_user(hash_ip(ip, self._secret))
            new_token = generate_session_token()
            now = datetime.now().isoformat()
            session = {
                "id": str(uuid.uuid4()),
                "user_id": user["id"],
                "user_created_at": user["created_at"],
                "user_agent": user_agent,
                "created_at": now,
                "last_seen_at": now,
            }
            await asyncio.to_thread(
                self._store.write_json, f"{_SESSION_PREFIX}{new_token}.json", session
            )

        info = await self.resolve(new_token)
        if info is None:
            raise StorageError("Session could not be read back after creation")
        return info, True
