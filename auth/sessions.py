"""
auth/sessions.py -- Server-side session store and session cookie helpers.

A session binding maps an opaque token to a user id. The store is an explicit
capability injected into the authority (see auth/authority.py), not ambient
framework state.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) -- 256 bits of entropy, unguessable.

  Storage: only HMAC-SHA256(SECRET_KEY, token) is persisted. Deterministic,
       so resolve() is an O(1) primary-key lookup; keyed, so a copy of the
       database without SECRET_KEY cannot be turned into live cookies.

  Expiry: every binding carries expires_at (unix time). resolve() treats an
       expired row as absent and deletes it. purge_expired() sweeps the rest;
       api/main.py runs it on a timer.

  Logout: destroy() commits before returning, so a client that polls right
       after logout observes the anonymous state.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, func, select
from sqlalchemy.engine import Engine

from auth.models import SessionBinding
from auth.store import DEFAULT_DB_URL, make_engine, now_iso
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, token) as a hex string."""
    return hmac.new(secret_key.encode(), token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for SessionBinding entities.

    Usage:
        sessions = SessionStore(db_url)
        token = sessions.create(user_id=7)
        binding = sessions.resolve(token)   # SessionBinding or None
        sessions.destroy(token)
        sessions.close()
    """

    def __init__(
        self,
        db_url: str = DEFAULT_DB_URL,
        ttl: int | None = None,
        secret_key: str | None = None,
    ) -> None:
        settings = get_settings()
        self.ttl = ttl if ttl is not None else settings.session_expire_seconds
        self._secret_key = secret_key or settings.secret_key
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def _hash(self, token: str) -> str:
        return hash_session_token(token, self._secret_key)

    def create(self, user_id: int) -> str:
        """Bind a fresh token to user_id and return the raw token."""
        token = generate_session_token()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=self._hash(token),
                    user_id=user_id,
                    created_at=now_iso(),
                    expires_at=time.time() + self.ttl,
                )
            )
            conn.commit()
        return token

    def resolve(self, token: str | None) -> SessionBinding | None:
        """Return the live binding for token, or None if absent or expired."""
        if not token:
            return None
        token_hash = self._hash(token)
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        if row is None:
            return None
        if row.expires_at <= time.time():
            self._delete(token_hash)
            return None
        return SessionBinding(
            token_hash=row.token_hash,
            user_id=row.user_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
        )

    def destroy(self, token: str | None) -> None:
        """Remove the binding for token. A missing or unknown token is a no-op."""
        if not token:
            return
        self._delete(self._hash(token))

    def destroy_for_user(self, user_id: int) -> int:
        """Remove every binding of user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def purge_expired(self) -> int:
        """Delete all expired bindings. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= time.time()))
            conn.commit()
        return result.rowcount

    def _delete(self, token_hash: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int | None = None) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side expiry so both lapse together.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=max_age if max_age is not None else settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(get_settings().session_cookie_name)


def read_session_token(request) -> str | None:
    """Return the session token carried by the request cookie, if any."""
    return request.cookies.get(get_settings().session_cookie_name) or None
