"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; stores and the authority do the work.

Two user shapes exist on purpose:
  User        -- the directory record, including the stored credential.
                 Never leaves auth/.
  PublicUser  -- the sanitized identity handed to routes, templates, logs.
                 auth.authority.public_user() is the only way to build one
                 from a User.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Coarse-grained permission tag. Closed set; USER is the default."""

    ADMIN = "admin"
    UPLOADER = "uploader"
    USER = "user"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role:
        """Map a stored role value to a Role. None or "" means USER.

        Unknown strings raise ValueError -- a role outside the closed set is
        corrupt data, not something to silently downgrade.
        """
        if value is None or value == "":
            return cls.USER
        return cls(value)


# Protected areas of the catalog UI and the roles allowed into each.
UPLOAD_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.UPLOADER})
USER_MANAGEMENT_ROLES: frozenset[Role] = frozenset({Role.ADMIN})


@dataclass(frozen=True)
class CredentialRecord:
    """A salted PBKDF2 derivation of a password.

    Serialized form is "<hex(derived_key)>:<hex(salt)>" -- see auth/passwords.py.
    Immutable: a password change replaces the record wholesale.
    """

    derived_key: bytes
    salt: bytes


@dataclass
class User:
    """A User Directory entry.

    password holds the serialized CredentialRecord. It is read only by the
    authority when verifying or replacing a credential.
    """

    username: str
    password: str
    email: str
    role: Role = Role.USER
    id: int | None = None
    display_name: str | None = None
    organization: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class NewUser:
    """Fields supplied when creating an account. password is plaintext here
    and is hashed by the authority before anything is stored."""

    username: str
    password: str
    email: str
    display_name: str | None = None
    organization: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """A User with the credential stripped -- safe to cross the auth/ boundary."""

    id: int
    username: str
    email: str
    role: Role
    is_active: bool
    display_name: str | None = None
    organization: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class SessionBinding:
    """Server-side association between a session token and a user.

    token_hash is HMAC-SHA256(SECRET_KEY, token). The raw token only ever
    exists in the client's cookie.
    """

    token_hash: str
    user_id: int
    created_at: str
    expires_at: float  # unix timestamp


@dataclass(frozen=True)
class IssuedSession:
    """Result of a successful login/register: who is now bound, and the cookie value."""

    user: PublicUser
    token: str
    expires_in: int
