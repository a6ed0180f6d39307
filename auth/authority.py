"""
auth/authority.py -- The credential and session authority.

Everything that authenticates, binds, unbinds, or authorizes a user goes
through Authority. Routes (api/routes/auth.py), FastAPI dependencies
(auth/dependencies.py), and the admin CLI (main.py) are thin callers.

Collaborators, injected at construction:
  users     -- the User Directory (auth.store.UserStore)
  sessions  -- the session store (auth.sessions.SessionStore)

Rules this module enforces:
  [C1] login() always pays for one KDF run, including for unknown usernames,
       so response time does not reveal which usernames exist.
  [A1] One verification path. There is no username- or password-specific
       shortcut anywhere in this module.
  [A2] Every user that leaves this module is a PublicUser built by
       public_user(). The credential record never crosses the boundary.
  [A3] Directory/session-store failures become InternalError with the
       original exception suppressed. SQL errors embed bound parameters, and
       those parameters can include credential records.
  [M4] An admin cannot deactivate themselves, and the last active admin
       cannot be deactivated or demoted.

Hashing and verification are CPU-bound and block. Call these methods from
sync route handlers (FastAPI runs them in its threadpool), never directly on
the event loop.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth import audit
from auth.errors import (
    AccountInactive,
    AuthError,
    Forbidden,
    InternalError,
    InvalidCredentials,
    LastAdmin,
    NoChanges,
    NotAuthenticated,
    RegistrationDisabled,
    SelfDeactivation,
    SetupComplete,
    UsernameTaken,
    UserNotFound,
)
from auth.models import (
    UPLOAD_ROLES,
    USER_MANAGEMENT_ROLES,
    IssuedSession,
    NewUser,
    PublicUser,
    Role,
    User,
)
from auth.passwords import DUMMY_RECORD, hash_password, verify_password
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("datacatalog.auth")


# ---------------------------------------------------------------------------
# Sanitization and role checks (pure functions)
# ---------------------------------------------------------------------------


def public_user(user: User) -> PublicUser:
    """Strip the credential from a directory record [A2]."""
    return PublicUser(
        id=user.id,
        username=user.username,
        email=user.email,
        role=Role.parse(user.role),
        is_active=user.is_active,
        display_name=user.display_name,
        organization=user.organization,
        created_at=user.created_at,
        last_login=user.last_login,
    )


def check_role(user: PublicUser | None, allowed_roles: Iterable[Role]) -> PublicUser:
    """Authorize user for an operation restricted to allowed_roles.

    Raises NotAuthenticated when there is no user, Forbidden when the user's
    role (USER if unset) is not allowed. Returns the user on success.
    """
    if user is None:
        raise NotAuthenticated()
    allowed = {Role.parse(r) for r in allowed_roles}
    if Role.parse(user.role) not in allowed:
        audit.record("authorization", user.username, Forbidden.code)
        raise Forbidden()
    return user


def permissions(user: PublicUser) -> dict[str, bool]:
    """Which protected catalog areas the user's role may enter."""
    role = Role.parse(user.role)
    return {
        "upload_dataset": role in UPLOAD_ROLES,
        "user_management": role in USER_MANAGEMENT_ROLES,
    }


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    """Translate lower-level failures into InternalError [A3]."""
    try:
        yield
    except AuthError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        logger.error("%s failed: %s", operation, type(exc).__name__)
        raise InternalError() from None


# ---------------------------------------------------------------------------
# Authority
# ---------------------------------------------------------------------------


class Authority:
    """Credential hashing, verification, session lifecycle, and role checks.

    Usage:
        authority = Authority(UserStore(url), SessionStore(url))
        issued = authority.login("alice", "secret1")
        me = authority.current_user(issued.token)
        authority.logout(issued.token)
    """

    def __init__(
        self,
        users: UserStore,
        sessions: SessionStore,
        self_registration_enabled: bool | None = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        if self_registration_enabled is None:
            self_registration_enabled = get_settings().self_registration_enabled
        self.self_registration_enabled = self_registration_enabled

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def login(self, username: str, password: str, current_token: str | None = None) -> IssuedSession:
        """Authenticate username/password and bind a new session.

        Order: unknown user -> InvalidCredentials, inactive -> AccountInactive,
        wrong password -> InvalidCredentials. Any session already carried by
        the client is replaced.
        """
        try:
            with _guard("login"):
                user = self.users.get_by_username(username)
                if user is None:
                    verify_password(password, DUMMY_RECORD)  # [C1]
                    raise InvalidCredentials()
                if not user.is_active:
                    raise AccountInactive()
                if not verify_password(password, user.password):
                    raise InvalidCredentials()
                issued = self._bind(user, current_token)
        except AuthError as exc:
            audit.record("login", username, exc.code)
            raise
        audit.record("login", username)
        return issued

    def register(self, fields: NewUser, current_token: str | None = None) -> IssuedSession:
        """Create a self-registered account with role USER and bind a session."""
        try:
            if not self.self_registration_enabled:
                raise RegistrationDisabled()
            with _guard("register"):
                user = self._insert(fields, Role.USER)
                issued = self._bind(user, current_token)
        except AuthError as exc:
            audit.record("register", fields.username, exc.code)
            raise
        audit.record("register", fields.username)
        return issued

    def logout(self, token: str | None) -> None:
        """Destroy the session bound to token. Idempotent."""
        with _guard("logout"):
            binding = self.sessions.resolve(token)
            self.sessions.destroy(token)
        username = None
        if binding is not None:
            with _guard("logout"):
                user = self.users.get_by_id(binding.user_id)
            username = user.username if user is not None else None
        audit.record("logout", username)

    def current_user(self, token: str | None) -> PublicUser:
        """Resolve token to the bound, still-active user or raise NotAuthenticated."""
        with _guard("session lookup"):
            binding = self.sessions.resolve(token)
            if binding is None:
                raise NotAuthenticated()
            user = self.users.get_by_id(binding.user_id)
            if user is None or not user.is_active:
                self.sessions.destroy(token)
                raise NotAuthenticated()
        return public_user(user)

    def change_password(
        self,
        user: PublicUser,
        current_password: str,
        new_password: str,
    ) -> IssuedSession:
        """Replace user's credential record, end all their sessions, issue a new one."""
        try:
            with _guard("password change"):
                stored = self.users.get_by_id(user.id)
                if stored is None or not verify_password(current_password, stored.password):
                    raise InvalidCredentials()
                self.users.update_user(stored.id, password=hash_password(new_password))
                self.sessions.destroy_for_user(stored.id)
                token = self.sessions.create(stored.id)
        except AuthError as exc:
            audit.record("password_change", user.username, exc.code)
            raise
        audit.record("password_change", user.username)
        return IssuedSession(user=public_user(stored), token=token, expires_in=self.sessions.ttl)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_user(self, fields: NewUser, role: Role) -> PublicUser:
        """Create an account with an explicit role. Does not bind a session."""
        try:
            with _guard("user create"):
                user = self._insert(fields, Role.parse(role))
        except AuthError as exc:
            audit.record("user_create", fields.username, exc.code)
            raise
        audit.record("user_create", fields.username)
        return public_user(user)

    def list_users(self) -> list[PublicUser]:
        with _guard("user list"):
            users = self.users.list_users()
        return [public_user(u) for u in users]

    def update_user(
        self,
        actor: PublicUser,
        user_id: int,
        role: Role | None = None,
        is_active: bool | None = None,
    ) -> PublicUser:
        """Change a user's role and/or active flag [M4].

        Deactivation ends every session the target holds.
        """
        if role is None and is_active is None:
            raise NoChanges()
        try:
            with _guard("user update"):
                target = self.users.get_by_id(user_id)
                if target is None:
                    raise UserNotFound()
                removes_admin = target.role == Role.ADMIN and target.is_active and (
                    (role is not None and Role.parse(role) != Role.ADMIN) or is_active is False
                )
                if is_active is False and target.id == actor.id:
                    raise SelfDeactivation()
                if removes_admin and self.users.count_active_admins() <= 1:
                    raise LastAdmin()

                updates: dict = {}
                if role is not None:
                    updates["role"] = Role.parse(role)
                if is_active is not None:
                    updates["is_active"] = is_active
                if not self.users.update_user(user_id, keep_an_admin=removes_admin, **updates):
                    # Another request removed the other admin after the count above.
                    raise LastAdmin() if removes_admin else UserNotFound()
                if is_active is False:
                    self.sessions.destroy_for_user(user_id)
                updated = self.users.get_by_id(user_id)
        except AuthError as exc:
            audit.record("user_update", actor.username, exc.code)
            raise
        audit.record("user_update", actor.username)
        if updated is None:
            raise InternalError()
        return public_user(updated)

    def has_users(self) -> bool:
        with _guard("setup check"):
            return self.users.has_users()

    def bootstrap_admin(self, fields: NewUser) -> PublicUser:
        """Create the first admin account. Only allowed while the directory is empty."""
        try:
            with _guard("setup"):
                if self.users.has_users():
                    raise SetupComplete()
                try:
                    user = self._insert(fields, Role.ADMIN)
                except UsernameTaken:
                    raise SetupComplete() from None
        except AuthError as exc:
            audit.record("setup", fields.username, exc.code)
            raise
        audit.record("setup", fields.username)
        return public_user(user)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(self, fields: NewUser, role: Role) -> User:
        if self.users.get_by_username(fields.username) is not None:
            raise UsernameTaken()
        record = User(
            username=fields.username,
            password=hash_password(fields.password),
            email=fields.email,
            display_name=fields.display_name,
            organization=fields.organization,
            role=role,
            is_active=True,
        )
        try:
            user_id = self.users.create_user(record)
        except IntegrityError:
            # A concurrent request created the same username first.
            raise UsernameTaken() from None
        created = self.users.get_by_id(user_id)
        if created is None:
            raise InternalError()
        return created

    def _bind(self, user: User, current_token: str | None) -> IssuedSession:
        """Replace any session the client holds with a fresh binding to user."""
        self.sessions.destroy(current_token)
        token = self.sessions.create(user.id)
        self.users.update_last_login(user.id)
        refreshed = self.users.get_by_id(user.id) or user
        return IssuedSession(user=public_user(refreshed), token=token, expires_in=self.sessions.ttl)
