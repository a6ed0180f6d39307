"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session cookie (Settings.session_cookie_name) is the only credential a
request can carry. It is resolved through the Authority on app.state, which
looks the token up in the session store and then the user in the directory.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises NotAuthenticated (401).
require_role(*roles) builds a guard that also raises Forbidden (403).
require_admin / require_uploader are the guards for the catalog's two
protected areas (user management, dataset upload).

On success every guard attaches the resolved PublicUser to request.state.user
so downstream code in the same request can read it without re-resolving.

Errors are raised as auth.errors types; api/main.py renders them.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.authority import Authority, check_role
from auth.errors import NotAuthenticated
from auth.models import UPLOAD_ROLES, USER_MANAGEMENT_ROLES, PublicUser, Role
from auth.sessions import read_session_token


def try_get_current_user(request: Request) -> PublicUser | None:
    """Resolve the request's session cookie to a user, or None.

    Never raises for an anonymous or stale session -- callers that need a
    hard 401 should use get_current_user().
    """
    authority: Authority = request.app.state.authority
    try:
        user = authority.current_user(read_session_token(request))
    except NotAuthenticated:
        return None
    request.state.user = user
    return user


def get_current_user(request: Request) -> PublicUser:
    """Require authentication. Raises NotAuthenticated (401) if the request has no live session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: PublicUser = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise NotAuthenticated()
    return user


def require_role(*allowed_roles: Role) -> Callable[[Request], PublicUser]:
    """Build a dependency admitting only users whose role is in allowed_roles.

    Use as a FastAPI dependency:
        @router.post("/uploads")
        def route(user: PublicUser = Depends(require_role(Role.ADMIN, Role.UPLOADER))): ...
    """
    allowed = frozenset(allowed_roles)

    def guard(request: Request) -> PublicUser:
        return check_role(try_get_current_user(request), allowed)

    guard.__name__ = "require_" + "_or_".join(sorted(r.value for r in allowed))
    return guard


require_admin = require_role(*USER_MANAGEMENT_ROLES)
require_uploader = require_role(*UPLOAD_ROLES)
