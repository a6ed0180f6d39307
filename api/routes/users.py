"""
api/routes/users.py -- User management REST endpoints (admin only).

Routes:
  GET   /api/users        -- list all users as {id, username, email, role}
  POST  /api/users        -- create a user with an explicit role; 201
  PATCH /api/users/{id}   -- change role and/or isActive

Security:
  Every route depends on require_admin: 401 without a session, 403 for any
  role other than admin.
  [M4] PATCH blocks self-deactivation and removing the last active admin
  (enforced in Authority.update_user).
  Deactivating a user ends all of that user's sessions immediately.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import UserCreate, UserPatch, UserResponse, UserSummaryRow
from auth.authority import Authority
from auth.dependencies import require_admin
from auth.models import NewUser, PublicUser

router = APIRouter()


@router.get("/users", response_model=list[UserSummaryRow])
def list_users(
    request: Request,
    current_user: PublicUser = Depends(require_admin),
) -> list[UserSummaryRow]:
    """List all user accounts. Admin only."""
    authority: Authority = request.app.state.authority
    return [UserSummaryRow.from_public(u) for u in authority.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: PublicUser = Depends(require_admin),
) -> UserResponse:
    """Create a user account with the requested role. Admin only.

    Unlike /register this does not sign anyone in -- the admin's own session
    is untouched.
    """
    authority: Authority = request.app.state.authority
    created = authority.create_user(
        NewUser(
            username=body.username,
            password=body.password,
            email=body.email,
            display_name=body.display_name,
            organization=body.organization,
        ),
        role=body.role,
    )
    return UserResponse.from_public(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: PublicUser = Depends(require_admin),
) -> UserResponse:
    """Update a user's role or active status. Admin only."""
    authority: Authority = request.app.state.authority
    updated = authority.update_user(current_user, user_id, role=body.role, is_active=body.is_active)
    return UserResponse.from_public(updated)
