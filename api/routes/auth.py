"""
api/routes/auth.py -- Session authentication REST endpoints.

Routes:
  POST /api/register        -- self-service sign-up; binds a session; 201
  POST /api/login           -- password login; binds a session; 200
  POST /api/logout          -- destroys the session; always 200
  GET  /api/me              -- current user (requires auth)
  GET  /api/me/permissions  -- protected areas the current role may enter
  POST /api/me/password     -- change own password; rotates the session
  GET  /api/setup           -- whether first-run setup is still required
  POST /api/setup           -- create the first admin (only while no users exist)

Security:
  [H2] POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Authority.login() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that sets a session cookie.
  Handlers that hash or verify passwords are sync (def), so FastAPI runs them
  in its threadpool and the KDF never blocks the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    PermissionsResponse,
    RegisterRequest,
    SetupRequest,
    SetupStatusResponse,
    UserResponse,
)
from auth.authority import Authority, permissions
from auth.dependencies import get_current_user
from auth.models import IssuedSession, NewUser, PublicUser
from auth.sessions import clear_session_cookie, read_session_token, set_session_cookie
from core.config import get_settings

# Auth policy:
# - POST /api/register:        public -- gated by SELF_REGISTRATION_ENABLED
# - POST /api/login:           public -- login endpoint must be unauthenticated
# - POST /api/logout:          public -- destroying a session needs no prior auth
# - GET  /api/me:              requires auth (get_current_user)
# - GET  /api/me/permissions:  requires auth (get_current_user)
# - POST /api/me/password:     requires auth (get_current_user)
# - GET  /api/setup:           public
# - POST /api/setup:           public, refused once any user exists
router = APIRouter()

_settings = get_settings()


def _session_response(issued: IssuedSession, status_code: int) -> JSONResponse:
    """Render the bound user and attach the session cookie."""
    resp = JSONResponse(
        status_code=status_code,
        content=UserResponse.from_public(issued.user).model_dump(by_alias=True),
    )
    set_session_cookie(resp, issued.token, max_age=issued.expires_in)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", response_model=UserResponse, status_code=201)
@limiter.limit(_settings.login_rate_limit)  # [H2] innermost, so the router registers the limited function
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with the default role and sign it in."""
    authority: Authority = request.app.state.authority
    issued = authority.register(
        NewUser(
            username=body.username,
            password=body.password,
            email=body.email,
            display_name=body.display_name,
            organization=body.organization,
        ),
        current_token=read_session_token(request),
    )
    return _session_response(issued, 201)


@router.post("/login", response_model=UserResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2]
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Unknown username and wrong password both produce 401 invalid_credentials.
    An inactive account with any password produces 403 account_inactive.
    """
    authority: Authority = request.app.state.authority
    issued = authority.login(body.username, body.password, current_token=read_session_token(request))
    return _session_response(issued, 200)


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the session (if any) and clear the cookie. Always succeeds."""
    authority: Authority = request.app.state.authority
    authority.logout(read_session_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/setup", response_model=SetupStatusResponse)
def setup_status(request: Request) -> SetupStatusResponse:
    authority: Authority = request.app.state.authority
    return SetupStatusResponse(setup_required=not authority.has_users())


@router.post("/setup", response_model=UserResponse, status_code=201)
def setup(request: Request, body: SetupRequest) -> UserResponse:
    """Create the first admin account.

    Refused with 409 setup_complete as soon as any user exists. The check runs
    against the database, not the in-memory flag, so two racing requests
    cannot both succeed [M1].
    """
    authority: Authority = request.app.state.authority
    admin = authority.bootstrap_admin(NewUser(username=body.username, password=body.password, email=body.email))
    request.app.state.setup_required = False
    return UserResponse.from_public(admin)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserResponse)
def me(current_user: PublicUser = Depends(get_current_user)) -> UserResponse:
    """Return the currently authenticated user."""
    return UserResponse.from_public(current_user)


@router.get("/me/permissions", response_model=PermissionsResponse)
def my_permissions(current_user: PublicUser = Depends(get_current_user)) -> PermissionsResponse:
    """Report which protected catalog areas the current user's role may enter."""
    allowed = permissions(current_user)
    return PermissionsResponse(
        role=current_user.role,
        upload_dataset=allowed["upload_dataset"],
        user_management=allowed["user_management"],
    )


@router.post("/me/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: PublicUser = Depends(get_current_user),
) -> JSONResponse:
    """Change the current user's password.

    Every session the user holds -- on any device -- is destroyed and this
    client receives a fresh session cookie.
    """
    authority: Authority = request.app.state.authority
    issued = authority.change_password(current_user, body.current_password, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password changed.").model_dump())
    set_session_cookie(resp, issued.token, max_age=issued.expires_in)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
