"""
API request and response models for DataCatalog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names on the wire are camelCase (displayName, isActive, ...) to match
the catalog's React client. Python attribute names stay snake_case; each
camelCase name is declared as a Field alias and populate_by_name lets route
code construct models with either spelling.

Passwords are never whitespace-stripped: "secret " and "secret" are different
credentials.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PublicUser, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Upper bound keeps a single login request from pinning a worker on the KDF.
_PASSWORD_MAX = 255
_PASSWORD_MIN = 6


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/login."""

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=_PASSWORD_MAX)


class RegisterRequest(BaseModel):
    """Request body for POST /api/register (self-service sign-up)."""

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1, max_length=64, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    display_name: Optional[str] = Field(default=None, max_length=255, alias="displayName")
    organization: Optional[str] = Field(default=None, max_length=255)


class UserCreate(RegisterRequest):
    """Request body for POST /api/users (admin creates an account with a role)."""

    role: Role = Role.USER


class UserPatch(BaseModel):
    """Request body for PATCH /api/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    role: Optional[Role] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/me/password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX, alias="currentPassword")
    new_password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX, alias="newPassword")


class SetupRequest(BaseModel):
    """Request body for POST /api/setup -- creates the first admin account."""

    username: str = Field(min_length=1, max_length=64, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """A user as returned to clients. Has no password field by construction."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int
    username: str
    email: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    organization: Optional[str] = None
    role: Role
    is_active: bool = Field(alias="isActive")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    last_login: Optional[str] = Field(default=None, alias="lastLogin")

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        """Build a UserResponse from the authority's sanitized PublicUser."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            display_name=user.display_name,
            organization=user.organization,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class UserSummaryRow(BaseModel):
    """One row in the GET /api/users admin listing."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserSummaryRow":
        return cls(id=user.id, username=user.username, email=user.email, role=user.role)


class PermissionsResponse(BaseModel):
    """Response for GET /api/me/permissions -- which protected areas the UI may show."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role
    upload_dataset: bool = Field(alias="uploadDataset")
    user_management: bool = Field(alias="userManagement")


class SetupStatusResponse(BaseModel):
    """Response for GET /api/setup -- True until the first admin exists."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    setup_required: bool = Field(alias="setupRequired")


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
