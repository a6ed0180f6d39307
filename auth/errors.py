"""
auth/errors.py -- Failure taxonomy of the credential and session authority.

Every failure the authority reports is an AuthError subclass carrying:
  status_code -- HTTP status the transport layer should use
  code        -- stable snake_case identifier clients can branch on
  message     -- fixed user-facing text

Messages are class constants. Nothing raised here ever carries a username,
password, hash, salt, or session token, so an AuthError can be logged or
rendered verbatim.

api/main.py turns AuthError into the standard error envelope. auth/ itself
never imports FastAPI for error reporting.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 400
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self) -> None:
        super().__init__(self.message)


class UsernameTaken(AuthError):
    status_code = 400
    code = "username_taken"
    message = "Username already taken."


class InvalidCredentials(AuthError):
    # Same response for unknown user and wrong password -- no enumeration.
    status_code = 401
    code = "invalid_credentials"
    message = "Invalid username or password."


class AccountInactive(AuthError):
    status_code = 403
    code = "account_inactive"
    message = "Account is inactive. Contact an administrator."


class NotAuthenticated(AuthError):
    status_code = 401
    code = "not_authenticated"
    message = "Authentication required."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient permissions."


class RegistrationDisabled(AuthError):
    status_code = 403
    code = "registration_disabled"
    message = "Self-registration is disabled. Contact an administrator."


class UserNotFound(AuthError):
    status_code = 404
    code = "user_not_found"
    message = "User not found."


class SelfDeactivation(AuthError):
    status_code = 400
    code = "self_deactivation"
    message = "You cannot deactivate your own account."


class LastAdmin(AuthError):
    status_code = 400
    code = "last_admin"
    message = "Cannot remove the last active admin account."


class NoChanges(AuthError):
    status_code = 400
    code = "no_changes"
    message = "No fields to update."


class SetupComplete(AuthError):
    status_code = 409
    code = "setup_complete"
    message = "Setup already complete. Please log in."


class InternalError(AuthError):
    """Unexpected lower-level failure (directory, session store, entropy source).

    Raised with the original exception suppressed so no SQL parameters --
    which may include credential records -- ride along in a traceback.
    """

    status_code = 500
    code = "internal_error"
    message = "An unexpected error occurred."
