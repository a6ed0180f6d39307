"""
core/config.py -- DataCatalog auth settings, read once from the environment.

Every environment variable the service understands is a field on Settings.
Other modules ask get_settings() for values; none of them read os.environ.

How values arrive:
  pydantic-settings maps each field to the upper-cased env var of the same
      name (pbkdf2_iterations -> PBKDF2_ITERATIONS), falling back to a .env
      file in the working directory. List fields (ALLOWED_HOSTS, CORS_ORIGINS)
      are JSON arrays.

  get_settings() is wrapped in lru_cache, so the first call builds Settings
      and every later call returns that same object. FastAPI code can use it
      directly or through Depends(get_settings).

  The after-validators run once all fields are populated and refuse
      configurations that would make sessions or stored credentials unsafe.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. Session tokens
       are stored as HMAC-SHA256(SECRET_KEY, token) -- a short key weakens that.

  [M7] Outside DEBUG a missing SECRET_KEY stops startup. Generating one would
       orphan every stored session at the next restart without any warning.

  [K1] PBKDF2_ITERATIONS below 10,000 is rejected. The iteration count is not
       encoded in the credential record, so it must stay stable for the life
       of a deployment -- changing it invalidates every stored password.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("datacatalog.config")

MIN_PBKDF2_ITERATIONS = 10_000


class Settings(BaseSettings):
    """Runtime configuration for the auth service.

    Every field has a default, so tests can build Settings(debug=True) with
    no .env present. Defaults favour a local dev install; production sets
    SECRET_KEY, DATABASE_URL, ALLOWED_HOSTS and SECURE_COOKIES.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    # Empty string means "use the SQLite file next to auth/store.py".
    database_url: str = ""

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "session_id"
    session_expire_seconds: int = 8 * 3600
    session_purge_interval_seconds: int = 3600

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    pbkdf2_iterations: int = MIN_PBKDF2_ITERATIONS

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Fill in or reject SECRET_KEY [M7].

        With DEBUG on, an empty key is replaced by a random one and a warning is
        logged; sessions then die with the process. With DEBUG off, an empty
        key is a startup error. Keys under 32 characters fail either way [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "SECRET_KEY not set; generated a throwaway key for this DEBUG run. "
                    "Existing sessions will not survive a restart."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_auth_limits(self) -> "Settings":
        """Reject KDF and session settings that would weaken or break auth [K1]."""
        if self.pbkdf2_iterations < MIN_PBKDF2_ITERATIONS:
            raise ValueError(f"PBKDF2_ITERATIONS must be at least {MIN_PBKDF2_ITERATIONS}.")
        if self.session_expire_seconds <= 0:
            raise ValueError("SESSION_EXPIRE_SECONDS must be positive.")
        if self.session_purge_interval_seconds <= 0:
            raise ValueError("SESSION_PURGE_INTERVAL_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on first use.

    Tests that change environment variables must call
    get_settings.cache_clear() afterwards, or later callers keep the old values.
    """
    return Settings()
