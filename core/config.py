"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
and pass the Settings object to the component that needs it.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  Explicit injection: TokenIssuer, OtpManager, Mailer and build_oauth() take
      a Settings instance at construction. Only the api/ layer calls
      get_settings(); auth/ components never reach for it themselves, so
      tests can build them from a hand-made Settings.

  @model_validator(mode="after"): cross-field validation after every field is
      resolved. Dev mode (DEBUG=true) generates missing signing secrets with a
      warning; production refuses to start without them.

Security notes:
  [M6] Secrets shorter than 32 chars are rejected outright. JWT HMAC signing
       relies on key entropy -- a short key weakens it.

  [M7] JWT_SECRET and REFRESH_TOKEN_SECRET must differ. A refresh token must
       never verify as an access token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sjcauth.config")

_SECRET_FIELDS = ("jwt_secret", "refresh_token_secret", "session_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `jwt_secret` reads from JWT_SECRET, `frontend_url` from FRONTEND_URL.
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
    database_url: str = "sqlite:///sjcauth.db"
    frontend_url: str = "http://localhost:3000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # Institutional email domain. Gates OAuth provisioning and builds the
    # login email from a student roll number.
    college_domain: str = "josephscollege.ac.in"

    # ------------------------------------------------------------------
    # Secrets -- empty string is the "not configured" sentinel
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    refresh_token_secret: str = ""
    session_secret: str = ""

    # ------------------------------------------------------------------
    # Token and password policy
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 60 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    reset_token_expire_seconds: int = 15 * 60
    bcrypt_rounds: int = 12
    otp_expire_minutes: int = 10

    # ------------------------------------------------------------------
    # Google OAuth (optional -- empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Mail (SendGrid SMTP relay)
    # ------------------------------------------------------------------

    sendgrid_api_key: str = ""
    from_email: str = "no-reply@josephscollege.ac.in"
    smtp_host: str = "smtp.sendgrid.net"
    smtp_port: int = 587

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    otp_rate_limit: str = "5/minute"
    rate_limit_storage: str = "memory://"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate each missing secret with a warning.
            Issued tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if any secret is missing.
        """
        for field in _SECRET_FIELDS:
            value = getattr(self, field)
            if not value:
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        field.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            elif len(value) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.refresh_token_secret:
            raise ValueError("JWT_SECRET and REFRESH_TOKEN_SECRET must be different.")
        return self

    @property
    def email_suffix(self) -> str:
        return f"@{self.college_domain}"

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
