"""
core/config.py -- Secure Blog auth configuration (pydantic-settings).

Every environment read goes through get_settings(); other modules never touch
os.environ. Values come from process environment first, then .env. Each field
maps to the upper-cased env var (otp_ttl_seconds -> OTP_TTL_SECONDS).

get_settings() is lru_cached, so the first call fixes the configuration for
the process. Modules that read settings at import time (auth/tokens.py,
api/limiter.py, api/main.py) see the same object.

Cross-field checks run as model validators once every field is loaded:
  SECRET_KEY  -- generated in DEBUG, mandatory otherwise, >= 32 chars.
  Cookies     -- SameSite=None only together with Secure.

Security notes:
  [M6] Session tokens are HS256. Their strength is the key's entropy, so a
       key under 32 chars is refused even in DEBUG.

  [M7] Outside DEBUG a missing SECRET_KEY aborts startup instead of falling
       back to a random key: a per-process key would invalidate every issued
       token on each restart or worker.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("secureblog.config")


class Settings(BaseSettings):
    """Runtime configuration for the auth API and the operator CLI.

    Every field has a default; only SECRET_KEY (or DEBUG=true) is needed to
    start.
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
    # "" means unset; validate_secret_key replaces or rejects it.
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///secureblog_auth.db"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # 7 days, matching the lifetime users of the blog are used to.
    token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    secure_cookies: bool = False
    # "lax" for same-site deployments; "none" when the UI is served from
    # another origin (requires secure_cookies=true).
    cookie_samesite: str = "lax"

    # ------------------------------------------------------------------
    # OTP challenges
    # ------------------------------------------------------------------

    otp_ttl_seconds: int = Field(default=600, gt=0)
    otp_digits: int = Field(default=6, ge=4, le=10)
    otp_sweep_interval_seconds: int = Field(default=60, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting (limits-library notation: "<count>/<n> <unit>")
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    general_rate_limit: str = "100/15 minutes"
    otp_rate_limit: str = "5/15 minutes"
    # Only enable behind a reverse proxy that overwrites X-Forwarded-For,
    # otherwise clients can pick their own rate-limit bucket.
    trust_forwarded_for: bool = False
    # Bodies declaring a larger Content-Length are refused with 413.
    max_request_bytes: int = Field(default=10 * 1024, gt=0)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Mailjet (optional -- empty key means OTPs are written to the log)
    # ------------------------------------------------------------------

    mailjet_api_key: str = ""
    mailjet_secret_key: str = ""
    mailjet_sender_email: str = "noreply@secureblog.com"
    mailjet_sender_name: str = "Secure Blog"

    # ------------------------------------------------------------------
    # Operator CLI (python main.py bootstrap-admin)
    # ------------------------------------------------------------------

    admin_username: str = "admin"
    admin_email: str = "admin@secureblog.com"
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Resolve SECRET_KEY [M6][M7].

        DEBUG=true with no key: generate one for this process and warn that
        every session token dies with the process.
        Otherwise a missing or short key is a startup error.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("SECRET_KEY not set; generated a throwaway key. Session tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required unless DEBUG=true. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        return self

    @model_validator(mode="after")
    def validate_cookie_posture(self) -> "Settings":
        """Browsers drop SameSite=None cookies that are not also Secure."""
        self.cookie_samesite = self.cookie_samesite.lower()
        if self.cookie_samesite not in ("lax", "strict", "none"):
            raise ValueError("COOKIE_SAMESITE must be one of: lax, strict, none.")
        if self.cookie_samesite == "none" and not self.secure_cookies:
            raise ValueError("COOKIE_SAMESITE=none requires SECURE_COOKIES=true.")
        return self

    @property
    def mailjet_enabled(self) -> bool:
        return bool(self.mailjet_api_key and self.mailjet_secret_key)


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests that need other values build Settings(...) directly."""
    return Settings()
