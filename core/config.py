"""
core/config.py -- Nano Admin settings (pydantic-settings).

Every environment read goes through get_settings(); nothing else touches
os.environ. Values come from the process environment first, then from an
optional .env file in the working directory; field names are matched
case-insensitively (secret_key <- SECRET_KEY).

get_settings() is cached with lru_cache so the whole process shares one
Settings object. The token issuer and the mail sink are handed that object
when they are built, so the signing secret never sits in a module global.

Secret policy:
  [M6] SECRET_KEY must be at least 32 characters. It signs access tokens and
       keys the HMAC digests of API and signup keys.

  [M7] Without DEBUG=true a missing SECRET_KEY aborts startup. With DEBUG=true
       a throwaway key is generated, which invalidates every token and stored
       key digest on restart.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or mail/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("nanoadmin.config")


class Settings(BaseSettings):
    """Nano Admin configuration.

    Every field has a default, so tests can build Settings(debug=True, ...)
    directly. Only SECRET_KEY is checked at construction time.
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
    # "" means unset; validate_secret_key() replaces or rejects it.
    secret_key: str = ""
    database_url: str = ""
    log_level: str = "INFO"
    app_name: str = "Nano Admin"
    app_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Tokens and credentials
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_days: int = 7
    verification_code_expire_minutes: int = 10
    api_key_prefix: str = "nano_"
    signup_key_prefix: str = "nsk_"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost:5173"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    verify_rate_limit: str = "20/minute"

    # ------------------------------------------------------------------
    # Outbound mail (empty host means "log instead of send")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_starttls: bool = True
    smtp_timeout: int = 10

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Fill in or reject SECRET_KEY [M6] [M7]."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "SECRET_KEY not set; generated a temporary one. "
                    "Sessions and API keys will stop working on restart."
                )
            else:
                raise ValueError("SECRET_KEY is not set. Export it (32+ characters) or run with DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings. Tests that change the environment
    must call get_settings.cache_clear() first.
    """
    return Settings()
