"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly.

Only the assembly points (api/main.py and the management CLI in main.py)
call get_settings(). Components under auth/ receive the values they need
through their constructors, so they can be built in isolation in tests.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Production posture (DEBUG unset or false) is strict about
      the signing secret and the bcrypt cost; debug posture relaxes both with
      a warning.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright.

  [M7] In production mode a missing SECRET_KEY, or one of the well-known
       development placeholders, is a hard startup failure.

  [M8] BCRYPT_ROUNDS below 12 is refused in production mode.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("userauth.config")

# Placeholders that have shipped in sample .env files. Accepting one of these
# in production would let anyone who has read the docs forge tokens.
_DEVELOPMENT_SECRETS: frozenset[str] = frozenset(
    {
        "development_secret_key_change_in_production",
        "change-this-secret-in-prod",
        "changeme",
        "secret",
    }
)

# bcrypt's own accepted range for the log2 cost parameter.
_MIN_BCRYPT_ROUNDS = 4
_MAX_BCRYPT_ROUNDS = 31
_PRODUCTION_MIN_BCRYPT_ROUNDS = 12


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    database_url: str = "sqlite:///./userauth.db"

    # ------------------------------------------------------------------
    # Credentials and tokens
    # ------------------------------------------------------------------

    # 24 hours. Tokens are stateless, so this is also the longest a stolen
    # token stays usable unless the owner changes their password.
    token_expire_seconds: int = 86400
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    # Empty string disables the rotating file handler.
    log_file: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    default_rate_limit: str = "100/15minutes"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning when
            none is set, and only warn about development placeholders.

        Production mode: refuse to start if SECRET_KEY is missing or is a
            known development placeholder.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not survive a restart.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if self.secret_key in _DEVELOPMENT_SECRETS:
            if not self.debug:
                raise ValueError("SECRET_KEY is a development placeholder and cannot be used in production mode.")
            logger.warning("SECRET_KEY is a development placeholder. Change it before deploying.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_credential_policy(self) -> "Settings":
        """Bound the bcrypt cost and token lifetime [M8]."""
        if not _MIN_BCRYPT_ROUNDS <= self.bcrypt_rounds <= _MAX_BCRYPT_ROUNDS:
            raise ValueError(f"BCRYPT_ROUNDS must be between {_MIN_BCRYPT_ROUNDS} and {_MAX_BCRYPT_ROUNDS}.")
        if self.bcrypt_rounds < _PRODUCTION_MIN_BCRYPT_ROUNDS:
            if not self.debug:
                raise ValueError(f"BCRYPT_ROUNDS must be at least {_PRODUCTION_MIN_BCRYPT_ROUNDS} in production mode.")
            logger.warning("BCRYPT_ROUNDS=%d is below the production minimum.", self.bcrypt_rounds)
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
