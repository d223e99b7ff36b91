"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for splkit happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, vault_key -> VAULT_KEY).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates a SECRET_KEY with a warning, production
      mode refuses to start without one.

Vault key material (VAULT_KEY / VAULT_IV) is deliberately NOT validated here.
security.vault.vault_from_settings() owns that policy because generating the
material requires the Vault's own key alphabet and sizes.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
db/, security/, or validators/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("splkit.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # mysql | mysql_i | pgsql | dbase | sqlite
    database_type: str = "sqlite"
    database_name: str = "splkit.db"
    database_host: str = ""
    database_port: str = ""
    database_user: str = ""
    database_passwd: str = ""
    # A full SQLAlchemy URL wins over the individual fields above.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Vault
    # ------------------------------------------------------------------

    vault_key: str = ""
    vault_iv: str = ""  # hex encoded
    vault_layers: int = 1
    vault_shift: int = 4

    # ------------------------------------------------------------------
    # Cookie trust
    # ------------------------------------------------------------------

    cookie_name: str = "auth"
    cookie_expire: int = 2592000  # 30 days
    cookie_path: str = "/"
    cookie_domain: str = ""
    secure_cookies: bool = False
    # Require the persistent-login row to match the client IP as well as the
    # user agent fingerprint. Off by default: mobile clients roam.
    bind_ip: bool = False

    session_cookie: str = "splkit_session"
    # Lifetime of the session cookie and of its row in the sessions table.
    session_expire: int = 1209600  # 14 days

    # ------------------------------------------------------------------
    # Debug mail
    # ------------------------------------------------------------------

    debug_mail: str = "webmaster@localhost"
    unique_mail: str = ""
    mail_from: str = "splkit@localhost"
    smtp_host: str = "localhost"
    smtp_port: int = 25

    # ------------------------------------------------------------------
    # Password / email policy
    # ------------------------------------------------------------------

    password_min_length: int = 8
    password_require_number: bool = True
    password_require_lcase: bool = True
    password_require_ucase: bool = True

    email_check_dns: bool = False

    # ------------------------------------------------------------------
    # Registration / recovery
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    recovery_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    uploads_dir: str = "uploads"
    upload_max_bytes: int = 1048576  # 1 MB, 0 disables the check
    # Allowed extensions; empty means files.uploader.DEFAULT_EXTENSIONS.
    upload_extensions: list[str] = []

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
        Production mode: refuse to start if SECRET_KEY is missing.
        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
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

    def database_options(self) -> dict:
        """Return the options dict accepted by db.database.Database.init()."""
        options: dict = {"type": self.database_type}
        if self.database_url:
            options["url"] = self.database_url
            return options
        for key, value in (
            ("db", self.database_name),
            ("host", self.database_host),
            ("port", self.database_port),
            ("user", self.database_user),
            ("passwd", self.database_passwd),
        ):
            if value:
                options[key] = value
        return options


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
