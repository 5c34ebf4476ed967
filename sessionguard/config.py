"""
Application Configuration.

Pydantic Settings model for the sessionguard core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import SecretStr, field_validator, model_validator


_DEFAULT_API_BASE_URL: str = "http://localhost"


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend API ---
    API_BASE_URL: str = _DEFAULT_API_BASE_URL
    API_TIMEOUT_S: float = 15.0

    # Entry point the user agent is sent to on forced logout.
    LOGIN_PATH: str = "/login"

    # --- Connectivity ---
    CONNECTIVITY_GRACE_MS: int = 5_000

    # --- Durable session storage ---
    SESSION_DB_PATH: str = "sessionguard_local.db"
    SESSION_STORAGE_KEY: str = "auth"
    SESSION_ENCRYPTION: bool = True
    SESSION_SALT_PATH: str = ""  # empty -> ~/.sessionguard_session_salt
    # Optional static passphrase mixed into the storage key derivation.
    SESSION_PASSPHRASE: SecretStr = SecretStr("")

    # --- MFA input ---
    TOTP_CODE_LENGTH: int = 6
    EMAIL_CODE_LENGTH: int = 5
    WIZARD_RESET_DELAY_MS: int = 300

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "sessionguard.log"  # empty string disables the file handler
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("API_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or _DEFAULT_API_BASE_URL

    @field_validator("LOGIN_PATH")
    @classmethod
    def _require_absolute_login_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("LOGIN_PATH must be an absolute path (start with '/')")
        return value

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is a placeholder.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line telling them which values are in use.
        """
        _log = logging.getLogger("sessionguard.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if self.API_BASE_URL == _DEFAULT_API_BASE_URL:
            _log.warning(
                "API_BASE_URL is not set; requests will target %s.",
                _DEFAULT_API_BASE_URL,
            )

        if not self.SESSION_ENCRYPTION:
            _log.warning(
                "SESSION_ENCRYPTION is disabled; the bearer token is stored "
                "in plain text."
            )

        return self

    @property
    def connectivity_grace_s(self) -> float:
        """Grace period before a backend-down signal flips connectivity."""
        return self.CONNECTIVITY_GRACE_MS / 1000.0

    @property
    def wizard_reset_delay_s(self) -> float:
        return self.WIZARD_RESET_DELAY_MS / 1000.0

    @property
    def log_level(self) -> int:
        """Numeric ``logging`` level for ``LOG_LEVEL`` (INFO when unknown)."""
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path skips the lock.

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next ``get_config()`` re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None
