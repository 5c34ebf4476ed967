"""
Authentication Pipeline Models.

Pydantic models and enumerations for the contracts between
``AuthService``, the MFA controllers and the UI layer.  Every auth
operation returns a structured, inspectable result instead of raw
response bodies or exception side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from sessionguard.models.enums import LoginStatus


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Categories of a rejected password login.

    The UI uses the code to decide which extra controls to show (for
    example a lockout countdown); the message is already user-safe.
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_NOT_CONFIRMED = "account_not_confirmed"
    ACCOUNT_LOCKED = "account_locked"
    NETWORK_ERROR = "network_error"


LOGIN_ERROR_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "Invalid username or password",
    AuthErrorCode.ACCOUNT_NOT_CONFIRMED: (
        "Your account has not been confirmed. "
        "Please check your email for the activation link."
    ),
    AuthErrorCode.ACCOUNT_LOCKED: (
        "Too many failed attempts. Your account is temporarily locked."
    ),
    AuthErrorCode.NETWORK_ERROR: (
        "Cannot reach the server. Check your internet connection."
    ),
}


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Login outcome
# ---------------------------------------------------------------------------

class LoginOutcome(BaseModel):
    """Result of a password login.

    Exactly one of three shapes:

    - ``AUTHENTICATED``: the session now holds a bearer token.
    - ``MFA_REQUIRED``: ``challenge_token`` is set; call
      ``login_with_mfa`` or one of the recovery paths next.
    - ``REJECTED``: ``error_code`` / ``error_message`` explain why;
      ``lockout_until`` (epoch seconds) is set for locked accounts.
    """

    status: LoginStatus
    challenge_token: Optional[str] = None
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    lockout_until: Optional[int] = None

    @classmethod
    def authenticated(cls) -> "LoginOutcome":
        return cls(status=LoginStatus.AUTHENTICATED)

    @classmethod
    def mfa_required(cls, challenge_token: str) -> "LoginOutcome":
        return cls(status=LoginStatus.MFA_REQUIRED, challenge_token=challenge_token)

    @classmethod
    def rejected(
        cls,
        error_code: AuthErrorCode,
        lockout_until: Optional[int] = None,
    ) -> "LoginOutcome":
        return cls(
            status=LoginStatus.REJECTED,
            error_code=error_code,
            error_message=LOGIN_ERROR_MESSAGES[error_code],
            lockout_until=lockout_until,
        )

    @property
    def is_authenticated(self) -> bool:
        return self.status == LoginStatus.AUTHENTICATED

    @property
    def requires_mfa(self) -> bool:
        return self.status == LoginStatus.MFA_REQUIRED


# ---------------------------------------------------------------------------
# Backend documents
# ---------------------------------------------------------------------------

class AuthPayload(BaseModel):
    """Session / identity document returned by the login-family endpoints
    and by ``GET /api/auth/user``.

    The backend is not consistent about key names (``user`` vs
    ``username``, ``tenant`` vs ``tenantId``), so every field accepts the
    known aliases and blank strings normalise to ``None``.
    """

    token: Optional[str] = None
    username: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user", "username"),
    )
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("id", "user_id"),
    )
    email: Optional[str] = None
    recovery_email: Optional[str] = None
    name: Optional[str] = None
    tenant_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("tenant", "tenantId", "tenant_id"),
    )
    role: Optional[str] = None
    mfa: bool = Field(default=False, validation_alias=AliasChoices("mfa", "mfa_enabled"))

    model_config = {"extra": "ignore", "populate_by_name": True}

    @field_validator(
        "token", "username", "user_id", "email", "recovery_email",
        "name", "tenant_id", "role",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value)
        return text if text.strip() else None

    @field_validator("mfa", mode="before")
    @classmethod
    def _null_mfa_is_disabled(cls, value: Any) -> Any:
        return False if value is None else value


class MfaGenerationResult(BaseModel):
    """One-time TOTP secret, its provisioning link and a batch of
    single-use recovery codes.

    Consumed immediately by the enrollment wizard or the recovery-codes
    viewer; never persisted.
    """

    secret: str
    link: str = ""
    recovery_codes: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}
