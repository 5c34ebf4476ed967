"""
Shared Enumerations for the session core.

StrEnum values compare equal to their string equivalents, so callers
can keep writing ``if phase == "authenticated"``.
"""

from __future__ import annotations
from enum import IntEnum, StrEnum


class AuthPhase(StrEnum):
    """Where the session currently sits in the auth state machine.

    ``RECOVERY_WINDOW`` is an authenticated session opened with a
    recovery code; while it lasts MFA can be disabled without proving
    the second factor again.
    """

    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    MFA_PENDING = "mfa_pending"
    AUTHENTICATED = "authenticated"
    RECOVERY_WINDOW = "recovery_window"


class LoginStatus(StrEnum):
    """The three outcomes of a password login."""

    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    REJECTED = "rejected"


class CodeMode(StrEnum):
    """Character class accepted by a ``CodeBuffer``."""

    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"


class EnrollmentStep(IntEnum):
    """Linear steps of the MFA enrollment wizard."""

    RECOVERY_EMAIL = 1
    RECOVERY_CODES = 2
    VERIFICATION = 3
    COMPLETE = 4


class DisableMode(StrEnum):
    """Proof supplied when turning MFA off."""

    TOTP = "totp"
    RECOVERY_CODE = "recovery_code"
    EMAIL_CODES = "email_codes"
