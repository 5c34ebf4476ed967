"""
Data Models Package.

Re-exports the pydantic models and enumerations of the session core:
    from sessionguard.models import SessionState, LoginOutcome, AuthPhase
"""

from __future__ import annotations

from sessionguard.models.enums import (
    AuthPhase,
    CodeMode,
    DisableMode,
    EnrollmentStep,
    LoginStatus,
)
from sessionguard.models.auth_models import (
    AuthErrorCode,
    AuthPayload,
    LoginOutcome,
    MfaGenerationResult,
    ValidationResult,
)
from sessionguard.models.session_models import (
    DurableSession,
    SessionState,
    deserialize_session,
    serialize_session,
    to_durable,
)

__all__ = [
    "AuthErrorCode",
    "AuthPayload",
    "AuthPhase",
    "CodeMode",
    "DisableMode",
    "DurableSession",
    "EnrollmentStep",
    "LoginOutcome",
    "LoginStatus",
    "MfaGenerationResult",
    "SessionState",
    "ValidationResult",
    "deserialize_session",
    "serialize_session",
    "to_durable",
]
