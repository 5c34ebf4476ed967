"""
Structured Audit Logging Utility.

Every security-relevant session transition (login, MFA challenge,
recovery, enrollment, disablement, forced logout) is logged as a single
schema-validated JSON object.  Credentials never appear in an audit
record; only identifiers and outcomes do.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from sessionguard.logger import StructuredLogger

__all__ = ["AuditEvent", "log_auth_event"]

# Flat scalars only; nested structures do not belong in the audit log.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    outcome: str
    subject: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_auth_event(
    logger: StructuredLogger,
    action: str,
    outcome: str,
    subject: Optional[str] = None,
    details: Optional[dict[str, DetailValue]] = None,
) -> None:
    """Log a structured JSON audit event.

    Args:
        logger: The logger instance to write to.
        action: What happened (e.g. ``"LOGIN"``, ``"MFA_CHALLENGE"``,
            ``"MFA_DISABLE"``, ``"FORCED_LOGOUT"``).
        outcome: ``"success"``, ``"failure"``, ``"mfa_required"`` ...
        subject: Username, email or user id the event concerns.
        details: Optional additional context (status codes, modes).
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        outcome=outcome,
        subject=subject or "unknown",
        details=details or {},
    )
    logger.info(
        "AUDIT: %s", json.dumps(event.model_dump(), default=str),
        extra={"event": action},
    )
