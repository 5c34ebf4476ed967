"""
Session State Models.

``SessionState`` is the full in-memory identity record.  Only the
``DurableSession`` subset ever crosses the storage boundary; the MFA
challenge, recovery-window and reset bookkeeping stay in memory so a
restart can never resume a half-completed security step.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class DurableSession(BaseModel):
    """The persisted identity record.

    Attributes
    ----------
    token:
        Bearer credential (JWT), ``None`` when not fully authenticated.
    user_id:
        Backend identifier of the user.
    username:
        Login name.
    primary_email:
        Main account email.
    recovery_email:
        Secondary email used for MFA recovery.
    display_name:
        Human-readable name.
    tenant_id:
        Active namespace / tenant.
    role:
        Role inside the active tenant.
    mfa_enabled:
        Whether the account has a second factor configured.
    """

    token: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    primary_email: Optional[str] = None
    recovery_email: Optional[str] = None
    display_name: Optional[str] = None
    tenant_id: Optional[str] = None
    role: Optional[str] = None
    mfa_enabled: bool = False

    # Records written by older releases may carry keys we no longer use.
    model_config = {"extra": "ignore"}


class SessionState(DurableSession):
    """Durable fields plus the volatile MFA bookkeeping.

    Attributes
    ----------
    challenge_token:
        Short-lived token issued when a password login still needs a
        second factor.  Never coexists with ``token``.
    recovery_window_expiry:
        Epoch seconds until which MFA may be disabled without a fresh
        second-factor proof (set by a recovery-code login).
    reset_session_id:
        Identifier of a pending email-based MFA reset.
    reset_identifier:
        Username / email the reset was requested for.
    pending_identifier:
        Username / email typed at the password step.
    """

    challenge_token: Optional[str] = None
    recovery_window_expiry: Optional[int] = None
    reset_session_id: Optional[str] = None
    reset_identifier: Optional[str] = None
    pending_identifier: Optional[str] = None


DURABLE_FIELDS: frozenset[str] = frozenset(DurableSession.model_fields)
VOLATILE_FIELDS: frozenset[str] = frozenset(SessionState.model_fields) - DURABLE_FIELDS


def to_durable(state: SessionState) -> DurableSession:
    """Map the in-memory state to exactly the persisted subset."""
    return DurableSession.model_validate(state.model_dump(include=set(DURABLE_FIELDS)))


def from_durable(record: DurableSession) -> SessionState:
    """Rehydrate a full state from a stored record; volatile fields start empty."""
    return SessionState.model_validate(record.model_dump())


def serialize_session(state: SessionState) -> str:
    """JSON document stored under the session key."""
    return to_durable(state).model_dump_json()


def deserialize_session(raw: str) -> SessionState:
    """Inverse of :func:`serialize_session`.

    Raises
    ------
    pydantic.ValidationError
        If *raw* is not a JSON object matching ``DurableSession``.
    """
    return from_durable(DurableSession.model_validate_json(raw))
