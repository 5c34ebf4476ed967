"""
Authentication & Session State.

Provides an injectable ``SessionStore`` that holds the identity record
(``SessionState``) for the lifetime of the process, derives the current
``AuthPhase`` from it, and writes the durable subset through
``SessionCacheService`` after every local transition.

Network-backed transitions (login, MFA challenge, recovery) live in
``AuthService``; this module never performs I/O beyond the cache.

Usage::

    from sessionguard.auth import SessionStore

    session = SessionStore(cache=session_cache, logger=logger)
    if session.is_authenticated:
        ...
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

from sessionguard.logger import StructuredLogger
from sessionguard.models.auth_models import AuthPayload
from sessionguard.models.enums import AuthPhase
from sessionguard.models.session_models import SessionState

if TYPE_CHECKING:
    from sessionguard.services.session_cache import SessionCacheService

# Identity fields a profile refresh is allowed to overwrite.
_IDENTITY_FIELDS: frozenset[str] = frozenset({
    "user_id",
    "username",
    "primary_email",
    "recovery_email",
    "display_name",
    "tenant_id",
    "role",
    "mfa_enabled",
})


class SessionStore:
    """Injectable holder for the current session.

    Pass a single ``SessionStore`` through the dependency-injection
    layer so the request guard, ``AuthService`` and the MFA controllers
    all observe the same state.

    Parameters
    ----------
    cache:
        Durable storage boundary.  The persisted record (if any) is
        loaded at construction.
    logger:
        Structured JSON logger.
    clock:
        Returns the current epoch time in seconds; injectable for tests
        of the recovery window.
    """

    def __init__(
        self,
        cache: SessionCacheService,
        logger: StructuredLogger,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache: SessionCacheService = cache
        self._logger: StructuredLogger = logger
        self._clock: Callable[[], float] = clock
        self._authenticating: bool = False
        self._state: SessionState = cache.load() or SessionState()

        if self._state.token:
            self._logger.info(
                "Session rehydrated for %s.", self._state.username or "unknown user",
                extra={"event": "SESSION_REHYDRATED", "user_id": self._state.user_id},
            )

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Snapshot of the current state; mutating it has no effect."""
        return self._state.model_copy()

    @property
    def phase(self) -> AuthPhase:
        if self._authenticating:
            return AuthPhase.AUTHENTICATING
        if self._state.token:
            if self.in_recovery_window:
                return AuthPhase.RECOVERY_WINDOW
            return AuthPhase.AUTHENTICATED
        if self._state.challenge_token:
            return AuthPhase.MFA_PENDING
        return AuthPhase.ANONYMOUS

    @property
    def token(self) -> Optional[str]:
        return self._state.token

    @property
    def challenge_token(self) -> Optional[str]:
        return self._state.challenge_token

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a bearer token is held."""
        return self._state.token is not None

    @property
    def mfa_enabled(self) -> bool:
        return self._state.mfa_enabled

    @property
    def username(self) -> Optional[str]:
        return self._state.username

    @property
    def recovery_email(self) -> Optional[str]:
        return self._state.recovery_email

    @property
    def pending_identifier(self) -> Optional[str]:
        return self._state.pending_identifier

    @property
    def reset_session_id(self) -> Optional[str]:
        return self._state.reset_session_id

    @property
    def reset_identifier(self) -> Optional[str]:
        return self._state.reset_identifier

    @property
    def in_recovery_window(self) -> bool:
        return self.recovery_window_remaining() > 0

    def recovery_window_remaining(self) -> int:
        """Whole seconds left in the recovery window (0 when closed)."""
        expiry = self._state.recovery_window_expiry
        if not self._state.token or expiry is None:
            return 0
        return max(0, int(expiry - self._clock()))

    def resolve_identifier(self, explicit: Optional[str] = None) -> Optional[str]:
        """Identifier for a recovery flow: *explicit*, else the one typed
        at login, else the stored username."""
        for candidate in (explicit, self._state.pending_identifier, self._state.username):
            if candidate and candidate.strip():
                return candidate.strip()
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @contextmanager
    def authenticating(self) -> Iterator[None]:
        """Report ``AuthPhase.AUTHENTICATING`` while the block runs."""
        self._authenticating = True
        try:
            yield
        finally:
            self._authenticating = False

    def reset_for_login(self) -> None:
        """Drop any previous session before a new password login."""
        self._state = SessionState()
        self._cache.clear()

    def apply_auth_payload(self, payload: AuthPayload) -> None:
        """Become fully authenticated from a login-family response.

        Clears the MFA challenge and any previous recovery window.
        """
        if not payload.token:
            raise ValueError("Auth payload carries no token")

        self._state = SessionState(
            token=payload.token,
            user_id=payload.user_id,
            username=payload.username,
            primary_email=payload.email,
            recovery_email=payload.recovery_email,
            display_name=payload.name,
            tenant_id=payload.tenant_id,
            role=payload.role,
            mfa_enabled=payload.mfa,
            reset_session_id=self._state.reset_session_id,
            reset_identifier=self._state.reset_identifier,
        )
        self._persist()

    def begin_challenge(self, challenge_token: str, identifier: Optional[str]) -> None:
        """Enter ``MFA_PENDING``.  No bearer token is kept."""
        self._state = SessionState(
            challenge_token=challenge_token,
            pending_identifier=identifier,
        )
        self._cache.clear()

    def open_recovery_window(self, expiry: Optional[int]) -> None:
        self._state = self._state.model_copy(update={"recovery_window_expiry": expiry})

    def set_reset_session(self, reset_session_id: Optional[str], identifier: str) -> None:
        self._state = self._state.model_copy(update={
            "reset_session_id": reset_session_id,
            "reset_identifier": identifier,
        })

    def clear_reset_session(self) -> None:
        self._state = self._state.model_copy(update={
            "reset_session_id": None,
            "reset_identifier": None,
        })

    def update_mfa_status(self, enabled: bool) -> None:
        self._state = self._state.model_copy(update={"mfa_enabled": enabled})
        self._persist()

    def update_user_data(self, **fields: Any) -> None:
        """Overwrite the given identity fields; fields not passed are kept.

        ``None`` clears an optional field, so a refresh reporting a null
        ``recovery_email`` drops the stale local value.  ``mfa_enabled``
        has no empty state and ignores ``None``.

        Raises
        ------
        ValueError
            If a non-identity field (such as ``token``) is passed.
        """
        unknown = set(fields) - _IDENTITY_FIELDS
        if unknown:
            raise ValueError(f"Not identity fields: {sorted(unknown)}")

        changes = {
            key: value for key, value in fields.items()
            if value is not None or key != "mfa_enabled"
        }
        if not changes:
            return
        self._state = self._state.model_copy(update=changes)
        self._persist()

    def set_session(self, token: str, tenant_id: str, role: Optional[str] = None) -> None:
        """Switch to another tenant with a freshly issued token.

        The current role is kept when *role* is ``None``.
        """
        self._state = self._state.model_copy(update={
            "token": token,
            "tenant_id": tenant_id,
            "role": role if role is not None else self._state.role,
            "challenge_token": None,
        })
        self._persist()
        self._logger.info(
            "Active tenant switched.",
            extra={"event": "TENANT_SWITCH", "tenant_id": tenant_id},
        )

    def logout(self) -> None:
        """Clear every field and purge durable storage.  Always succeeds."""
        user_id = self._state.user_id
        self._state = SessionState()
        self._authenticating = False
        self._cache.clear()
        self._logger.info(
            "Session cleared.",
            extra={"event": "LOGOUT", "user_id": user_id or "unknown"},
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _persist(self) -> None:
        if not self._cache.save(self._state):
            self._logger.warning(
                "Session change could not be persisted; it will not survive a restart.",
            )
