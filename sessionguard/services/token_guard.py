"""
Request Pipeline Guard.

``TokenGuard`` runs around every outgoing request:

- **Pre-flight** (synchronous, no I/O): attach the bearer token, or,
  when the stored token is expired or undecodable, force a logout and
  fail locally so the request is never sent.
- **Post-flight**: a success cancels any pending connectivity-down
  transition and restores reachability; a 401 forces a logout; a
  backend-down failure starts the connectivity grace period.  The
  caller always re-raises the original failure.
"""

from __future__ import annotations

import time
from typing import Callable, MutableMapping, Optional, Protocol

from sessionguard.auth import SessionStore
from sessionguard.errors import TokenExpired, TokenMalformed, Unauthorized
from sessionguard.jwt_auth import is_token_expired
from sessionguard.logger import StructuredLogger
from sessionguard.services.base_service import BaseService
from sessionguard.services.connectivity import ConnectivityMonitor, is_backend_down
from sessionguard.utils.audit import log_auth_event


class Navigator(Protocol):
    """Moves the user agent to another entry path."""

    def redirect(self, path: str) -> None: ...  # noqa: E704


class RedirectRecorder:
    """``Navigator`` that only remembers the last requested path.

    Headless embedders poll ``location``; UI shells supply their own
    navigator.
    """

    def __init__(self) -> None:
        self.location: Optional[str] = None
        self.history: list[str] = []

    def redirect(self, path: str) -> None:
        self.location = path
        self.history.append(path)


class TokenGuard(BaseService):
    """Pre- and post-flight handling shared by every request.

    Parameters
    ----------
    session:
        The shared ``SessionStore``.
    connectivity:
        Monitor fed with the outcome of every exchange.
    navigator:
        Receives the login path on forced logout.
    logger:
        Structured JSON logger.
    login_path:
        Redirect target on forced logout.
    clock:
        Epoch-seconds clock used for the expiry comparison.
    """

    def __init__(
        self,
        session: SessionStore,
        connectivity: ConnectivityMonitor,
        navigator: Navigator,
        logger: StructuredLogger,
        login_path: str = "/login",
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(logger)
        self._session: SessionStore = session
        self._connectivity: ConnectivityMonitor = connectivity
        self._navigator: Navigator = navigator
        self._login_path: str = login_path
        self._clock: Callable[[], float] = clock

    def preflight(self, headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
        """Attach ``Authorization: Bearer <token>`` to *headers*.

        Without a stored token the headers pass through untouched.

        Raises
        ------
        TokenExpired
            The stored token is past its expiry (``TokenMalformed``
            when it could not be decoded).  The session has already
            been logged out and the navigator redirected.
        """
        token = self._session.token
        if not token:
            return headers

        try:
            expired = is_token_expired(token, now=self._clock())
        except TokenMalformed:
            self._force_logout("token_malformed")
            raise
        if expired:
            self._force_logout("token_expired")
            raise TokenExpired()

        headers["Authorization"] = f"Bearer {token}"
        return headers

    def on_success(self) -> None:
        self._connectivity.cancel()
        if not self._connectivity.api_reachable:
            self._connectivity.mark_up()

    def on_failure(self, error: BaseException, handle_unauthorized: bool = True) -> None:
        """React to a failed exchange.  Never raises; the caller re-raises *error*.

        ``handle_unauthorized=False`` is used by the login-family
        requests, whose 401 answers are part of the protocol rather
        than a revoked session.
        """
        if isinstance(error, Unauthorized):
            if handle_unauthorized:
                self._force_logout("unauthorized")
            return
        if is_backend_down(error):
            self._connectivity.schedule_down()

    def _force_logout(self, reason: str) -> None:
        subject = self._session.username
        self._session.logout()
        self._navigator.redirect(self._login_path)
        log_auth_event(
            self._logger,
            action="FORCED_LOGOUT",
            outcome=reason,
            subject=subject,
        )
