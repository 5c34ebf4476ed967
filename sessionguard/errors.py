"""
Error Taxonomy.

Every failure the session core raises derives from ``SessionGuardError``.

- Pre-flight token failures (``TokenExpired`` / ``TokenMalformed``) are
  raised locally; the originating request is never sent.
- ``ApiError`` and its subclasses wrap a completed (or failed) HTTP
  exchange and carry the status code, decoded payload and response
  headers.
- MFA failures are raised by ``AuthService`` and surfaced by the MFA
  controllers as user-facing messages.
- Flow errors signal that an operation was invoked outside its valid
  state and are never swallowed.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx


GATEWAY_ERROR_STATUSES: frozenset[int] = frozenset({502, 503, 504})


class SessionGuardError(Exception):
    """Base class for every error raised by sessionguard."""


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------

class TokenExpired(SessionGuardError):
    """The stored bearer token is past its expiry claim."""

    def __init__(self, message: str = "Token expired") -> None:
        super().__init__(message)


class TokenMalformed(TokenExpired):
    """The stored bearer token could not be decoded.

    Subclasses ``TokenExpired`` so callers handle both identically.
    """


# ---------------------------------------------------------------------------
# Post-flight
# ---------------------------------------------------------------------------

class ApiError(SessionGuardError):
    """An HTTP exchange that did not produce a successful response.

    ``status_code`` is ``None`` when no response was received at all.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code: Optional[int] = status_code
        self.payload: Any = payload
        self.headers: httpx.Headers = httpx.Headers(headers or {})

    @staticmethod
    def from_response(response: httpx.Response) -> "ApiError":
        """Build the matching ``ApiError`` subclass for a >= 400 response."""
        payload: Any = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text

        message = f"HTTP {response.status_code}"
        if isinstance(payload, Mapping):
            detail = payload.get("message") or payload.get("detail") or payload.get("error")
            if isinstance(detail, str) and detail:
                message = f"{message}: {detail}"

        status = response.status_code
        if status == 401:
            cls: type[ApiError] = Unauthorized
        elif status in GATEWAY_ERROR_STATUSES:
            cls = BackendDown
        else:
            cls = ApplicationError
        return cls(message, status_code=status, payload=payload, headers=response.headers)


class Unauthorized(ApiError):
    """The backend answered 401."""


class BackendDown(ApiError):
    """No response at all, or a gateway error (502/503/504)."""


class ApplicationError(ApiError):
    """Any other 4xx/5xx answer; no session or connectivity side effects."""


# ---------------------------------------------------------------------------
# MFA
# ---------------------------------------------------------------------------

class MfaError(SessionGuardError):
    """Base class for rejected second-factor proofs."""

    default_message: str = "Verification failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class MfaInvalidCode(MfaError):
    default_message = "Invalid verification code"


class MfaInvalidRecoveryCode(MfaError):
    default_message = "Invalid recovery code"


class MfaInvalidEmailCodes(MfaError):
    default_message = "Invalid email verification codes"


class RecoveryWindowClosed(MfaError):
    default_message = "The recovery window has expired"


# ---------------------------------------------------------------------------
# Flow errors
# ---------------------------------------------------------------------------

class FlowError(SessionGuardError):
    """An operation was invoked outside the state it is valid in."""


class NoMfaToken(FlowError):
    def __init__(self) -> None:
        super().__init__("No MFA challenge is pending")


class NoResetSession(FlowError):
    def __init__(self) -> None:
        super().__init__("No MFA reset has been requested")


class NoIdentifier(FlowError):
    def __init__(self) -> None:
        super().__init__("No username or email is known for this flow")


class WizardStepError(FlowError):
    """A guarded enrollment transition was attempted before its pre-condition held."""


class AuthenticationError(FlowError):
    """Raised when a guarded operation is called without an authenticated session."""


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------

class EmailAlreadyInUse(SessionGuardError):
    def __init__(self) -> None:
        super().__init__("Email already in use")
