"""
Authentication Service.

Single orchestrator for every network-backed session transition: password
login, MFA challenge, recovery-code login, email-based MFA reset, profile
and password changes, and logout.

Sits between the MFA controllers / UI layer and the ``SessionStore`` +
``AuthRepository`` pair so that views remain thin form handlers.

Password logins return a typed ``LoginOutcome``; the UI never inspects
raw exceptions for them.  Second-factor failures are raised as the
``MfaError`` family and carry a user-safe message.
"""

from __future__ import annotations

import re
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from sessionguard.auth import SessionStore
from sessionguard.errors import (
    ApiError,
    ApplicationError,
    BackendDown,
    EmailAlreadyInUse,
    MfaInvalidCode,
    MfaInvalidEmailCodes,
    MfaInvalidRecoveryCode,
    NoIdentifier,
    NoMfaToken,
    NoResetSession,
    SessionGuardError,
    Unauthorized,
)
from sessionguard.logger import StructuredLogger
from sessionguard.models.auth_models import (
    AuthErrorCode,
    AuthPayload,
    LoginOutcome,
    MfaGenerationResult,
    ValidationResult,
)
from sessionguard.repositories.auth_repository import AuthRepository
from sessionguard.services.base_service import BaseService
from sessionguard.utils.audit import log_auth_event


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

MFA_TOKEN_HEADER: str = "X-MFA-Token"
LOCKOUT_HEADER: str = "X-Account-Lockout"
EXPIRES_AT_HEADER: str = "X-Expires-At"

# Profile fields the backend accepts on PATCH /api/users, mapped to the
# session field they update.
_PROFILE_FIELDS: dict[str, str] = {
    "name": "display_name",
    "username": "username",
    "email": "primary_email",
    "recovery_email": "recovery_email",
}

# Identity document fields applied by a user refresh, mapped to the
# session field they update.
_REFRESH_FIELDS: dict[str, str] = {
    "user_id": "user_id",
    "username": "username",
    "email": "primary_email",
    "recovery_email": "recovery_email",
    "name": "display_name",
    "tenant_id": "tenant_id",
    "role": "role",
    "mfa": "mfa_enabled",
}

_RESET_ID_KEYS: tuple[str, ...] = ("id", "reset_session_id", "resetSessionId")


def parse_epoch_header(value: Optional[str]) -> Optional[int]:
    """Parse an epoch-seconds header; anything unusable yields ``None``."""
    if value is None:
        return None
    try:
        parsed = int(float(value.strip()))
    except ValueError:
        return None
    return parsed if parsed > 0 else None


class AuthService(BaseService):
    """Network-backed transitions of the shared ``SessionStore``.

    Parameters
    ----------
    session:
        The shared session record.
    repo:
        REST surface for the auth endpoints.
    logger:
        Structured JSON logger for audit-grade logging.
    """

    def __init__(
        self,
        session: SessionStore,
        repo: AuthRepository,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._session: SessionStore = session
        self._repo: AuthRepository = repo

    @property
    def session(self) -> SessionStore:
        return self._session

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Validate an email address against a simplified RFC 5322 regex.

        Returns
        -------
        ValidationResult
            ``is_valid=True`` if the email matches, otherwise a
            human-readable ``error_message``.
        """
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Email address is required.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    # ==================================================================
    # Login
    # ==================================================================

    async def login(self, identifier: str, secret: str) -> LoginOutcome:
        """Password login.

        Any previous session is dropped first.  The outcome is one of:

        - authenticated: the session holds a bearer token;
        - MFA required: the session is ``MFA_PENDING`` with the
          challenge token and the identifier typed here;
        - rejected: the session is anonymous.  The message never
          reveals whether the account exists.
        """
        identifier = identifier.strip()
        self._session.reset_for_login()

        with self._session.authenticating():
            try:
                response = await self._repo.login(identifier, secret)
            except ApiError as exc:
                return self._classify_login_error(exc, identifier)

            challenge = response.headers.get(MFA_TOKEN_HEADER, "").strip()
            payload = self._parse_payload(response)

            if payload is None or not payload.token:
                if challenge:
                    return self._begin_challenge(challenge, identifier)
                self._logger.warning(
                    "Login response carried neither a token nor a challenge.",
                    extra={"event": "LOGIN_FAILED", "error_code": "no_token"},
                )
                return LoginOutcome.rejected(AuthErrorCode.INVALID_CREDENTIALS)

            self._session.apply_auth_payload(payload)

        log_auth_event(
            self._logger, action="LOGIN", outcome="success", subject=payload.username,
            details={"mfa_enabled": payload.mfa, "tenant_id": payload.tenant_id},
        )
        return LoginOutcome.authenticated()

    def _begin_challenge(self, challenge_token: str, identifier: str) -> LoginOutcome:
        self._session.begin_challenge(challenge_token, identifier)
        log_auth_event(self._logger, action="LOGIN", outcome="mfa_required", subject=identifier)
        return LoginOutcome.mfa_required(challenge_token)

    def _classify_login_error(self, exc: ApiError, identifier: str) -> LoginOutcome:
        """Map a failed login exchange to a ``LoginOutcome``."""
        if isinstance(exc, BackendDown):
            self._logger.warning(
                "Network error during login: %s", exc,
                extra={"event": "LOGIN_NETWORK_ERROR"},
            )
            return LoginOutcome.rejected(AuthErrorCode.NETWORK_ERROR)

        # A pending second factor is reported as a 401 with the challenge
        # token in a header.
        challenge = exc.headers.get(MFA_TOKEN_HEADER, "").strip()
        if challenge:
            return self._begin_challenge(challenge, identifier)

        code = AuthErrorCode.INVALID_CREDENTIALS
        lockout_until: Optional[int] = None
        if exc.status_code == 403:
            code = AuthErrorCode.ACCOUNT_NOT_CONFIRMED
        elif exc.status_code == 429:
            code = AuthErrorCode.ACCOUNT_LOCKED
            lockout_until = parse_epoch_header(exc.headers.get(LOCKOUT_HEADER))

        log_auth_event(
            self._logger, action="LOGIN", outcome="failure", subject=identifier,
            details={"error_code": code.value, "status_code": exc.status_code},
        )
        return LoginOutcome.rejected(code, lockout_until=lockout_until)

    # ==================================================================
    # Second factor
    # ==================================================================

    async def login_with_mfa(self, code: str) -> None:
        """Exchange the pending challenge token and a TOTP *code* for a session.

        Raises
        ------
        NoMfaToken
            No challenge is pending.
        MfaInvalidCode
            The backend rejected the code; the challenge stays pending.
        BackendDown
            No answer from the backend.
        """
        challenge = self._session.challenge_token
        if not challenge:
            raise NoMfaToken()

        try:
            response = await self._repo.validate_mfa(challenge, code)
        except (Unauthorized, ApplicationError) as exc:
            log_auth_event(
                self._logger, action="MFA_CHALLENGE", outcome="failure",
                subject=self._session.pending_identifier,
                details={"status_code": exc.status_code},
            )
            raise MfaInvalidCode() from exc

        payload = self._parse_payload(response)
        if payload is None or not payload.token:
            raise MfaInvalidCode()

        self._session.apply_auth_payload(payload)
        log_auth_event(self._logger, action="MFA_CHALLENGE", outcome="success", subject=payload.username)

    async def recover_with_code(self, code: str, identifier: Optional[str] = None) -> Optional[int]:
        """Log in with a single-use recovery code.

        Opens the recovery window and returns its expiry (epoch seconds),
        or ``None`` when the backend did not send a usable one.

        Raises
        ------
        NoIdentifier
            No identifier was passed and none was captured at login.
        MfaInvalidRecoveryCode
            The backend rejected the identifier / code pair.
        """
        resolved = self._session.resolve_identifier(identifier)
        if resolved is None:
            raise NoIdentifier()

        try:
            response = await self._repo.recover_mfa(resolved, code.strip())
        except (Unauthorized, ApplicationError) as exc:
            log_auth_event(
                self._logger, action="MFA_RECOVER", outcome="failure", subject=resolved,
                details={"status_code": exc.status_code},
            )
            raise MfaInvalidRecoveryCode("Invalid recovery code or username") from exc

        payload = self._parse_payload(response)
        if payload is None or not payload.token:
            raise MfaInvalidRecoveryCode("Invalid recovery code or username")

        expiry = parse_epoch_header(response.headers.get(EXPIRES_AT_HEADER))
        self._session.apply_auth_payload(payload)
        self._session.open_recovery_window(expiry)

        log_auth_event(
            self._logger, action="MFA_RECOVER", outcome="success", subject=payload.username,
            details={"recovery_window_expiry": expiry},
        )
        return expiry

    # ==================================================================
    # Email-based MFA reset
    # ==================================================================

    async def request_mfa_reset(self, identifier: Optional[str] = None) -> str:
        """Ask the backend to email reset codes to both addresses.

        Returns the identifier the request was made for.  The
        authentication state is unchanged.

        Raises
        ------
        NoIdentifier
            No identifier can be resolved.
        """
        resolved = self._session.resolve_identifier(identifier)
        if resolved is None:
            raise NoIdentifier()

        body = await self._repo.request_mfa_reset(resolved)
        reset_session_id: Optional[str] = None
        for key in _RESET_ID_KEYS:
            value = body.get(key)
            if isinstance(value, (str, int)) and str(value).strip():
                reset_session_id = str(value).strip()
                break

        self._session.set_reset_session(reset_session_id, resolved)
        log_auth_event(
            self._logger, action="MFA_RESET_REQUEST", outcome="sent", subject=resolved,
            details={"has_reset_session": reset_session_id is not None},
        )
        return resolved

    async def complete_mfa_reset(
        self,
        main_email_code: str,
        recovery_email_code: str,
        reset_session_id: Optional[str] = None,
    ) -> None:
        """Prove both email codes and log in.

        *reset_session_id* comes from the emailed link; without it the id
        recorded by :meth:`request_mfa_reset` is used.

        Raises
        ------
        NoResetSession
            No reset session id is available.
        MfaInvalidEmailCodes
            The backend rejected the codes.
        """
        resolved_id = reset_session_id or self._session.reset_session_id
        if not resolved_id:
            raise NoResetSession()

        try:
            response = await self._repo.complete_mfa_reset(
                resolved_id, main_email_code, recovery_email_code,
            )
        except (Unauthorized, ApplicationError) as exc:
            log_auth_event(
                self._logger, action="MFA_RESET_COMPLETE", outcome="failure",
                subject=self._session.reset_identifier,
                details={"status_code": exc.status_code},
            )
            raise MfaInvalidEmailCodes() from exc

        payload = self._parse_payload(response)
        if payload is None or not payload.token:
            raise MfaInvalidEmailCodes()

        self._session.apply_auth_payload(payload)
        self._session.clear_reset_session()
        log_auth_event(self._logger, action="MFA_RESET_COMPLETE", outcome="success", subject=payload.username)

    # ==================================================================
    # Identity
    # ==================================================================

    async def fetch_user(self) -> bool:
        """Refresh identity fields from the backend.

        Every failure is swallowed and logged at debug level; a revoked
        session has already been handled by the request guard.
        Returns ``True`` when the refresh succeeded.
        """
        if not self._session.is_authenticated:
            return False
        try:
            body = await self._repo.get_user()
            payload = AuthPayload.model_validate(body)
        except (SessionGuardError, ValidationError) as exc:
            self._logger.debug("User refresh failed: %s", exc, extra={"event": "FETCH_USER_FAILED"})
            return False

        # Only keys present in the response are applied; an explicit null
        # clears the local value.
        self._session.update_user_data(**{
            _REFRESH_FIELDS[name]: getattr(payload, name)
            for name in payload.model_fields_set
            if name in _REFRESH_FIELDS
        })
        return True

    async def update_profile(self, **fields: Optional[str]) -> None:
        """PATCH any of ``name``, ``username``, ``email``, ``recovery_email``.

        Raises
        ------
        ValueError
            An unsupported field was passed, or nothing to update.
        EmailAlreadyInUse
            The backend answered 409.
        """
        unknown = set(fields) - set(_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported profile fields: {sorted(unknown)}")
        changes: dict[str, Any] = {
            key: value.strip() for key, value in fields.items() if value is not None
        }
        if not changes:
            raise ValueError("No profile fields to update")

        try:
            await self._repo.update_user(changes)
        except ApplicationError as exc:
            if exc.status_code == 409:
                raise EmailAlreadyInUse() from exc
            raise

        self._session.update_user_data(
            **{_PROFILE_FIELDS[key]: value for key, value in changes.items()},
        )
        self._logger.info(
            "Profile updated.",
            extra={"event": "PROFILE_UPDATED", "fields": ",".join(sorted(changes))},
        )

    async def update_password(self, current_password: str, new_password: str) -> None:
        await self._repo.update_password(current_password, new_password)
        log_auth_event(self._logger, action="PASSWORD_UPDATE", outcome="success", subject=self._session.username)

    async def request_password_recovery(self, identifier: str) -> None:
        await self._repo.request_password_recovery(identifier.strip())
        log_auth_event(self._logger, action="PASSWORD_RECOVERY_REQUEST", outcome="sent", subject=identifier.strip())

    async def complete_password_recovery(self, user_id: str, token: str, password: str) -> None:
        await self._repo.complete_password_recovery(user_id, token, password)
        log_auth_event(self._logger, action="PASSWORD_RECOVERY_COMPLETE", outcome="success", subject=user_id)

    # ==================================================================
    # MFA management (authenticated)
    # ==================================================================

    async def generate_mfa(self) -> MfaGenerationResult:
        """Fetch a fresh TOTP secret, provisioning link and recovery codes."""
        result = await self._repo.generate_mfa()
        self._logger.info(
            "MFA secret generated.",
            extra={"event": "MFA_GENERATE", "recovery_codes": len(result.recovery_codes)},
        )
        return result

    async def enable_mfa(self, code: str, secret: str, recovery_codes: list[str]) -> None:
        """Turn MFA on by proving a TOTP *code* for *secret*.

        Raises
        ------
        MfaInvalidCode
            The backend rejected the code.
        """
        try:
            await self._repo.enable_mfa(code, secret, recovery_codes)
        except ApplicationError as exc:
            log_auth_event(
                self._logger, action="MFA_ENABLE", outcome="failure", subject=self._session.username,
                details={"status_code": exc.status_code},
            )
            raise MfaInvalidCode() from exc

    async def disable_mfa(self, proof: Optional[dict[str, str]] = None) -> None:
        """Turn MFA off.  Rejections propagate as ``ApplicationError``;
        the caller maps them to the message of the proof it sent."""
        await self._repo.disable_mfa(proof)

    # ==================================================================
    # Local transitions
    # ==================================================================

    def update_mfa_status(self, enabled: bool) -> None:
        self._session.update_mfa_status(enabled)
        log_auth_event(
            self._logger, action="MFA_ENABLE" if enabled else "MFA_DISABLE",
            outcome="success", subject=self._session.username,
        )

    def logout(self) -> None:
        """Clear the session and durable storage.  Never fails."""
        subject = self._session.username
        self._session.logout()
        log_auth_event(self._logger, action="LOGOUT", outcome="success", subject=subject)

    # ==================================================================
    # Internal
    # ==================================================================

    def _parse_payload(self, response: httpx.Response) -> Optional[AuthPayload]:
        if not response.content:
            return None
        try:
            return AuthPayload.model_validate_json(response.content)
        except ValidationError as exc:
            self._logger.warning("Malformed auth payload: %s", exc.error_count())
            return None
