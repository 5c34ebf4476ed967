"""
MFA Disablement.

MFA can be turned off with one of three proofs, posted to the same
endpoint:

- ``DisableMode.TOTP``: ``{code}``
- ``DisableMode.RECOVERY_CODE``: ``{recovery_code}``
- ``DisableMode.EMAIL_CODES``: ``{main_email_code, recovery_email_code}``,
  after the two codes have been requested by email.

Inside the recovery window opened by a recovery-code login no proof is
needed at all.
"""

from __future__ import annotations

from typing import Callable, Optional

from sessionguard.auth import SessionStore
from sessionguard.errors import (
    ApiError,
    ApplicationError,
    MfaInvalidCode,
    MfaInvalidEmailCodes,
    MfaInvalidRecoveryCode,
    NoIdentifier,
    RecoveryWindowClosed,
    Unauthorized,
)
from sessionguard.jwt_auth import require_auth
from sessionguard.logger import StructuredLogger
from sessionguard.models.enums import CodeMode, DisableMode
from sessionguard.services.auth_service import AuthService
from sessionguard.services.base_service import BaseService
from sessionguard.utils.audit import log_auth_event
from sessionguard.utils.code_buffer import CodeBuffer

EMAIL_REQUEST_FAILED_MESSAGE: str = "Failed to send verification codes. Please try again."

_FAILURE_MESSAGES: dict[DisableMode, str] = {
    DisableMode.TOTP: MfaInvalidCode.default_message,
    DisableMode.RECOVERY_CODE: MfaInvalidRecoveryCode.default_message,
    DisableMode.EMAIL_CODES: MfaInvalidEmailCodes.default_message,
}


class MfaDisablement(BaseService):
    """Controller behind the "disable MFA" dialog.

    Parameters
    ----------
    auth_service:
        Performs the disable and email-code requests.
    session:
        Shared session record.
    logger:
        Structured JSON logger.
    on_disabled:
        Called once MFA is off (wired to
        ``AuthService.update_mfa_status(False)``).
    code_length:
        TOTP code length.
    email_code_length:
        Length of each emailed code.
    """

    def __init__(
        self,
        auth_service: AuthService,
        session: SessionStore,
        logger: StructuredLogger,
        on_disabled: Optional[Callable[[], None]] = None,
        code_length: int = 6,
        email_code_length: int = 5,
    ) -> None:
        super().__init__(logger)
        self._auth: AuthService = auth_service
        self._session: SessionStore = session
        self._on_disabled: Optional[Callable[[], None]] = on_disabled

        self.mode: DisableMode = DisableMode.TOTP
        self.code: CodeBuffer = CodeBuffer(code_length, CodeMode.NUMERIC)
        self.recovery_code: str = ""
        self.main_email_code: CodeBuffer = CodeBuffer(email_code_length, CodeMode.ALPHANUMERIC)
        self.recovery_email_code: CodeBuffer = CodeBuffer(email_code_length, CodeMode.ALPHANUMERIC)
        self.email_requested: bool = False
        self.error: Optional[str] = None

        guard = require_auth(session)
        self.submit = guard(self.submit)  # type: ignore[method-assign]
        self.request_email_codes = guard(self.request_email_codes)  # type: ignore[method-assign]
        self.disable_in_recovery_window = guard(self.disable_in_recovery_window)  # type: ignore[method-assign]

    @property
    def recovery_window_remaining(self) -> int:
        """Seconds left to disable without a proof (0 when closed)."""
        return self._session.recovery_window_remaining()

    def set_mode(self, mode: DisableMode) -> None:
        self.mode = DisableMode(mode)
        self.error = None

    async def request_email_codes(self) -> bool:
        """Email one code to each address.

        Raises
        ------
        NoIdentifier
            The account cannot be identified.
        """
        identifier = self._session.resolve_identifier()
        if identifier is None:
            raise NoIdentifier()

        self.error = None
        try:
            await self._auth.request_mfa_reset(identifier)
        except ApiError as exc:
            self._logger.warning("Requesting email codes failed: %s", exc)
            self.error = EMAIL_REQUEST_FAILED_MESSAGE
            return False

        self.email_requested = True
        return True

    def can_submit(self) -> bool:
        if self.mode == DisableMode.TOTP:
            return self.code.is_complete()
        if self.mode == DisableMode.RECOVERY_CODE:
            return bool(self.recovery_code.strip())
        return (
            self.email_requested
            and self.main_email_code.is_complete()
            and self.recovery_email_code.is_complete()
        )

    def _proof(self) -> dict[str, str]:
        if self.mode == DisableMode.TOTP:
            return {"code": self.code.value()}
        if self.mode == DisableMode.RECOVERY_CODE:
            return {"recovery_code": self.recovery_code.strip()}
        return {
            "main_email_code": self.main_email_code.value(),
            "recovery_email_code": self.recovery_email_code.value(),
        }

    async def submit(self) -> bool:
        """Disable MFA with the active mode's proof.

        Returns ``False`` when the input is incomplete or the proof was
        rejected; in the latter case ``error`` holds the mode's message
        and only that mode's inputs are cleared.
        """
        if not self.can_submit():
            return False

        mode = self.mode
        self.error = None
        try:
            await self._auth.disable_mfa(self._proof())
        except (Unauthorized, ApplicationError) as exc:
            log_auth_event(
                self._logger, action="MFA_DISABLE", outcome="failure",
                subject=self._session.username,
                details={"mode": mode.value, "status_code": exc.status_code},
            )
            self.error = _FAILURE_MESSAGES[mode]
            self._reset_mode_inputs(mode)
            return False

        self._finish(mode.value)
        return True

    async def disable_in_recovery_window(self) -> None:
        """Disable MFA without a proof while the recovery window is open.

        Raises
        ------
        RecoveryWindowClosed
            The window has expired or was never opened.
        """
        if not self._session.in_recovery_window:
            raise RecoveryWindowClosed()
        await self._auth.disable_mfa({})
        self._session.open_recovery_window(None)
        self._finish("recovery_window")

    def reset(self) -> None:
        self.mode = DisableMode.TOTP
        for mode in DisableMode:
            self._reset_mode_inputs(mode)
        self.email_requested = False
        self.error = None

    def _finish(self, proof: str) -> None:
        log_auth_event(
            self._logger, action="MFA_DISABLE", outcome="success",
            subject=self._session.username, details={"mode": proof},
        )
        if self._on_disabled is not None:
            self._on_disabled()
        self.reset()

    def _reset_mode_inputs(self, mode: DisableMode) -> None:
        if mode == DisableMode.TOTP:
            self.code.reset()
        elif mode == DisableMode.RECOVERY_CODE:
            self.recovery_code = ""
        else:
            self.main_email_code.reset()
            self.recovery_email_code.reset()
