"""
MFA Challenge Controller.

Drives the window between "password accepted" and "fully authenticated":
the user proves the second factor with a TOTP code, a recovery code
(which opens the recovery window), or the email reset flow.

The controller only collects input and surfaces messages; every
authentication decision is made by ``AuthService``.
"""

from __future__ import annotations

from typing import Optional

from sessionguard.auth import SessionStore
from sessionguard.errors import MfaInvalidCode, MfaInvalidRecoveryCode
from sessionguard.logger import StructuredLogger
from sessionguard.models.enums import AuthPhase, CodeMode
from sessionguard.services.auth_service import AuthService
from sessionguard.services.base_service import BaseService
from sessionguard.services.mfa_reset import MfaResetFlow
from sessionguard.utils.code_buffer import CodeBuffer


class MfaChallengeController(BaseService):
    """Second-factor step of the login.

    Parameters
    ----------
    auth_service:
        Performs the challenge / recovery exchanges.
    session:
        Shared session record.
    logger:
        Structured JSON logger.
    reset_flow:
        Email reset flow; built from the other arguments when omitted.
    code_length:
        TOTP code length.
    """

    def __init__(
        self,
        auth_service: AuthService,
        session: SessionStore,
        logger: StructuredLogger,
        reset_flow: Optional[MfaResetFlow] = None,
        code_length: int = 6,
    ) -> None:
        super().__init__(logger)
        self._auth: AuthService = auth_service
        self._session: SessionStore = session
        self.reset_flow: MfaResetFlow = reset_flow or MfaResetFlow(auth_service, session, logger)
        self.code: CodeBuffer = CodeBuffer(code_length, CodeMode.NUMERIC)
        self.recovery_code: str = ""
        self.error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self._session.phase == AuthPhase.MFA_PENDING

    @property
    def recovery_window_remaining(self) -> int:
        return self._session.recovery_window_remaining()

    async def submit_code(self) -> bool:
        """Validate the TOTP code in ``code``.

        Returns ``False`` when the buffer is incomplete or the code was
        rejected (``error`` is set and the buffer cleared).

        Raises
        ------
        NoMfaToken
            No challenge is pending.
        """
        if not self.code.is_complete():
            return False
        try:
            await self._auth.login_with_mfa(self.code.value())
        except MfaInvalidCode as exc:
            self.error = str(exc)
            self.code.reset()
            return False

        self.error = None
        self.code.reset()
        return True

    async def submit_recovery_code(self, identifier: Optional[str] = None) -> bool:
        """Log in with the single-use code in ``recovery_code``.

        Raises
        ------
        NoIdentifier
            No identifier is known for the account.
        """
        if not self.recovery_code.strip():
            return False
        try:
            await self._auth.recover_with_code(self.recovery_code, identifier=identifier)
        except MfaInvalidRecoveryCode as exc:
            self.error = str(exc)
            self.recovery_code = ""
            return False

        self.error = None
        self.recovery_code = ""
        return True

    async def request_reset(self, identifier: Optional[str] = None) -> str:
        return await self.reset_flow.request(identifier)

    async def complete_reset(self, reset_session_id: Optional[str] = None) -> bool:
        completed = await self.reset_flow.complete(reset_session_id)
        self.error = None if completed else self.reset_flow.error
        return completed

    def cancel(self) -> None:
        """Abandon the challenge and return to the anonymous state."""
        self.code.reset()
        self.recovery_code = ""
        self.reset_flow.reset()
        self.error = None
        self._session.logout()
