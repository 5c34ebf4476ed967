"""
Email-Based MFA Reset Flow.

Last-resort recovery when neither the authenticator app nor a recovery
code is available: the backend emails one code to the primary address
and one to the recovery address, and proving both yields a fresh
session.
"""

from __future__ import annotations

from typing import Optional

from sessionguard.auth import SessionStore
from sessionguard.errors import MfaInvalidEmailCodes, NoIdentifier
from sessionguard.logger import StructuredLogger
from sessionguard.models.enums import CodeMode
from sessionguard.services.auth_service import AuthService
from sessionguard.services.base_service import BaseService
from sessionguard.utils.code_buffer import CodeBuffer


class MfaResetFlow(BaseService):
    """Request, then complete, an email-based MFA reset.

    Parameters
    ----------
    auth_service:
        Performs the two network calls.
    session:
        Source of the identifier captured at login.
    logger:
        Structured JSON logger.
    code_length:
        Length of each emailed code.
    """

    def __init__(
        self,
        auth_service: AuthService,
        session: SessionStore,
        logger: StructuredLogger,
        code_length: int = 5,
    ) -> None:
        super().__init__(logger)
        self._auth: AuthService = auth_service
        self._session: SessionStore = session
        self._explicit_identifier: Optional[str] = None
        self.main_email_code: CodeBuffer = CodeBuffer(code_length, CodeMode.ALPHANUMERIC)
        self.recovery_email_code: CodeBuffer = CodeBuffer(code_length, CodeMode.ALPHANUMERIC)
        self.requested: bool = False
        self.error: Optional[str] = None

    @property
    def identifier(self) -> Optional[str]:
        return self._session.resolve_identifier(self._explicit_identifier)

    @property
    def can_start(self) -> bool:
        return self.identifier is not None

    def set_identifier(self, identifier: Optional[str]) -> None:
        self._explicit_identifier = identifier

    async def request(self, identifier: Optional[str] = None) -> str:
        """Send the two reset emails.

        Raises
        ------
        NoIdentifier
            Nothing to identify the account by; route back to login.
        """
        if identifier is not None:
            self._explicit_identifier = identifier
        resolved = self.identifier
        if resolved is None:
            raise NoIdentifier()

        await self._auth.request_mfa_reset(resolved)
        self.requested = True
        self.error = None
        return resolved

    def can_complete(self) -> bool:
        return self.main_email_code.is_complete() and self.recovery_email_code.is_complete()

    async def complete(self, reset_session_id: Optional[str] = None) -> bool:
        """Submit both codes.  ``False`` with ``error`` set on rejection."""
        if not self.can_complete():
            return False
        try:
            await self._auth.complete_mfa_reset(
                self.main_email_code.value(),
                self.recovery_email_code.value(),
                reset_session_id=reset_session_id,
            )
        except MfaInvalidEmailCodes as exc:
            self.error = str(exc)
            self.main_email_code.reset()
            self.recovery_email_code.reset()
            return False

        self.reset()
        return True

    def reset(self) -> None:
        self.main_email_code.reset()
        self.recovery_email_code.reset()
        self.requested = False
        self.error = None
