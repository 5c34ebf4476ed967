"""
MFA Enrollment Wizard.

Four linear steps turn MFA on:

1. ``RECOVERY_EMAIL``: confirm the existing recovery email or save a new
   one.  Success generates a fresh secret and a batch of recovery codes.
2. ``RECOVERY_CODES``: the user acknowledges having stored the codes.
3. ``VERIFICATION``: a TOTP code proves the authenticator is set up.
4. ``COMPLETE``: MFA is on; closing the wizard clears its local state
   after a short delay.

Every transition is guarded by :meth:`MfaEnrollmentWizard.can_advance`;
a guarded violation raises ``WizardStepError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from sessionguard.auth import SessionStore
from sessionguard.errors import ApiError, EmailAlreadyInUse, MfaInvalidCode, WizardStepError
from sessionguard.jwt_auth import require_auth
from sessionguard.logger import StructuredLogger
from sessionguard.models.auth_models import MfaGenerationResult
from sessionguard.models.enums import CodeMode, EnrollmentStep
from sessionguard.services.auth_service import AuthService
from sessionguard.services.base_service import BaseService
from sessionguard.services.connectivity import Scheduler, TimerHandle
from sessionguard.services.recovery_codes import CodeExporter
from sessionguard.utils.code_buffer import CodeBuffer

GENERATION_FAILED_MESSAGE: str = "Failed to generate MFA codes"
SAVE_EMAIL_FAILED_MESSAGE: str = "Failed to save recovery email"


class MfaEnrollmentWizard(BaseService):
    """State machine behind the "enable MFA" dialog.

    Parameters
    ----------
    auth_service:
        Performs profile, generation and enablement calls.
    session:
        Shared session record; enrollment requires it to be
        authenticated.
    exporter:
        Download / copy capability for the recovery codes.
    scheduler:
        Timer source for the delayed reset on close.
    logger:
        Structured JSON logger.
    on_enabled:
        Called once MFA has been enabled (wired to
        ``AuthService.update_mfa_status(True)``).
    code_length:
        TOTP code length.
    reset_delay_s:
        Delay between ``close()`` and the reset of the wizard state.
    """

    def __init__(
        self,
        auth_service: AuthService,
        session: SessionStore,
        exporter: CodeExporter,
        scheduler: Scheduler,
        logger: StructuredLogger,
        on_enabled: Optional[Callable[[], None]] = None,
        code_length: int = 6,
        reset_delay_s: float = 0.3,
    ) -> None:
        super().__init__(logger)
        self._auth: AuthService = auth_service
        self._session: SessionStore = session
        self._exporter: CodeExporter = exporter
        self._scheduler: Scheduler = scheduler
        self._on_enabled: Optional[Callable[[], None]] = on_enabled
        self._reset_delay_s: float = reset_delay_s
        self._reset_timer: Optional[TimerHandle] = None

        self.code: CodeBuffer = CodeBuffer(code_length, CodeMode.NUMERIC)
        self.step: EnrollmentStep = EnrollmentStep.RECOVERY_EMAIL
        self.is_open: bool = False
        self.has_recovery_email: bool = False
        self.editing_email: bool = False
        self.generation: Optional[MfaGenerationResult] = None
        self.codes_acknowledged: bool = False
        self.error: Optional[str] = None

        guard = require_auth(session)
        self.open = guard(self.open)  # type: ignore[method-assign]
        self.confirm_existing_email = guard(self.confirm_existing_email)  # type: ignore[method-assign]
        self.save_recovery_email = guard(self.save_recovery_email)  # type: ignore[method-assign]
        self.verify = guard(self.verify)  # type: ignore[method-assign]

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @property
    def recovery_codes(self) -> list[str]:
        return list(self.generation.recovery_codes) if self.generation else []

    @property
    def secret(self) -> Optional[str]:
        return self.generation.secret if self.generation else None

    @property
    def provisioning_link(self) -> Optional[str]:
        return self.generation.link if self.generation else None

    def can_advance(self, step: EnrollmentStep) -> bool:
        """Whether the wizard may move to *step* from where it is now."""
        if step == EnrollmentStep.RECOVERY_EMAIL:
            return self.is_open
        if step == EnrollmentStep.RECOVERY_CODES:
            return (
                self.is_open
                and self.step == EnrollmentStep.RECOVERY_EMAIL
                and self._session.recovery_email is not None
            )
        if step == EnrollmentStep.VERIFICATION:
            return (
                self.step == EnrollmentStep.RECOVERY_CODES
                and bool(self.recovery_codes)
                and self.codes_acknowledged
            )
        if step == EnrollmentStep.COMPLETE:
            return (
                self.step == EnrollmentStep.VERIFICATION
                and self.generation is not None
                and self.code.is_complete()
            )
        return False

    def _require(self, step: EnrollmentStep) -> None:
        if not self.can_advance(step):
            raise WizardStepError(
                f"Cannot move to step {step.name} from {self.step.name}"
            )

    # ------------------------------------------------------------------
    # Step 1: recovery email
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start (or restart) at step 1."""
        self._cancel_reset_timer()
        self._reset_state()
        self.is_open = True
        self.has_recovery_email = self._session.recovery_email is not None
        self._logger.debug(
            "Enrollment wizard opened.",
            extra={"event": "MFA_ENROLL_OPEN", "has_recovery_email": self.has_recovery_email},
        )

    async def confirm_existing_email(self) -> None:
        """Keep the current recovery email and generate the secret."""
        if not self.has_recovery_email:
            raise WizardStepError("No recovery email to confirm")
        self._require(EnrollmentStep.RECOVERY_CODES)
        await self._generate()

    def use_different_email(self) -> None:
        if self.step != EnrollmentStep.RECOVERY_EMAIL:
            raise WizardStepError("The recovery email can only be changed on the first step")
        self.editing_email = True
        self.error = None

    async def save_recovery_email(self, email: str) -> bool:
        """Save *email* as the recovery address, then generate the secret.

        Returns ``False`` with ``error`` set when the address is invalid
        or already in use.
        """
        if not self.is_open or self.step != EnrollmentStep.RECOVERY_EMAIL:
            raise WizardStepError("The recovery email can only be saved on the first step")

        validation = self._auth.validate_email(email)
        if not validation.is_valid:
            self.error = validation.error_message
            return False

        try:
            await self._auth.update_profile(recovery_email=email)
        except EmailAlreadyInUse as exc:
            self.error = str(exc)
            return False
        except ApiError as exc:
            self._logger.warning("Saving the recovery email failed: %s", exc)
            self.error = SAVE_EMAIL_FAILED_MESSAGE
            return False

        self.has_recovery_email = True
        self.editing_email = False
        await self._generate()
        return True

    async def _generate(self) -> None:
        """Fetch the secret and codes and land on step 2.

        A failure still lands on step 2 with no codes, from which only
        ``open()`` leads anywhere.
        """
        try:
            self.generation = await self._auth.generate_mfa()
            self.error = None
        except ApiError as exc:
            self._logger.warning("MFA generation failed: %s", exc, extra={"event": "MFA_GENERATE_FAILED"})
            self.generation = None
            self.error = GENERATION_FAILED_MESSAGE
        self.codes_acknowledged = False
        self.step = EnrollmentStep.RECOVERY_CODES

    # ------------------------------------------------------------------
    # Step 2: recovery codes
    # ------------------------------------------------------------------

    def acknowledge_codes(self, acknowledged: bool = True) -> None:
        if self.step != EnrollmentStep.RECOVERY_CODES:
            raise WizardStepError("Recovery codes are only shown on the second step")
        self.codes_acknowledged = acknowledged

    def download_codes(self) -> Optional[Path]:
        return self._exporter.download(self.recovery_codes)

    def copy_codes(self) -> bool:
        return self._exporter.copy(self.recovery_codes)

    def advance_to_verification(self) -> None:
        self._require(EnrollmentStep.VERIFICATION)
        self.step = EnrollmentStep.VERIFICATION
        self.code.reset()
        self.error = None

    def back_to_codes(self) -> None:
        """Return from verification to the codes step; the acknowledgement is kept."""
        if self.step != EnrollmentStep.VERIFICATION:
            raise WizardStepError("Can only go back from the verification step")
        self.step = EnrollmentStep.RECOVERY_CODES
        self.code.reset()
        self.error = None

    # ------------------------------------------------------------------
    # Step 3: verification
    # ------------------------------------------------------------------

    async def verify(self) -> bool:
        """Enable MFA with the code in ``code``.

        Returns ``False`` (``error`` set, buffer cleared) when the code
        is rejected.
        """
        self._require(EnrollmentStep.COMPLETE)
        generation = self.generation
        if generation is None:
            raise WizardStepError("No MFA secret has been generated")

        try:
            await self._auth.enable_mfa(
                self.code.value(),
                generation.secret,
                list(generation.recovery_codes),
            )
        except MfaInvalidCode as exc:
            self.error = str(exc)
            self.code.reset()
            return False

        self.step = EnrollmentStep.COMPLETE
        self.error = None
        if self._on_enabled is not None:
            self._on_enabled()
        return True

    # ------------------------------------------------------------------
    # Step 4: close
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Hide the wizard; its state is cleared after ``reset_delay_s``."""
        self.is_open = False
        self._cancel_reset_timer()
        self._reset_timer = self._scheduler.call_later(self._reset_delay_s, self._on_reset_elapsed)

    def _on_reset_elapsed(self) -> None:
        self._reset_timer = None
        self._reset_state()

    def _cancel_reset_timer(self) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None

    def _reset_state(self) -> None:
        self.step = EnrollmentStep.RECOVERY_EMAIL
        self.has_recovery_email = False
        self.editing_email = False
        self.generation = None
        self.codes_acknowledged = False
        self.error = None
        self.code.reset()
