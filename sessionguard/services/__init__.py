"""
Session Core Services Package.

The ``create_services()`` factory wires storage, session, request
pipeline and MFA controllers together, returning a typed dict that the
application layer (views / commands) can consume without knowing the
internal dependency graph.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional, TypedDict

import httpx

from sessionguard.auth import SessionStore
from sessionguard.config import AppConfig
from sessionguard.database import KeyValueStorage
from sessionguard.logger import get_logger
from sessionguard.repositories.auth_repository import AuthRepository
from sessionguard.services.api_client import ApiClient
from sessionguard.services.auth_service import AuthService
from sessionguard.services.connectivity import AsyncioScheduler, ConnectivityMonitor, Scheduler
from sessionguard.services.mfa_challenge import MfaChallengeController
from sessionguard.services.mfa_disable import MfaDisablement
from sessionguard.services.mfa_enrollment import MfaEnrollmentWizard
from sessionguard.services.mfa_reset import MfaResetFlow
from sessionguard.services.recovery_codes import CodeExporter, FileCodeExporter, RecoveryCodesViewer
from sessionguard.services.session_cache import SessionCacheService
from sessionguard.services.token_guard import Navigator, RedirectRecorder, TokenGuard


class ServiceContainer(TypedDict):
    """Typed container for every wired component."""

    # --- State ---
    session: SessionStore
    session_cache: SessionCacheService

    # --- Request pipeline ---
    connectivity: ConnectivityMonitor
    token_guard: TokenGuard
    api_client: ApiClient
    auth_repository: AuthRepository

    # --- Orchestration ---
    auth_service: AuthService
    mfa_challenge: MfaChallengeController
    mfa_enrollment: MfaEnrollmentWizard
    mfa_disable: MfaDisablement
    recovery_codes: RecoveryCodesViewer


def create_services(
    config: AppConfig,
    storage: KeyValueStorage,
    navigator: Optional[Navigator] = None,
    scheduler: Optional[Scheduler] = None,
    exporter: Optional[CodeExporter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> ServiceContainer:
    """
    Wire all components together.

    This is the single composition root of the session core.  The
    entry point calls this once at startup; the session is rehydrated
    from *storage* as part of the wiring.

    Args:
        config: Application configuration.
        storage: Durable key-value storage for the session record.
        navigator: Receives the login path on forced logout
            (defaults to a ``RedirectRecorder``).
        scheduler: Timer source (defaults to the running event loop).
        exporter: Recovery-code download / copy capability (defaults to
            a ``FileCodeExporter`` writing to the home directory).
        transport: Optional httpx transport for the API client.
        clock: Epoch-seconds clock shared by expiry checks.

    Returns:
        ServiceContainer mapping component names to wired instances.
    """
    logger = get_logger("sessionguard.services")

    # ------------------------------------------------------------------
    # 1. Session state (rehydrated from storage)
    # ------------------------------------------------------------------
    session_cache = SessionCacheService(
        storage=storage,
        logger=logger,
        storage_key=config.SESSION_STORAGE_KEY,
        encrypt=config.SESSION_ENCRYPTION,
        salt_path=Path(config.SESSION_SALT_PATH) if config.SESSION_SALT_PATH else None,
        passphrase=config.SESSION_PASSPHRASE.get_secret_value(),
    )
    session = SessionStore(cache=session_cache, logger=logger, clock=clock)

    # ------------------------------------------------------------------
    # 2. Request pipeline
    # ------------------------------------------------------------------
    resolved_scheduler: Scheduler = scheduler or AsyncioScheduler()
    connectivity = ConnectivityMonitor(
        logger=logger,
        grace_period_s=config.connectivity_grace_s,
        scheduler=resolved_scheduler,
    )
    token_guard = TokenGuard(
        session=session,
        connectivity=connectivity,
        navigator=navigator or RedirectRecorder(),
        logger=logger,
        login_path=config.LOGIN_PATH,
        clock=clock,
    )
    api_client = ApiClient(
        base_url=config.API_BASE_URL,
        guard=token_guard,
        logger=logger,
        timeout=config.API_TIMEOUT_S,
        transport=transport,
    )
    auth_repository = AuthRepository(api=api_client, logger=logger)

    # ------------------------------------------------------------------
    # 3. Orchestration
    # ------------------------------------------------------------------
    auth_service = AuthService(session=session, repo=auth_repository, logger=logger)
    resolved_exporter: CodeExporter = exporter or FileCodeExporter(
        directory=Path.home(), logger=logger,
    )

    mfa_challenge = MfaChallengeController(
        auth_service=auth_service,
        session=session,
        logger=logger,
        reset_flow=MfaResetFlow(
            auth_service=auth_service,
            session=session,
            logger=logger,
            code_length=config.EMAIL_CODE_LENGTH,
        ),
        code_length=config.TOTP_CODE_LENGTH,
    )
    mfa_enrollment = MfaEnrollmentWizard(
        auth_service=auth_service,
        session=session,
        exporter=resolved_exporter,
        scheduler=resolved_scheduler,
        logger=logger,
        on_enabled=lambda: auth_service.update_mfa_status(True),
        code_length=config.TOTP_CODE_LENGTH,
        reset_delay_s=config.wizard_reset_delay_s,
    )
    mfa_disable = MfaDisablement(
        auth_service=auth_service,
        session=session,
        logger=logger,
        on_disabled=lambda: auth_service.update_mfa_status(False),
        code_length=config.TOTP_CODE_LENGTH,
        email_code_length=config.EMAIL_CODE_LENGTH,
    )
    recovery_codes = RecoveryCodesViewer(
        auth_service=auth_service,
        session=session,
        exporter=resolved_exporter,
        logger=logger,
    )

    return ServiceContainer(
        session=session,
        session_cache=session_cache,
        connectivity=connectivity,
        token_guard=token_guard,
        api_client=api_client,
        auth_repository=auth_repository,
        auth_service=auth_service,
        mfa_challenge=mfa_challenge,
        mfa_enrollment=mfa_enrollment,
        mfa_disable=mfa_disable,
        recovery_codes=recovery_codes,
    )
