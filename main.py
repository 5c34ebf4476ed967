"""
sessionguard Entry Point.

Bootstraps the dependency graph via constructor injection, rehydrates
the persisted session, refreshes the user when a session is held, and
reports the auth phase and backend connectivity.  Every subsystem is
wired here; there are no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import sys
import traceback
from pathlib import Path

from sessionguard.config import get_config
from sessionguard.database import SQLiteStorage
from sessionguard.logger import StructuredLogger, get_logger
from sessionguard.services import create_services


async def run() -> int:
    """Wire dependencies, restore the session and report its state."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting sessionguard...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Durable storage
    # ------------------------------------------------------------------
    storage = SQLiteStorage(
        sqlite_path=Path(config.SESSION_DB_PATH),
        logger=StructuredLogger(name="storage"),
    )
    # close() is idempotent; this covers unclean exits.
    atexit.register(storage.close)

    # ------------------------------------------------------------------
    # 3. Service container (session is rehydrated while wiring)
    # ------------------------------------------------------------------
    services = create_services(config=config, storage=storage)
    session = services["session"]

    # ------------------------------------------------------------------
    # 4. Refresh the identity of a restored session
    # ------------------------------------------------------------------
    try:
        async with services["api_client"]:
            if session.is_authenticated:
                refreshed = await services["auth_service"].fetch_user()
                logger.info(
                    "Session refresh %s.", "succeeded" if refreshed else "skipped",
                    extra={"event": "STARTUP_REFRESH"},
                )
    finally:
        storage.close()

    logger.info(
        "Auth phase: %s; backend reachable: %s",
        session.phase.value,
        services["connectivity"].api_reachable,
        extra={"event": "STARTUP_STATE", "mfa_enabled": session.mfa_enabled},
    )
    return 0


def main() -> None:
    """Application entry point."""
    sys.exit(asyncio.run(run()))


def _report_fatal_error(exc: BaseException) -> None:
    """Write a fatal error to stderr so it is never swallowed."""
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n{detail}")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        _report_fatal_error(exc)
        sys.exit(1)
