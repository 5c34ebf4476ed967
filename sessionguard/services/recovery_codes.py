"""
Recovery Codes Viewer & Exporters.

Regenerating recovery codes invalidates the previous batch, so the
viewer asks for an explicit confirmation before calling the backend.
Exporting codes (file download, clipboard) goes through an injected
``CodeExporter`` so the core never touches platform I/O directly.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence

from sessionguard.auth import SessionStore
from sessionguard.errors import ApiError
from sessionguard.jwt_auth import require_auth
from sessionguard.logger import StructuredLogger
from sessionguard.services.auth_service import AuthService
from sessionguard.services.base_service import BaseService

DEFAULT_CODES_FILENAME: str = "recovery-codes.txt"


class CodeExporter(Protocol):
    """Platform capability for handing recovery codes to the user."""

    def download(self, codes: Sequence[str]) -> Optional[Path]: ...  # noqa: E704

    def copy(self, codes: Sequence[str]) -> bool: ...  # noqa: E704


def format_codes(codes: Sequence[str]) -> str:
    return "\n".join(codes) + "\n" if codes else ""


class FileCodeExporter:
    """Writes codes to a text file; copies through an optional clipboard writer.

    Parameters
    ----------
    directory:
        Folder the codes file is written to (created when missing).
    logger:
        Structured JSON logger.
    clipboard:
        Callable that places text on the clipboard.  Without one,
        ``copy`` reports failure.
    filename:
        Name of the codes file.
    """

    def __init__(
        self,
        directory: Path,
        logger: StructuredLogger,
        clipboard: Optional[Callable[[str], None]] = None,
        filename: str = DEFAULT_CODES_FILENAME,
    ) -> None:
        self._directory: Path = directory
        self._logger: StructuredLogger = logger
        self._clipboard: Optional[Callable[[str], None]] = clipboard
        self._filename: str = filename

    def download(self, codes: Sequence[str]) -> Optional[Path]:
        if not codes:
            return None
        target = self._directory / self._filename
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            target.write_text(format_codes(codes), encoding="utf-8")
        except OSError as exc:
            self._logger.error("Could not write recovery codes to %s: %s", target, exc)
            return None
        self._logger.info("Recovery codes saved to %s.", target, extra={"event": "CODES_EXPORTED"})
        return target

    def copy(self, codes: Sequence[str]) -> bool:
        """Best effort: any clipboard failure is logged and reported as ``False``."""
        if not codes or self._clipboard is None:
            return False
        try:
            self._clipboard(format_codes(codes))
        except Exception as exc:
            self._logger.warning("Could not copy recovery codes: %s", exc)
            return False
        return True


class RecoveryCodesViewer(BaseService):
    """Shows, regenerates and exports the user's recovery codes."""

    def __init__(
        self,
        auth_service: AuthService,
        session: SessionStore,
        exporter: CodeExporter,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._auth: AuthService = auth_service
        self.confirm_regenerate = require_auth(session)(self.confirm_regenerate)  # type: ignore[method-assign]
        self._exporter: CodeExporter = exporter
        self.codes: list[str] = []
        self.confirming: bool = False
        self.error: Optional[str] = None

    def request_regenerate(self) -> None:
        self.confirming = True
        self.error = None

    def cancel_regenerate(self) -> None:
        self.confirming = False

    async def confirm_regenerate(self) -> bool:
        """Replace the codes with a fresh batch; requires ``request_regenerate`` first."""
        if not self.confirming:
            return False
        self.confirming = False
        try:
            result = await self._auth.generate_mfa()
        except ApiError as exc:
            self._logger.warning("Recovery code regeneration failed: %s", exc)
            self.error = "Failed to generate new recovery codes. Please try again."
            return False

        self.codes = list(result.recovery_codes)
        self.error = None
        return True

    def download(self) -> Optional[Path]:
        return self._exporter.download(self.codes)

    def copy(self) -> bool:
        return self._exporter.copy(self.codes)

    def close(self) -> None:
        self.codes = []
        self.confirming = False
        self.error = None
