"""
Auth Repository.

One method per authentication / MFA endpoint of the backend.  The
login-family calls return the raw ``httpx.Response`` because their
meaning travels partly in headers (``X-MFA-Token``, ``X-Expires-At``);
everything else returns the decoded body.

Login-family requests are sent with ``handle_unauthorized=False``: a
401 there means "wrong credentials" or "second factor required", not
"your session was revoked".
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from sessionguard.models.auth_models import MfaGenerationResult
from sessionguard.repositories.base_repository import BaseRepository


class AuthRepository(BaseRepository):
    """REST surface consumed by the session core."""

    # ------------------------------------------------------------------
    # Login family (anonymous)
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> httpx.Response:
        return await self._api.request(
            "POST", "/api/login",
            json={"username": username, "password": password},
            handle_unauthorized=False,
        )

    async def validate_mfa(self, challenge_token: str, code: str) -> httpx.Response:
        return await self._api.request(
            "POST", "/api/user/mfa/auth",
            json={"token": challenge_token, "code": code},
            handle_unauthorized=False,
        )

    async def recover_mfa(self, identifier: str, recovery_code: str) -> httpx.Response:
        return await self._api.request(
            "POST", "/api/user/mfa/recover",
            json={"identifier": identifier, "recovery_code": recovery_code},
            handle_unauthorized=False,
        )

    async def request_mfa_reset(self, identifier: str) -> dict[str, Any]:
        response = await self._api.request(
            "POST", "/api/user/mfa/reset",
            json={"identifier": identifier},
            handle_unauthorized=False,
        )
        return self._json(response, "request_mfa_reset")

    async def complete_mfa_reset(
        self,
        reset_session_id: str,
        main_email_code: str,
        recovery_email_code: str,
    ) -> httpx.Response:
        return await self._api.request(
            "PUT", f"/api/user/mfa/reset/{reset_session_id}",
            json={
                "main_email_code": main_email_code,
                "recovery_email_code": recovery_email_code,
            },
            handle_unauthorized=False,
        )

    async def request_password_recovery(self, identifier: str) -> None:
        await self._api.request(
            "POST", "/api/user/recover_password",
            json={"email": identifier},
            handle_unauthorized=False,
        )

    async def complete_password_recovery(self, user_id: str, token: str, password: str) -> None:
        await self._api.request(
            "POST", f"/api/user/{user_id}/update_password",
            json={"token": token, "password": password},
            handle_unauthorized=False,
        )

    # ------------------------------------------------------------------
    # Authenticated user
    # ------------------------------------------------------------------

    async def get_user(self) -> dict[str, Any]:
        response = await self._api.request("GET", "/api/auth/user")
        return self._json(response, "get_user")

    async def update_user(self, fields: dict[str, Any]) -> dict[str, Any]:
        response = await self._api.request("PATCH", "/api/users", json=fields)
        return self._json(response, "update_user")

    async def update_password(self, current_password: str, password: str) -> None:
        await self._api.request(
            "PATCH", "/api/users",
            json={"current_password": current_password, "password": password},
        )

    # ------------------------------------------------------------------
    # MFA management
    # ------------------------------------------------------------------

    async def generate_mfa(self) -> MfaGenerationResult:
        response = await self._api.request("GET", "/api/user/mfa/generate")
        return MfaGenerationResult.model_validate(self._json(response, "generate_mfa"))

    async def enable_mfa(self, code: str, secret: str, recovery_codes: list[str]) -> None:
        await self._api.request(
            "PUT", "/api/user/mfa/enable",
            json={"code": code, "secret": secret, "recovery_codes": recovery_codes},
        )

    async def disable_mfa(self, proof: Optional[dict[str, str]] = None) -> None:
        """``proof`` is one of ``{code}``, ``{recovery_code}`` or
        ``{main_email_code, recovery_email_code}``; empty inside the
        recovery window."""
        await self._api.request("PUT", "/api/user/mfa/disable", json=proof or {})
