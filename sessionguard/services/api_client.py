"""
Guarded HTTP Client.

Thin wrapper over ``httpx.AsyncClient`` that runs every exchange through
``TokenGuard``: the bearer token is attached (or the request is refused)
before anything is sent, and the outcome is reported back afterwards.

Failures are raised as the ``ApiError`` taxonomy: transport errors
become ``BackendDown`` with ``status_code=None``; any response with a
status >= 400 becomes ``Unauthorized`` / ``BackendDown`` /
``ApplicationError`` according to its status.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from sessionguard.errors import ApiError, BackendDown
from sessionguard.logger import StructuredLogger
from sessionguard.services.token_guard import TokenGuard


class ApiClient:
    """Single-connection-pool client for the backend REST API.

    Parameters
    ----------
    base_url:
        Scheme and host of the backend (no trailing slash).
    guard:
        Pre-/post-flight guard shared by every request.
    logger:
        Structured JSON logger.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        guard: TokenGuard,
        logger: StructuredLogger,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._guard: TokenGuard = guard
        self._logger: StructuredLogger = logger
        self._client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        handle_unauthorized: bool = True,
    ) -> httpx.Response:
        """Send one request through the guard and return the response.

        Raises
        ------
        TokenExpired
            Pre-flight refused the request; nothing was sent.
        ApiError
            The exchange failed (see module docstring).
        """
        request_headers: dict[str, str] = {str(k): str(v) for k, v in (headers or {}).items()}
        self._guard.preflight(request_headers)

        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=request_headers,
            )
        except httpx.RequestError as exc:
            self._logger.warning(
                "%s %s failed: %s", method, path, exc,
                extra={"event": "API_NO_RESPONSE"},
            )
            error = BackendDown(f"{method} {path} failed: {exc}", status_code=None)
            self._guard.on_failure(error, handle_unauthorized=handle_unauthorized)
            raise error from exc

        if response.status_code >= 400:
            error = ApiError.from_response(response)
            self._logger.debug(
                "%s %s answered %d", method, path, response.status_code,
                extra={"event": "API_ERROR_STATUS", "status_code": response.status_code},
            )
            self._guard.on_failure(error, handle_unauthorized=handle_unauthorized)
            raise error

        self._guard.on_success()
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
