"""
Base Repository.

Provides shared infrastructure for all repositories:
- ApiClient reference (guarded httpx transport)
- Logger reference
- Response body decoding
"""

from __future__ import annotations

from typing import Any

import httpx

from sessionguard.logger import StructuredLogger
from sessionguard.services.api_client import ApiClient


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    def __init__(self, api: ApiClient, logger: StructuredLogger) -> None:
        self._api: ApiClient = api
        self._logger: StructuredLogger = logger

    def _json(self, response: httpx.Response, operation_name: str) -> dict[str, Any]:
        """Decode a JSON object body; empty or non-object bodies yield ``{}``."""
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            self._logger.warning("Non-JSON body returned by %s.", operation_name)
            return {}
        return body if isinstance(body, dict) else {}
