"""Shared utilities for the sessionguard core.

Convenience re-exports so consumers can import directly from
``sessionguard.utils`` while full absolute imports remain supported.
"""

from sessionguard.utils.audit import AuditEvent, log_auth_event
from sessionguard.utils.code_buffer import CodeBuffer

__all__ = [
    "AuditEvent",
    "CodeBuffer",
    "log_auth_event",
]
