"""
Repository Package.

Each repository maps one backend resource to plain method calls over the
guarded ``ApiClient``; no session logic lives here.
"""

from sessionguard.repositories.auth_repository import AuthRepository
from sessionguard.repositories.base_repository import BaseRepository

__all__ = ["AuthRepository", "BaseRepository"]
