"""
Persistence layer for Kiln state.

JSON document store for projects and file records, with atomic
write-then-rename saves.
"""

from .store import ProjectStore, STORE_VERSION
from .errors import PersistenceError, CorruptStoreError, SaveError

__all__ = ["ProjectStore", "STORE_VERSION", "PersistenceError", "CorruptStoreError", "SaveError"]
