"""
Persistence-specific errors.
"""


class PersistenceError(Exception):
    """Base exception for persistence operations."""

    pass


class CorruptStoreError(PersistenceError):
    """
    Persisted store cannot be parsed or fails schema validation.

    Fatal to store initialization. The caller decides whether to back up
    and reset; the store never silently discards user data.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Project store {path} is corrupt: {reason}")


class SaveError(PersistenceError):
    """Failed to write state to storage."""

    pass
