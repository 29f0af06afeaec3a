"""
Project watching — filesystem subscriptions and debounced change intents.

Public API:
    ProjectWatcher — One watchdog subscription per project root
    Debouncer — Keyed trailing-edge debounce
    ChangeIntent / ChangeKind — Normalized change messages
"""

from .models import ChangeIntent, ChangeKind
from .debounce import Debouncer
from .watcher import ProjectWatcher

__all__ = [
    "ChangeIntent",
    "ChangeKind",
    "Debouncer",
    "ProjectWatcher",
]
