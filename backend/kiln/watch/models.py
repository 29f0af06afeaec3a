"""
Change intent models emitted by the watcher.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeIntent(BaseModel):
    """
    A debounced filesystem change inside a watched project.

    file_id is None when the path has no FileRecord yet (a new file, or a
    directory-level change).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    project_id: str
    file_id: Optional[str] = None
    path: str
    change_kind: ChangeKind
