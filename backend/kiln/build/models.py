"""
Build coordinator models.

TargetState is the per-output-target state machine; BuildOutcome is what
a finished build reports.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TargetState(str, Enum):
    """
    Lifecycle of one output target.

    IDLE → QUEUED → COMPILING → IDLE
    """

    IDLE = "idle"  # Nothing scheduled
    QUEUED = "queued"  # Submitted to the worker pool, not started
    COMPILING = "compiling"  # A worker owns the target


class BuildOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # compile_enabled is False
    CANCELLED = "cancelled"  # Project removed mid-build


class BuildResult(BaseModel):
    """Result of processing one target once."""

    model_config = ConfigDict(extra="forbid")

    project_id: str
    file_id: str
    source_path: str
    output_path: str
    outcome: BuildOutcome
    error: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()
