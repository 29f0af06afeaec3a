"""
Build coordination — per-target compile scheduling.

Public API:
    BuildCoordinator — Collapses requests per output target, builds in parallel
    TargetState / BuildOutcome / BuildResult — Scheduling and outcome models
    find_imports / dependents_of — Stylesheet import graph
"""

from .coordinator import BuildCoordinator, write_output
from .imports import dependents_of, find_imports
from .models import BuildOutcome, BuildResult, TargetState
from .state import InvalidTargetTransitionError, validate_target_transition

__all__ = [
    "BuildCoordinator",
    "BuildOutcome",
    "BuildResult",
    "InvalidTargetTransitionError",
    "TargetState",
    "dependents_of",
    "find_imports",
    "validate_target_transition",
    "write_output",
]
