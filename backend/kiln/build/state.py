"""
State transition validation for build targets.

INVARIANT: at most one COMPILING per target. The coordinator only moves a
target into COMPILING from QUEUED, and a target leaves COMPILING either
back to IDLE or, when a rebuild was requested meanwhile, to QUEUED.
"""

from typing import FrozenSet, Tuple

from .models import TargetState


class InvalidTargetTransitionError(Exception):
    """Raised when a target is moved through an illegal transition."""

    def __init__(self, target: str, current_state: str, target_state: str):
        self.target = target
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid build target transition for {target}: {current_state} -> {target_state}"
        )


_TARGET_TRANSITIONS: FrozenSet[Tuple[TargetState, TargetState]] = frozenset({
    (TargetState.IDLE, TargetState.QUEUED),
    (TargetState.QUEUED, TargetState.COMPILING),
    # Cancelled before a worker picked it up
    (TargetState.QUEUED, TargetState.IDLE),
    (TargetState.COMPILING, TargetState.IDLE),
    # Pending rebuild collapsed while compiling
    (TargetState.COMPILING, TargetState.QUEUED),
})


def can_transition_target(from_state: TargetState, to_state: TargetState) -> bool:
    return (from_state, to_state) in _TARGET_TRANSITIONS


def validate_target_transition(target: str, from_state: TargetState, to_state: TargetState) -> None:
    """
    Raises:
        InvalidTargetTransitionError: If the transition is not allowed
    """
    if not can_transition_target(from_state, to_state):
        raise InvalidTargetTransitionError(target, from_state.value, to_state.value)
