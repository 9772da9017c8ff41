from .errand_state import (
    TRANSITIONS,
    TransitionResult,
    TransitionRule,
    allowed_actions,
    apply,
    transition,
)

__all__ = [
    "TRANSITIONS",
    "TransitionResult",
    "TransitionRule",
    "allowed_actions",
    "apply",
    "transition",
]
