#Expose the high-level lifecycle pieces:
#State machine (pure transition/authorization rules)
#Transaction-code matcher (the atomic claim handshake)
#Coordinator (the "one call" entry point per actor action)

from .coordinator import ErrandLifecycleCoordinator, TransitionOutcome
from .local_state import OptimisticErrandView
from .policy import LifecyclePolicy, default_lifecycle_policy
from .state_machines.errand_state import TransitionResult, allowed_actions, transition
from .transaction_code import TransactionCodeMatcher

__all__ = [
    "ErrandLifecycleCoordinator",
    "LifecyclePolicy",
    "OptimisticErrandView",
    "TransactionCodeMatcher",
    "TransitionOutcome",
    "TransitionResult",
    "allowed_actions",
    "default_lifecycle_policy",
    "transition",
]
