"""
Errands domain package.

Public API:
- Domain models: Errand, Place, Coordinates, ActorPosition, StatusChange
- Enums: ErrandStatus, ActorRole, ErrandAction
- Error taxonomy (errands.exceptions)
- Persistence: ErrandRepository, InMemoryErrandRepository
"""
from .exceptions import (
    AlreadyClaimedError,
    ErrandError,
    InvalidTransitionError,
    NetworkError,
    NotFoundError,
    NotificationDeliveryError,
    TransactionCodeError,
    UnauthorizedRoleError,
    ValidationError,
)
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ActorPosition,
    ActorRole,
    Coordinates,
    Errand,
    ErrandAction,
    ErrandStatus,
    Place,
    StatusChange,
)
from .repository import ErrandRepository, InMemoryErrandRepository

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "ActorPosition",
    "ActorRole",
    "AlreadyClaimedError",
    "Coordinates",
    "Errand",
    "ErrandAction",
    "ErrandError",
    "ErrandRepository",
    "ErrandStatus",
    "InMemoryErrandRepository",
    "InvalidTransitionError",
    "NetworkError",
    "NotFoundError",
    "NotificationDeliveryError",
    "Place",
    "StatusChange",
    "TransactionCodeError",
    "UnauthorizedRoleError",
    "ValidationError",
]
