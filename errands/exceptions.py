"""
Error taxonomy shared by the lifecycle, tracking and notification packages.
"""
from __future__ import annotations

from typing import Optional


class ErrandError(Exception):
    """Base class for every error raised by the errand core."""
    pass


class ValidationError(ErrandError):
    """Malformed request, e.g. missing coordinates or a badly formed code."""
    pass


class InvalidTransitionError(ErrandError):
    """Raised when an action is not legal for the errand's current status."""

    def __init__(self, message: str, *, status=None, action=None):
        super().__init__(message)
        self.status = status
        self.action = action


class UnauthorizedRoleError(InvalidTransitionError):
    """
    The (status, action) pair exists but the actor is the wrong role or the
    wrong person, e.g. a runner other than the assigned one.
    """
    pass


class NotFoundError(ErrandError):
    """Unknown errand id or transaction code."""
    pass


class AlreadyClaimedError(NotFoundError):
    """
    The errand is held by another runner: either the code was submitted after
    the claim landed, or this runner lost a concurrent claim race.
    """

    def __init__(self, message: str, *, errand_id: Optional[str] = None):
        super().__init__(message)
        self.errand_id = errand_id


class NetworkError(ErrandError):
    """Transient collaborator failure or timeout. The errand is in its prior committed state; safe to retry."""
    retryable = True


class NotificationDeliveryError(ErrandError):
    """Push delivery failed. Never rolls back a committed transition."""
    pass


class TransactionCodeError(ErrandError):
    """No free transaction code could be generated, or a code collided on create."""
    pass
