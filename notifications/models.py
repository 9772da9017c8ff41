from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from errands.models import ErrandStatus, utcnow


class NotificationType(str, Enum):
    ERRAND_REQUEST = "errand_request"
    ERRAND_ACCEPTED = "errand_accepted"
    ERRAND_STARTED = "errand_started"
    ERRAND_COMPLETED = "errand_completed"
    ERRAND_CANCELLED = "errand_cancelled"
    SYSTEM = "system"


@dataclass(frozen=True)
class Notification:
    """
    Persisted record shown in the notification list. `data` points back at the
    errand and transition that produced it.
    """
    recipient_id: str
    title: str
    body: str
    type: NotificationType
    read: bool = False
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def mark_read(self) -> Notification:
        return replace(self, read=True)


@dataclass(frozen=True)
class TransitionEvent:
    """
    Emitted by the coordinator after a status change is committed.
    """
    errand_id: str
    from_status: Optional[ErrandStatus]
    to_status: ErrandStatus
    initiator_id: str
    occurred_at: datetime = field(default_factory=utcnow)
