"""
Title/body wording per target status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from errands.models import Errand, ErrandStatus

from .models import NotificationType


@dataclass(frozen=True)
class RenderedNotification:
    title: str
    body: str
    type: NotificationType


# status -> (title, body format, type). Body gets "<type> errand" (or just "errand") via {subject}.
STATUS_TEMPLATES: Dict[ErrandStatus, Tuple[str, str, NotificationType]] = {
    ErrandStatus.PENDING: (
        "New Errand",
        "A new {subject} is waiting for a runner.",
        NotificationType.ERRAND_REQUEST,
    ),
    ErrandStatus.ACCEPTED: (
        "Errand Accepted",
        "Your {subject} has been accepted by a runner.",
        NotificationType.ERRAND_ACCEPTED,
    ),
    ErrandStatus.PICKED_UP: (
        "Errand Picked Up",
        "Your runner has picked up your {subject}.",
        NotificationType.ERRAND_STARTED,
    ),
    ErrandStatus.ON_THE_WAY: (
        "Errand On The Way",
        "Your {subject} is on the way to the dropoff.",
        NotificationType.ERRAND_STARTED,
    ),
    ErrandStatus.DELIVERED: (
        "Errand Completed",
        "Your {subject} has been delivered. Confirm to complete it.",
        NotificationType.ERRAND_COMPLETED,
    ),
    ErrandStatus.COMPLETED: (
        "Errand Confirmed",
        "The requester confirmed the {subject}. Thanks for running it!",
        NotificationType.ERRAND_COMPLETED,
    ),
    ErrandStatus.CANCELLED: (
        "Errand Cancelled",
        "The {subject} has been cancelled.",
        NotificationType.ERRAND_CANCELLED,
    ),
}


def render(errand: Errand, to_status: ErrandStatus) -> RenderedNotification:
    subject = f"{errand.errand_type} errand" if errand.errand_type else "errand"
    template = STATUS_TEMPLATES.get(to_status)
    if template is None:
        return RenderedNotification(
            title="Errand Update",
            body=f"Your {subject} status has been updated to {to_status.value}.",
            type=NotificationType.SYSTEM,
        )
    title, body, notification_type = template
    return RenderedNotification(title=title, body=body.format(subject=subject), type=notification_type)
