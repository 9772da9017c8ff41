"""
Purpose: Turn committed transitions into notifications for the counterparty.
What it does:
- on_transition(event): resolve the recipient (requester <-> runner), render the template
  for the target status, persist an unread Notification, then hand it to a DeliveryTask
  for push.
- DeliveryTask makes the delivery contract explicit: one attempt, no redelivery, no
  deduplication. The same transition reported twice produces two notifications.

Notification delivery sits outside the transition's transactional boundary: by the time
this runs the status change is committed, and nothing here can undo it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from errands.exceptions import NotFoundError, NotificationDeliveryError
from errands.models import Errand
from errands.repository import ErrandRepository

from .models import Notification, TransitionEvent
from .push_client import PushSender
from .store import NotificationStore
from .templates import render

logger = logging.getLogger(__name__)


class DeliveryState(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    SKIPPED = "skipped"  # no sender, or recipient has no device
    FAILED = "failed"


@dataclass
class DeliveryTask:
    """
    At-most-once push delivery of one persisted notification.
    """
    notification: Notification
    state: DeliveryState = DeliveryState.PENDING
    attempts: int = 0
    error: Optional[str] = None

    async def run(self, sender: Optional[PushSender]) -> DeliveryState:
        if self.attempts:
            raise RuntimeError(f"Delivery of {self.notification.id} already attempted, push is at-most-once")
        self.attempts = 1

        if sender is None:
            self.state = DeliveryState.SKIPPED
            return self.state

        try:
            delivered = await sender.send(self.notification)
        except NotificationDeliveryError as exc:
            self.state = DeliveryState.FAILED
            self.error = str(exc)
            logger.warning(
                "Push for notification %s to %s failed: %s",
                self.notification.id, self.notification.recipient_id, exc,
            )
            return self.state

        self.state = DeliveryState.DELIVERED if delivered else DeliveryState.SKIPPED
        return self.state


@dataclass(frozen=True)
class DispatchReceipt:
    event: TransitionEvent
    recipient_id: Optional[str] = None
    notification: Optional[Notification] = None
    task: Optional[DeliveryTask] = field(default=None, compare=False)

    @property
    def notified(self) -> bool:
        return self.notification is not None


class NotificationDispatcher:
    def __init__(
        self,
        store: NotificationStore,
        repository: ErrandRepository,
        push_sender: Optional[PushSender] = None,
    ):
        self.store = store
        self.repository = repository
        self.push_sender = push_sender

    async def on_transition(self, event: TransitionEvent, errand: Optional[Errand] = None) -> DispatchReceipt:
        """
        `errand` may be passed by callers that already hold the committed snapshot,
        otherwise it is loaded from the repository.
        """
        if errand is None:
            errand = await self.repository.get_by_id(event.errand_id)
            if errand is None:
                raise NotFoundError(f"Errand {event.errand_id} not found")

        recipient_id = errand.counterpart_of(event.initiator_id)
        if recipient_id is None:
            # e.g. a pending errand cancelled before any runner claimed it
            logger.info(
                "No counterparty for %s on errand %s, nothing to notify",
                event.to_status.value, event.errand_id,
            )
            return DispatchReceipt(event=event)

        rendered = render(errand, event.to_status)
        notification = Notification(
            recipient_id=recipient_id,
            title=rendered.title,
            body=rendered.body,
            type=rendered.type,
            data={
                "errand_id": errand.id,
                "status": event.to_status.value,
                "from_status": event.from_status.value if event.from_status else None,
                "sender_id": event.initiator_id,
            },
        )
        stored = await self.store.append(notification)

        task = DeliveryTask(stored)
        await task.run(self.push_sender)

        logger.info(
            "Notified %s of errand %s -> %s (push %s)",
            recipient_id, errand.id, event.to_status.value, task.state.value,
        )
        return DispatchReceipt(event=event, recipient_id=recipient_id, notification=stored, task=task)
