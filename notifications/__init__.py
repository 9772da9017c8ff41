"""
Notifications package.

Public API:
- Models: Notification, NotificationType, TransitionEvent
- Stores: NotificationStore, InMemoryNotificationStore
- Push: PushSender, ExpoPushSender
- Fan-out: NotificationDispatcher, DeliveryTask, DeliveryState, DispatchReceipt
"""
from .dispatcher import DeliveryState, DeliveryTask, DispatchReceipt, NotificationDispatcher
from .models import Notification, NotificationType, TransitionEvent
from .push_client import ExpoPushSender, PushSender
from .store import InMemoryNotificationStore, NotificationStore
from .templates import render

__all__ = [
    "DeliveryState",
    "DeliveryTask",
    "DispatchReceipt",
    "ExpoPushSender",
    "InMemoryNotificationStore",
    "Notification",
    "NotificationDispatcher",
    "NotificationStore",
    "NotificationType",
    "PushSender",
    "TransitionEvent",
    "render",
]
