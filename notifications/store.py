from __future__ import annotations

from typing import Dict, List, Protocol

from errands.exceptions import NotFoundError

from .models import Notification


class NotificationStore(Protocol):
    async def append(self, notification: Notification) -> Notification:
        ...

    async def mark_read(self, notification_id: str) -> Notification:
        ...

    async def list(self, user_id: str) -> List[Notification]:
        """Newest first."""
        ...

    async def delete(self, notification_id: str) -> None:
        ...

    async def mark_all_read(self, user_id: str) -> int:
        ...

    async def unread_count(self, user_id: str) -> int:
        ...


class InMemoryNotificationStore:
    def __init__(self):
        self._notifications: Dict[str, Notification] = {}

    async def append(self, notification: Notification) -> Notification:
        self._notifications[notification.id] = notification
        return notification

    async def mark_read(self, notification_id: str) -> Notification:
        notification = self._notifications.get(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        updated = notification.mark_read()
        self._notifications[notification_id] = updated
        return updated

    async def list(self, user_id: str) -> List[Notification]:
        found = [n for n in self._notifications.values() if n.recipient_id == user_id]
        found.sort(key=lambda n: n.created_at, reverse=True)
        return found

    async def delete(self, notification_id: str) -> None:
        if self._notifications.pop(notification_id, None) is None:
            raise NotFoundError(f"Notification {notification_id} not found")

    async def mark_all_read(self, user_id: str) -> int:
        """
        Returns how many notifications changed.
        """
        changed = 0
        for notification_id, notification in list(self._notifications.items()):
            if notification.recipient_id == user_id and not notification.read:
                self._notifications[notification_id] = notification.mark_read()
                changed += 1
        return changed

    async def unread_count(self, user_id: str) -> int:
        return sum(
            1 for n in self._notifications.values() if n.recipient_id == user_id and not n.read
        )
