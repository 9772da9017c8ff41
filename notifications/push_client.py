#Purpose: The push "adapter/client".
#Sole responsibility: hand a persisted Notification to the push gateway over HTTP.
#Encapsulates gateway-specific details:
#payload shape (to / title / body / data)
#push token lookup for the recipient
#timeouts and error normalisation into NotificationDeliveryError
#It should not decide who gets notified or what the text says.


from dotenv import load_dotenv
import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import requests

from errands.exceptions import NotificationDeliveryError

from .models import Notification

# Read the push gateway URL from environment
# Example in .env:
# PUSH_BASE_URL=https://exp.host/--/api/v2/push/send
load_dotenv()
PUSH_BASE_URL = os.getenv("PUSH_BASE_URL", "https://exp.host/--/api/v2/push/send")

logger = logging.getLogger(__name__)

TokenLookup = Callable[[str], Awaitable[Optional[str]]]


class PushSender(Protocol):
    async def send(self, notification: Notification) -> bool:
        """
        True if a push went out, False if the recipient has no device to push to.
        Raises NotificationDeliveryError on failure.
        """
        ...


class ExpoPushSender:
    """
    Push sender for Expo push tokens.

    - Resolves the recipient's push token through `token_lookup`
    - POSTs one message per notification, no batching, no retry
    - Runs the blocking HTTP call in a worker thread so the event loop keeps ticking
    """

    def __init__(self, token_lookup: TokenLookup, base_url: Optional[str] = None, timeout: int = 5):
        self.token_lookup = token_lookup
        self.base_url = base_url or PUSH_BASE_URL
        self.timeout = timeout #seconds to wait for the gateway before giving up

        if not self.base_url:
            raise ValueError("Push base URL not set. Please set PUSH_BASE_URL in the .env file.")

    def build_payload(self, token: str, notification: Notification) -> Dict[str, Any]:
        return {
            "to": token,
            "title": notification.title,
            "body": notification.body,
            "data": dict(notification.data, notificationId=notification.id),
        }

    async def send(self, notification: Notification) -> bool:
        token = await self.token_lookup(notification.recipient_id)
        if not token:
            logger.info("No push token for %s, notification stays in-app only", notification.recipient_id)
            return False

        payload = self.build_payload(token, notification)
        try:
            response = await asyncio.to_thread(
                requests.post,
                self.base_url,
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationDeliveryError(f"Push gateway unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise NotificationDeliveryError(
                f"Push gateway returned HTTP {response.status_code} for {notification.id}"
            )

        try:
            data = response.json().get("data", {})
        except ValueError as exc:
            raise NotificationDeliveryError("Push gateway returned a non-JSON body") from exc
        #gateway reports per-message errors with HTTP 200
        if isinstance(data, dict) and data.get("status") == "error":
            raise NotificationDeliveryError(f"Push rejected: {data.get('message', 'Unknown error')}")
        return True
