"""Expo push notification delivery, one recipient per call."""

import logging

import httpx

from shuttle.config import settings
from shuttle.core.errors import PushDeliveryError

logger = logging.getLogger(__name__)


def is_expo_push_token(token: str | None) -> bool:
    if not token:
        return False
    return (
        (token.startswith("ExponentPushToken[") or token.startswith("ExpoPushToken["))
        and token.endswith("]")
    )


class PushClient:
    """Stores the notification in history, then pushes it if the user has a token."""

    def __init__(self, store, client: httpx.AsyncClient | None = None) -> None:
        self.store = store
        self._client = client or httpx.AsyncClient(
            timeout=10.0,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        type: str = "INFO",
        data: dict | None = None,
    ) -> bool:
        """Returns True when a push was accepted, False when only history was saved.

        Raises PushDeliveryError when storing or sending fails.
        """
        data = data or {}
        try:
            notification_id = await self.store.save_notification(user_id, title, body, type, data)
            token = await self.store.find_push_token(user_id)
        except Exception as e:
            raise PushDeliveryError(user_id, f"history write failed: {e}") from e

        if not is_expo_push_token(token):
            logger.info("User %s has no valid push token, saved to history only", user_id)
            return False

        message = {
            "to": token,
            "sound": "default",
            "title": title,
            "body": body,
            "data": {**data, "notificationId": notification_id, "type": type},
            "priority": "high",
            "channelId": "default",
        }
        try:
            resp = await self._client.post(settings.expo_push_url, json=[message])
            resp.raise_for_status()
            tickets = resp.json().get("data", [])
        except httpx.HTTPError as e:
            raise PushDeliveryError(user_id, str(e)) from e

        for ticket in tickets:
            if ticket.get("status") == "error":
                raise PushDeliveryError(user_id, ticket.get("message", "rejected"))
        logger.debug("Push delivered to %s: %s", user_id, tickets)
        return True
