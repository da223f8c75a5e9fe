import logging
import time
from typing import Optional, Union

from push.errors import KeyUnavailable
from push.keys import KeyProvider
from push.manager import SubscriptionWriter
from push.payload import decode_payload
from push.platform import BackgroundContext, Notification, NotificationOptions
from push.subscription import Subscription, origin_of
from push.variables import (
    ACTION_DISMISS,
    ACTION_OPEN,
    DEFAULT_URL,
    NOTIFICATION_TAG,
    VIBRATE_PATTERN,
)

log = logging.getLogger(__name__)


class NotificationRenderer:
    """Background handler for push, click, close and subscription-change events."""

    def __init__(
        self,
        context: BackgroundContext,
        store: Optional[SubscriptionWriter] = None,
        keys: Optional[KeyProvider] = None,
    ):
        self.context = context
        self.store = store
        self.keys = keys

    async def on_push(self, data: Union[bytes, str, None]) -> Notification:
        log.debug("Push received (%s bytes)", len(data) if data else 0)
        payload = decode_payload(data)

        options = NotificationOptions(
            body=payload.body,
            icon=payload.icon,
            badge=payload.badge,
            tag=NOTIFICATION_TAG,
            data={"url": payload.url or DEFAULT_URL, "date_of_arrival": int(time.time() * 1000)},
            actions=[(ACTION_OPEN, "Abrir"), (ACTION_DISMISS, "Fechar")],
            vibrate=VIBRATE_PATTERN,
            renotify=True,
            require_interaction=False,
        )
        return await self.context.show_notification(payload.title, options)

    def _same_origin(self, url: str) -> bool:
        try:
            return origin_of(url) == origin_of(self.context.origin)
        except ValueError:
            return False

    async def on_notification_click(self, notification: Notification, action: str = "") -> None:
        log.debug("Notification clicked (action=%r)", action)
        notification.close()

        if action == ACTION_DISMISS:
            return

        url = (notification.data or {}).get("url") or DEFAULT_URL

        for client in await self.context.match_clients():
            if self._same_origin(client.url):
                await client.navigate(url)
                await client.focus()
                return

        await self.context.open_window(url)

    async def on_notification_close(self, notification: Notification) -> None:
        log.debug("Notification closed (tag=%s)", notification.tag)

    async def on_subscription_change(self, old_endpoint: Optional[str] = None) -> Subscription:
        """Re-subscribe after the platform invalidated the subscription.

        The stored record keeps its owner and locale under the new endpoint.
        It has no topics, so it receives every broadcast until the device
        subscribes again with its own topic set.
        """
        log.info("Push subscription changed")

        application_server_key = None
        if self.keys is not None:
            try:
                application_server_key = await self.keys.get_public_key()
            except KeyUnavailable as exc:
                log.warning("Re-subscribing without application server key: %s", exc)

        device_sub = await self.context.push_manager.subscribe(
            application_server_key=application_server_key,
            user_visible_only=True,
        )
        sub = Subscription(endpoint=device_sub.endpoint, p256dh=device_sub.p256dh, auth=device_sub.auth)

        if self.store is not None:
            sub = await self.store.move(old_endpoint, sub)

        log.info("Resubscribed: %s...", sub.endpoint[:80])
        return sub
