import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from push.errors import PermissionDenied, PlatformError, SubscriptionConflict, Unsupported
from push.keys import KeyProvider
from push.platform import PERMISSION_GRANTED, DevicePlatform
from push.subscription import Subscription, locale_from_language, normalize_topics
from push.variables import DEFAULT_TOPICS

log = logging.getLogger(__name__)


class SubscriptionWriter(Protocol):
    async def upsert(self, sub: Subscription) -> bool: ...

    async def delete(self, endpoint: str) -> bool: ...

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription: ...


@dataclass(frozen=True)
class SupportStatus:
    background_context: bool
    push: bool
    notifications: bool
    permission: str
    subscribed: bool

    @property
    def supported(self) -> bool:
        return self.background_context and self.push and self.notifications


class SubscriptionManager:
    """Subscribe and unsubscribe this device.

    Calls must not overlap; the UI disables its control while
    ``is_loading`` is set.
    """

    def __init__(
        self,
        platform: DevicePlatform,
        keys: KeyProvider,
        store: SubscriptionWriter,
        owner: Optional[str] = None,
    ):
        self.platform = platform
        self.keys = keys
        self.store = store
        self.owner = owner
        self.is_loading = False

    def _capable(self) -> bool:
        return (
            self.platform.has_background_context
            and self.platform.has_push_manager
            and self.platform.has_notifications
        )

    async def check_support(self) -> SupportStatus:
        if not self._capable():
            return SupportStatus(
                background_context=self.platform.has_background_context,
                push=self.platform.has_push_manager,
                notifications=self.platform.has_notifications,
                permission=self.platform.permission if self.platform.has_notifications else "default",
                subscribed=False,
            )

        subscribed = False
        try:
            subscribed = await self.platform.push_manager.get_subscription() is not None
        except PlatformError as exc:
            log.error("Error checking subscription: %s", exc)

        return SupportStatus(
            background_context=True,
            push=True,
            notifications=True,
            permission=self.platform.permission,
            subscribed=subscribed,
        )

    async def subscribe(self, topics: Optional[Iterable[str]] = None) -> Subscription:
        if not self._capable():
            raise Unsupported("push notifications are not supported on this device")

        self.is_loading = True
        try:
            permission = await self.platform.request_permission()
            if permission != PERMISSION_GRANTED:
                raise PermissionDenied(f"notification permission is {permission!r}")

            public_key = await self.keys.get_public_key()

            try:
                device_sub = await self.platform.push_manager.subscribe(
                    application_server_key=public_key,
                    user_visible_only=True,
                )
            except PlatformError as exc:
                raise SubscriptionConflict(str(exc)) from exc

            sub = Subscription(
                endpoint=device_sub.endpoint,
                p256dh=device_sub.p256dh,
                auth=device_sub.auth,
                owner=self.owner,
                topics=DEFAULT_TOPICS if topics is None else normalize_topics(topics),
                locale=locale_from_language(self.platform.language),
            )
            await self.store.upsert(sub)
            log.info("Subscribed %s... to %s", sub.endpoint[:80], sorted(sub.topics) or "all topics")
            return sub
        finally:
            self.is_loading = False

    async def unsubscribe(self) -> bool:
        """Returns False when there was nothing to remove."""
        if not self.platform.has_push_manager:
            return False

        self.is_loading = True
        try:
            device_sub = await self.platform.push_manager.get_subscription()
            if device_sub is None:
                return False

            await self.store.delete(device_sub.endpoint)
            await self.platform.push_manager.unsubscribe()
            log.info("Unsubscribed %s...", device_sub.endpoint[:80])
            return True
        finally:
            self.is_loading = False
