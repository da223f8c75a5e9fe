"""Device-side primitives the subscription manager and renderer run on.

A platform adapter (browser bridge, desktop agent, test double) implements
these protocols and raises ``PlatformError`` when a primitive fails.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Tuple

PERMISSION_DEFAULT = "default"
PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"


@dataclass(frozen=True)
class DeviceSubscription:
    endpoint: str
    p256dh: str
    auth: str


class PushManager(Protocol):
    async def get_subscription(self) -> Optional[DeviceSubscription]: ...

    async def subscribe(
        self,
        application_server_key: Optional[str],
        user_visible_only: bool = True,
    ) -> DeviceSubscription: ...

    async def unsubscribe(self) -> bool: ...


class DevicePlatform(Protocol):
    has_background_context: bool
    has_push_manager: bool
    has_notifications: bool
    language: Optional[str]
    push_manager: PushManager

    @property
    def permission(self) -> str: ...

    async def request_permission(self) -> str: ...


@dataclass
class NotificationOptions:
    body: str
    icon: str
    badge: str
    tag: str
    data: dict
    actions: List[Tuple[str, str]] = field(default_factory=list)
    vibrate: Tuple[int, ...] = ()
    renotify: bool = True
    require_interaction: bool = False


@dataclass
class Notification:
    title: str
    options: NotificationOptions
    closed: bool = False

    @property
    def data(self) -> dict:
        return self.options.data

    @property
    def tag(self) -> str:
        return self.options.tag

    def close(self) -> None:
        self.closed = True


class ClientView(Protocol):
    url: str

    async def navigate(self, url: str) -> Any: ...

    async def focus(self) -> Any: ...


class BackgroundContext(Protocol):
    origin: str
    push_manager: PushManager

    async def show_notification(self, title: str, options: NotificationOptions) -> Notification: ...

    async def match_clients(self) -> List[ClientView]: ...

    async def open_window(self, url: str) -> Optional[ClientView]: ...
