import itertools
from typing import Dict, List, Optional

import pytest

from push.auth import Caller, TokenAuthorizer
from push.delivery_log import MemoryDeliveryLog
from push.errors import DeliveryFailure, PlatformError
from push.keys import KeyPair, KeyProvider
from push.notifier import Notifier
from push.platform import (
    PERMISSION_DEFAULT,
    PERMISSION_GRANTED,
    DeviceSubscription,
    Notification,
    NotificationOptions,
)
from push.subscription import MemorySubscriptionStore, Subscription

ADMIN_TOKEN = "admin-secret"
VIEWER_TOKEN = "viewer-secret"

_endpoint_ids = itertools.count(1)


def make_sub(name: str, topics=(), host: str = "https://fcm.googleapis.com") -> Subscription:
    return Subscription(
        endpoint=f"{host}/fcm/send/{name}",
        p256dh=f"p256dh-{name}",
        auth=f"auth-{name}",
        topics=frozenset(topics),
    )


class FakeTransport:
    """Accepts every push except the endpoints mapped to a failure status."""

    def __init__(self, failures: Optional[Dict[str, Optional[int]]] = None):
        self.failures = failures or {}
        self.calls: List[tuple] = []

    async def send(self, sub: Subscription, data: str, headers: dict) -> int:
        self.calls.append((sub, data, headers))
        if sub.endpoint in self.failures:
            raise DeliveryFailure("push rejected", status_code=self.failures[sub.endpoint])
        return 201

    @property
    def endpoints(self) -> List[str]:
        return [sub.endpoint for sub, _, _ in self.calls]


class FakePushManager:
    def __init__(self, fail_subscribe: bool = False, fail_lookup: bool = False):
        self.current: Optional[DeviceSubscription] = None
        self.fail_subscribe = fail_subscribe
        self.fail_lookup = fail_lookup
        self.subscribe_calls: List[dict] = []

    async def get_subscription(self) -> Optional[DeviceSubscription]:
        if self.fail_lookup:
            raise PlatformError("service worker not ready")
        return self.current

    async def subscribe(self, application_server_key, user_visible_only=True) -> DeviceSubscription:
        self.subscribe_calls.append(
            {"application_server_key": application_server_key, "user_visible_only": user_visible_only}
        )
        if self.fail_subscribe:
            raise PlatformError("already subscribed with a different applicationServerKey")
        n = next(_endpoint_ids)
        self.current = DeviceSubscription(
            endpoint=f"https://updates.push.services.mozilla.com/wpush/v2/device-{n}",
            p256dh=f"BDevicePublicKey{n}",
            auth=f"deviceAuth{n}",
        )
        return self.current

    async def unsubscribe(self) -> bool:
        had = self.current is not None
        self.current = None
        return had


class FakePlatform:
    def __init__(
        self,
        background_context: bool = True,
        push: bool = True,
        notifications: bool = True,
        answer: str = PERMISSION_GRANTED,
        language: Optional[str] = "pt-BR",
        push_manager: Optional[FakePushManager] = None,
    ):
        self.has_background_context = background_context
        self.has_push_manager = push
        self.has_notifications = notifications
        self.language = language
        self.answer = answer
        self._permission = PERMISSION_DEFAULT
        self.permission_requests = 0
        self.push_manager = push_manager or FakePushManager()

    @property
    def permission(self) -> str:
        return self._permission

    async def request_permission(self) -> str:
        self.permission_requests += 1
        self._permission = self.answer
        return self.answer


class FakeClientView:
    def __init__(self, url: str):
        self.url = url
        self.navigated_to: Optional[str] = None
        self.focused = False

    async def navigate(self, url: str):
        self.navigated_to = url
        return self

    async def focus(self):
        self.focused = True
        return self


class FakeContext:
    def __init__(self, origin: str = "https://elpgreen.com", clients=None, push_manager=None):
        self.origin = origin
        self.clients: List[FakeClientView] = list(clients or [])
        self.push_manager = push_manager or FakePushManager()
        self.shown: List[Notification] = []
        self.opened: List[str] = []

    async def show_notification(self, title: str, options: NotificationOptions) -> Notification:
        # same tag replaces the visible notification
        self.shown = [n for n in self.shown if n.tag != options.tag]
        notification = Notification(title=title, options=options)
        self.shown.append(notification)
        return notification

    async def match_clients(self) -> List[FakeClientView]:
        return list(self.clients)

    async def open_window(self, url: str) -> FakeClientView:
        self.opened.append(url)
        view = FakeClientView(url)
        self.clients.append(view)
        return view


@pytest.fixture(scope="session")
def keypair() -> KeyPair:
    return KeyPair.generate()


@pytest.fixture
def key_provider(keypair) -> KeyProvider:
    return KeyProvider(keys=keypair, subject="mailto:ops@example.com")


@pytest.fixture
def store() -> MemorySubscriptionStore:
    return MemorySubscriptionStore()


@pytest.fixture
def delivery_log() -> MemoryDeliveryLog:
    return MemoryDeliveryLog()


@pytest.fixture
def authorizer() -> TokenAuthorizer:
    return TokenAuthorizer(
        {
            ADMIN_TOKEN: Caller(identity="alice", role="admin"),
            VIEWER_TOKEN: Caller(identity="bob", role="viewer"),
        }
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def notifier(store, key_provider, transport, authorizer, delivery_log) -> Notifier:
    return Notifier(
        store=store,
        keys=key_provider,
        transport=transport,
        authorizer=authorizer,
        delivery_log=delivery_log,
        concurrency=4,
        prune_all_failures=False,
    )
