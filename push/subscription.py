import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Protocol
from urllib.parse import urlparse

from push.variables import ALL_TOPIC, DEFAULT_LOCALE

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    endpoint: str
    p256dh: str
    auth: str
    owner: Optional[str] = None
    topics: frozenset = field(default_factory=frozenset)
    locale: str = DEFAULT_LOCALE

    def matches(self, topic: str) -> bool:
        if topic == ALL_TOPIC or not self.topics:
            return True
        return topic in self.topics

    def subscription_info(self) -> dict:
        """Shape expected by pywebpush."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }

    def to_dict(self) -> dict:
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
            "owner": self.owner,
            "topics": sorted(self.topics),
            "locale": self.locale,
        }


def normalize_topics(topics: Optional[Iterable[str]]) -> frozenset:
    if not topics:
        return frozenset()
    if isinstance(topics, str):
        topics = [topics]
    return frozenset(t.strip() for t in topics if isinstance(t, str) and t.strip())


def locale_from_language(language: Optional[str]) -> str:
    if not language:
        return DEFAULT_LOCALE
    primary = language.replace("_", "-").split("-")[0].strip().lower()
    return primary or DEFAULT_LOCALE


def origin_of(endpoint: str) -> str:
    parsed = urlparse(endpoint)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"endpoint is not an absolute URL: {endpoint[:80]}")
    return f"{parsed.scheme}://{parsed.netloc}"


def is_valid_endpoint(endpoint: Any) -> bool:
    if not isinstance(endpoint, str):
        return False
    parsed = urlparse(endpoint)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_subscription(sub: Any) -> Optional[Subscription]:
    """Turn a raw record into a Subscription, or None when it is unusable.

    Accepts JSON strings, ``PushSubscription.toJSON()`` dicts with nested
    ``keys``, flat dicts and ORM rows.
    """
    if not sub:
        return None

    if isinstance(sub, Subscription):
        return sub

    if isinstance(sub, (str, bytes)):
        try:
            sub = json.loads(sub)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None

    endpoint = None
    p256dh = None
    auth = None
    owner = None
    topics: Any = None
    locale = None

    if isinstance(sub, dict):
        endpoint = sub.get("endpoint")
        keys = sub.get("keys") or {}
        if not isinstance(keys, dict):
            keys = {}
        p256dh = keys.get("p256dh") or sub.get("p256dh")
        auth = keys.get("auth") or sub.get("auth")
        owner = sub.get("owner") or sub.get("user_id")
        topics = sub.get("topics")
        locale = sub.get("locale") or sub.get("language")
    elif hasattr(sub, "endpoint"):
        endpoint = getattr(sub, "endpoint", None)
        p256dh = getattr(sub, "p256dh", None)
        auth = getattr(sub, "auth", None)
        owner = getattr(sub, "owner", None)
        topics = getattr(sub, "topics", None)
        locale = getattr(sub, "locale", None)
    else:
        return None

    if isinstance(topics, str):
        try:
            topics = json.loads(topics)
        except json.JSONDecodeError:
            topics = [topics]

    if not endpoint or not p256dh or not auth:
        return None

    return Subscription(
        endpoint=endpoint,
        p256dh=p256dh,
        auth=auth,
        owner=str(owner) if owner is not None else None,
        topics=normalize_topics(topics),
        locale=locale_from_language(locale),
    )


async def move_subscription(store, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
    """Carry owner and locale of the record at ``old_endpoint`` over to ``sub``.

    Topics come from ``sub``. The old record is deleted once the new one is
    stored.
    """
    old = await store.get(old_endpoint) if old_endpoint else None
    if old is not None:
        sub = replace(old, endpoint=sub.endpoint, p256dh=sub.p256dh, auth=sub.auth, topics=sub.topics)

    await store.upsert(sub)
    if old is not None and old_endpoint != sub.endpoint:
        await store.delete(old_endpoint)
    return sub


class SubscriptionStore(Protocol):
    async def upsert(self, sub: Subscription) -> bool:
        """Insert or replace by endpoint. Returns True when a record was created."""

    async def delete(self, endpoint: str) -> bool:
        """Delete by endpoint. Returns False when nothing was stored."""

    async def get(self, endpoint: str) -> Optional[Subscription]: ...

    async def select(self, topic: str) -> List[Subscription]: ...

    async def count(self) -> int: ...

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
        """Re-key the record at ``old_endpoint`` to ``sub``'s endpoint and keys."""


class MemorySubscriptionStore:
    """Process-local store keyed by endpoint."""

    def __init__(self, subscriptions: Optional[Iterable[Subscription]] = None):
        self._subs: Dict[str, Subscription] = {}
        for sub in subscriptions or []:
            self._subs[sub.endpoint] = sub

    async def upsert(self, sub: Subscription) -> bool:
        created = sub.endpoint not in self._subs
        self._subs[sub.endpoint] = sub
        return created

    async def delete(self, endpoint: str) -> bool:
        if not endpoint:
            return False
        return self._subs.pop(endpoint, None) is not None

    async def get(self, endpoint: str) -> Optional[Subscription]:
        return self._subs.get(endpoint)

    async def select(self, topic: str) -> List[Subscription]:
        return [sub for sub in self._subs.values() if sub.matches(topic)]

    async def count(self) -> int:
        return len(self._subs)

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
        return await move_subscription(self, old_endpoint, sub)

