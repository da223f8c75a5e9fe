import json
import logging
from typing import List, Optional

import redis.asyncio as redis

from push import variables
from push.subscription import Subscription, move_subscription, normalize_subscription

log = logging.getLogger(__name__)

SUBSCRIPTIONS_KEY = "push:subscriptions"

_redis_client: redis.Redis | None = None


async def init_redis(redis_url: Optional[str] = None) -> redis.Redis | None:
    global _redis_client

    redis_url = redis_url or variables.REDIS_URL

    if not redis_url:
        return None

    _redis_client = redis.from_url(redis_url)

    try:
        await _redis_client.ping()
    except Exception as e:
        log.error("Redis unavailable at startup: %s", e)
        _redis_client = None

    return _redis_client


def _decode(item) -> str:
    return item.decode() if isinstance(item, (bytes, bytearray)) else item


class RedisSubscriptionStore:
    """Subscriptions in one Redis hash, field = endpoint, value = JSON record."""

    def __init__(self, client: redis.Redis, key: str = SUBSCRIPTIONS_KEY):
        self.client = client
        self.key = key

    async def upsert(self, sub: Subscription) -> bool:
        created = await self.client.hset(self.key, sub.endpoint, json.dumps(sub.to_dict()))
        return bool(created)

    async def delete(self, endpoint: str) -> bool:
        if not endpoint:
            return False
        removed = await self.client.hdel(self.key, endpoint)
        return bool(removed)

    async def get(self, endpoint: str) -> Optional[Subscription]:
        raw = await self.client.hget(self.key, endpoint)
        if raw is None:
            return None
        return normalize_subscription(_decode(raw))

    async def all(self) -> List[Subscription]:
        values = await self.client.hvals(self.key)
        subs = []
        for raw in values:
            sub = normalize_subscription(_decode(raw))
            if sub:
                subs.append(sub)
        return subs

    async def select(self, topic: str) -> List[Subscription]:
        return [sub for sub in await self.all() if sub.matches(topic)]

    async def count(self) -> int:
        return int(await self.client.hlen(self.key))

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
        return await move_subscription(self, old_endpoint, sub)
