import logging
from datetime import timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import db.orm.utils as db
from db.orm import session as session_mod
from push import redis_db
from push.delivery_log import DeliveryLog, DeliveryLogEntry, MemoryDeliveryLog
from push.subscription import (
    MemorySubscriptionStore,
    Subscription,
    SubscriptionStore,
    move_subscription,
    normalize_subscription,
)
from push.variables import ALL_TOPIC

log = logging.getLogger(__name__)


class SqlSubscriptionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert(self, sub: Subscription) -> bool:
        return await db.save_sub(
            self.session_factory,
            endpoint=sub.endpoint,
            p256dh=sub.p256dh,
            auth=sub.auth,
            owner=sub.owner,
            topics=sorted(sub.topics),
            locale=sub.locale,
        )

    async def delete(self, endpoint: str) -> bool:
        return await db.delete_sub(self.session_factory, endpoint)

    async def get(self, endpoint: str) -> Optional[Subscription]:
        row = await db.get_sub(self.session_factory, endpoint)
        return normalize_subscription(row) if row else None

    async def select(self, topic: str) -> List[Subscription]:
        rows = await db.get_all_sub(self.session_factory, None if topic == ALL_TOPIC else topic)
        return [sub for sub in map(normalize_subscription, rows) if sub]

    async def count(self) -> int:
        return await db.count_sub(self.session_factory)

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
        return await move_subscription(self, old_endpoint, sub)


class SqlDeliveryLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, entry: DeliveryLogEntry) -> None:
        await db.add_delivery_log(
            self.session_factory,
            title=entry.title,
            body=entry.body,
            url=entry.url,
            topic=entry.topic,
            sent_count=entry.sent_count,
            failed_count=entry.failed_count,
            sent_by=entry.issued_by,
            created_at=entry.timestamp,
        )

    async def recent(self, limit: int = 20) -> List[DeliveryLogEntry]:
        entries = []
        for row in await db.get_delivery_logs(self.session_factory, limit):
            timestamp = row.created_at
            if timestamp.tzinfo is None:
                # sqlite drops the offset
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            entries.append(
                DeliveryLogEntry(
                    title=row.title,
                    body=row.body,
                    url=row.url,
                    topic=row.topic,
                    sent_count=row.sent_count,
                    failed_count=row.failed_count,
                    issued_by=row.sent_by,
                    timestamp=timestamp,
                )
            )
        return entries


async def build_storage(offline: bool = False) -> tuple[SubscriptionStore, DeliveryLog]:
    """Pick the subscription store and delivery log from configuration.

    Database first, then Redis, then process memory.
    """
    if not offline and session_mod.db_available():
        try:
            await db.init_db()
        except Exception as exc:
            log.warning(f"init_db() failed: {exc}")
            db.disable_db()
        else:
            log.info("Using database subscription store")
            factory = session_mod.AsyncSessionLocal
            return SqlSubscriptionStore(factory), SqlDeliveryLog(factory)
    elif offline:
        log.info("db disabled, offline mode")

    redis_client = await redis_db.init_redis()
    if redis_client is not None:
        log.info("Using Redis subscription store")
        return redis_db.RedisSubscriptionStore(redis_client), MemoryDeliveryLog()

    log.info("Using in-memory subscription store")
    return MemorySubscriptionStore(), MemoryDeliveryLog()
