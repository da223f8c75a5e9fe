import logging
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from db.orm import session as session_mod
from db.orm.base import Base
from db.orm.models.delivery_log import DeliveryLog
from db.orm.models.subscription import Subscription, SubscriptionTopic

log = logging.getLogger(__name__)


async def init_db(engine: Optional[AsyncEngine] = None):
    engine = engine or session_mod.engine
    if engine is None:
        log.info("init_db(): DB not available, skipping migrations.")
        return

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _find_sub(session: AsyncSession, endpoint: str) -> Optional[Subscription]:
    res = await session.execute(select(Subscription).where(Subscription.endpoint == endpoint))
    return res.scalar_one_or_none()


def _topic_rows(topics: List[str]) -> List[SubscriptionTopic]:
    return [SubscriptionTopic(topic=topic) for topic in topics]


async def save_sub(
    session_factory: async_sessionmaker[AsyncSession],
    endpoint: str,
    p256dh: str,
    auth: str,
    owner: Optional[str],
    topics: List[str],
    locale: str,
) -> bool:
    """Upsert by endpoint. Returns True when a new row was inserted.

    An insert that loses a race with a concurrent insert of the same
    endpoint is retried once as an update.
    """
    for attempt in range(2):
        async with session_factory() as session:
            try:
                existing = await _find_sub(session, endpoint)

                if existing:
                    existing.p256dh = p256dh
                    existing.auth = auth
                    existing.owner = owner
                    existing.locale = locale
                    existing.topic_rows = _topic_rows(topics)
                    await session.commit()
                    return False

                session.add(
                    Subscription(
                        endpoint=endpoint,
                        p256dh=p256dh,
                        auth=auth,
                        owner=owner,
                        locale=locale,
                        topic_rows=_topic_rows(topics),
                    )
                )
                await session.commit()

                log.info(f"Subscription saved: {endpoint[:50]}...")
                return True

            except IntegrityError:
                await session.rollback()
                if attempt:
                    raise
                log.info(f"Subscription inserted concurrently, updating: {endpoint[:50]}...")

            except Exception:
                await session.rollback()
                raise


async def get_sub(session_factory: async_sessionmaker[AsyncSession], endpoint: str) -> Optional[Subscription]:
    async with session_factory() as session:
        return await _find_sub(session, endpoint)


async def get_all_sub(
    session_factory: async_sessionmaker[AsyncSession],
    topic: Optional[str] = None,
) -> List[Subscription]:
    """Rows subscribed to ``topic``: no topic rows at all, or a matching one.

    ``topic=None`` returns every row.
    """
    stmt = select(Subscription).order_by(Subscription.id)
    if topic is not None:
        stmt = stmt.where(
            or_(
                ~Subscription.topic_rows.any(),
                Subscription.topic_rows.any(SubscriptionTopic.topic == topic),
            )
        )
    async with session_factory() as session:
        res = await session.execute(stmt)
        return list(res.scalars().all())


async def count_sub(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        res = await session.execute(select(func.count()).select_from(Subscription))
        return int(res.scalar_one())


async def delete_sub(session_factory: async_sessionmaker[AsyncSession], endpoint: str) -> bool:
    if not endpoint:
        return False

    async with session_factory() as session:
        try:
            existing = await _find_sub(session, endpoint)
            if existing is None:
                return False
            await session.delete(existing)
            await session.commit()
            log.info(f"Subscription deleted: {endpoint[:50]}...")
            return True
        except Exception:
            await session.rollback()
            raise


async def add_delivery_log(
    session_factory: async_sessionmaker[AsyncSession],
    title: str,
    body: str,
    url: Optional[str],
    topic: str,
    sent_count: int,
    failed_count: int,
    sent_by: str,
    created_at,
) -> int:
    async with session_factory() as session:
        try:
            row = DeliveryLog(
                title=title,
                body=body,
                url=url,
                topic=topic,
                sent_count=sent_count,
                failed_count=failed_count,
                sent_by=sent_by,
                created_at=created_at,
            )
            session.add(row)
            await session.commit()
            return row.id
        except Exception:
            await session.rollback()
            raise


async def get_delivery_logs(session_factory: async_sessionmaker[AsyncSession], limit: int = 20) -> List[DeliveryLog]:
    async with session_factory() as session:
        res = await session.execute(
            select(DeliveryLog).order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc()).limit(limit)
        )
        return list(res.scalars().all())


def disable_db():
    """Drop the DB handles after a failed init so the service falls back to other stores."""
    session_mod.AsyncSessionLocal = None
    session_mod.engine = None
    log.warning("Database disabled (config missing or init failed).")
