from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import db.orm.utils as orm_utils
from conftest import make_sub
from db.orm.models import SubscriptionTopic
from db.orm.utils import init_db
from push.delivery_log import DeliveryLogEntry
from push.redis_db import RedisSubscriptionStore
from push.storage import SqlDeliveryLog, SqlSubscriptionStore, build_storage
from push.subscription import MemorySubscriptionStore


class FakeRedis:
    """The handful of hash commands the subscription store uses."""

    def __init__(self):
        self.hashes = {}

    async def hset(self, name, key, value):
        h = self.hashes.setdefault(name, {})
        added = 0 if key in h else 1
        h[key] = value.encode()
        return added

    async def hdel(self, name, *keys):
        h = self.hashes.get(name, {})
        return sum(1 for k in keys if h.pop(k, None) is not None)

    async def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    async def hvals(self, name):
        return list(self.hashes.get(name, {}).values())

    async def hlen(self, name):
        return len(self.hashes.get(name, {}))


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'push.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture(params=["memory", "redis", "sql"])
async def any_store(request, tmp_path):
    if request.param == "memory":
        yield MemorySubscriptionStore()
    elif request.param == "redis":
        yield RedisSubscriptionStore(FakeRedis())
    else:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'subs.db'}")
        await init_db(engine)
        yield SqlSubscriptionStore(async_sessionmaker(engine, expire_on_commit=False))
        await engine.dispose()


@pytest.mark.asyncio
class TestSubscriptionStores:
    async def test_upsert_is_keyed_by_endpoint(self, any_store) -> None:
        sub = make_sub("A", topics={"news"})

        assert await any_store.upsert(sub) is True
        assert await any_store.upsert(replace(sub, p256dh="new-p256dh", auth="new-auth")) is False

        assert await any_store.count() == 1
        stored = await any_store.get(sub.endpoint)
        assert stored.p256dh == "new-p256dh"
        assert stored.topics == frozenset({"news"})

    async def test_delete(self, any_store) -> None:
        sub = make_sub("A")
        await any_store.upsert(sub)

        assert await any_store.delete(sub.endpoint) is True
        assert await any_store.delete(sub.endpoint) is False
        assert await any_store.get(sub.endpoint) is None
        assert await any_store.count() == 0

    async def test_select_by_topic(self, any_store) -> None:
        everything = make_sub("everything")
        news = make_sub("news", topics={"news"})
        status = make_sub("status", topics={"status", "general"})
        for sub in (everything, news, status):
            await any_store.upsert(sub)

        async def endpoints(topic):
            return {sub.endpoint for sub in await any_store.select(topic)}

        assert await endpoints("news") == {everything.endpoint, news.endpoint}
        assert await endpoints("general") == {everything.endpoint, status.endpoint}
        assert await endpoints("all") == {everything.endpoint, news.endpoint, status.endpoint}

    async def test_owner_and_locale_survive(self, any_store) -> None:
        sub = replace(make_sub("A"), owner="42", locale="en")
        await any_store.upsert(sub)

        stored = await any_store.get(sub.endpoint)
        assert stored.owner == "42"
        assert stored.locale == "en"

    async def test_move_keeps_owner_and_locale(self, any_store) -> None:
        old = replace(make_sub("old", topics={"news"}), owner="42", locale="en")
        await any_store.upsert(old)
        fresh = make_sub("new")

        moved = await any_store.move(old.endpoint, fresh)

        assert await any_store.get(old.endpoint) is None
        stored = await any_store.get(fresh.endpoint)
        assert stored == moved
        assert (stored.owner, stored.locale) == ("42", "en")
        assert (stored.p256dh, stored.auth) == (fresh.p256dh, fresh.auth)
        assert stored.topics == frozenset()
        assert await any_store.count() == 1

    async def test_move_without_old_record(self, any_store) -> None:
        fresh = make_sub("new")
        assert await any_store.move("https://fcm.googleapis.com/fcm/send/gone", fresh) == fresh
        assert await any_store.count() == 1


@pytest.mark.asyncio
class TestRedisStore:
    async def test_unreadable_records_are_skipped(self) -> None:
        client = FakeRedis()
        store = RedisSubscriptionStore(client)
        await store.upsert(make_sub("A"))
        client.hashes[store.key]["broken"] = b"{not json"

        assert [sub.endpoint for sub in await store.select("all")] == [make_sub("A").endpoint]


@pytest.mark.asyncio
class TestSqlSubscriptionStore:
    async def test_topic_rows_follow_the_subscription(self, session_factory) -> None:
        store = SqlSubscriptionStore(session_factory)
        sub = make_sub("A", topics={"news", "status"})
        await store.upsert(sub)
        await store.upsert(replace(sub, topics=frozenset({"status"})))

        assert await store.select("news") == []
        assert [s.endpoint for s in await store.select("status")] == [sub.endpoint]

        await store.delete(sub.endpoint)
        async with session_factory() as session:
            res = await session.execute(select(func.count()).select_from(SubscriptionTopic))
            assert res.scalar_one() == 0

    async def test_concurrent_insert_becomes_update(self, session_factory, monkeypatch) -> None:
        store = SqlSubscriptionStore(session_factory)
        sub = make_sub("A", topics={"news"})
        await store.upsert(sub)

        real_find = orm_utils._find_sub
        lookups = []

        async def find_after_race(session, endpoint):
            # the first lookup runs before the other writer's insert lands
            lookups.append(endpoint)
            if len(lookups) == 1:
                return None
            return await real_find(session, endpoint)

        monkeypatch.setattr(orm_utils, "_find_sub", find_after_race)

        created = await store.upsert(replace(sub, topics=frozenset({"status"}), locale="en"))

        assert created is False
        assert len(lookups) == 2
        stored = await store.get(sub.endpoint)
        assert stored.topics == frozenset({"status"})
        assert stored.locale == "en"
        assert await store.count() == 1


@pytest.mark.asyncio
class TestSqlDeliveryLog:
    async def test_recent_newest_first(self, session_factory) -> None:
        delivery_log = SqlDeliveryLog(session_factory)
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i in range(3):
            await delivery_log.append(
                DeliveryLogEntry(
                    title=f"n{i}",
                    body="b",
                    topic="general",
                    sent_count=i,
                    failed_count=0,
                    issued_by="alice",
                    timestamp=start + timedelta(minutes=i),
                )
            )

        entries = await delivery_log.recent(2)

        assert [e.title for e in entries] == ["n2", "n1"]
        assert entries[0].sent_count == 2
        assert entries[0].issued_by == "alice"
        assert entries[0].timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_build_storage_falls_back_to_memory(monkeypatch) -> None:
    monkeypatch.setattr("push.variables.REDIS_URL", None)
    store, delivery_log = await build_storage(offline=True)
    assert isinstance(store, MemorySubscriptionStore)
    assert await delivery_log.recent() == []
