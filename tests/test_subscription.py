import json

import pytest

from conftest import make_sub
from push.subscription import (
    MemorySubscriptionStore,
    Subscription,
    locale_from_language,
    normalize_subscription,
    origin_of,
)


class TestNormalizeSubscription:
    def test_browser_shape(self) -> None:
        raw = {
            "endpoint": "https://fcm.googleapis.com/fcm/send/abc",
            "keys": {"p256dh": "BKey", "auth": "secret"},
            "topics": ["news", "status"],
        }
        sub = normalize_subscription(raw)
        assert sub == Subscription(
            endpoint="https://fcm.googleapis.com/fcm/send/abc",
            p256dh="BKey",
            auth="secret",
            topics=frozenset({"news", "status"}),
        )

    def test_flat_json_string(self) -> None:
        raw = json.dumps({"endpoint": "https://push.example/1", "p256dh": "k", "auth": "a", "user_id": 7})
        sub = normalize_subscription(raw)
        assert sub is not None
        assert sub.owner == "7"
        assert sub.topics == frozenset()

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "not json",
            {"endpoint": "https://push.example/1", "keys": {"auth": "a"}},
            {"keys": {"p256dh": "k", "auth": "a"}},
            42,
        ],
    )
    def test_unusable_records(self, raw) -> None:
        assert normalize_subscription(raw) is None

    def test_orm_like_row(self) -> None:
        class Row:
            endpoint = "https://push.example/2"
            p256dh = "k"
            auth = "a"
            owner = None
            topics = ["news"]
            locale = "en-US"

        sub = normalize_subscription(Row())
        assert sub.topics == frozenset({"news"})
        assert sub.locale == "en"


def test_locale_from_language() -> None:
    assert locale_from_language("pt-BR") == "pt"
    assert locale_from_language("en_GB") == "en"
    assert locale_from_language(None) == "pt"


def test_origin_of() -> None:
    assert origin_of("https://fcm.googleapis.com/fcm/send/abc?x=1") == "https://fcm.googleapis.com"
    with pytest.raises(ValueError):
        origin_of("/relative/path")


class TestTopicMatching:
    def test_empty_topics_receive_everything(self) -> None:
        sub = make_sub("a")
        for topic in ("status", "news", "promotions", "all"):
            assert sub.matches(topic)

    def test_news_only(self) -> None:
        sub = make_sub("b", topics={"news"})
        assert sub.matches("news")
        assert sub.matches("all")
        assert not sub.matches("promotions")
        assert not sub.matches("status")


@pytest.mark.asyncio
class TestMemorySubscriptionStore:
    async def test_upsert_same_endpoint_keeps_one_record(self) -> None:
        store = MemorySubscriptionStore()
        first = make_sub("a", topics={"news"})
        second = Subscription(endpoint=first.endpoint, p256dh="new-key", auth="new-auth", topics=frozenset({"status"}))

        assert await store.upsert(first) is True
        assert await store.upsert(second) is False

        assert await store.count() == 1
        stored = await store.get(first.endpoint)
        assert stored.p256dh == "new-key"
        assert stored.topics == frozenset({"status"})

    async def test_delete_is_idempotent(self) -> None:
        store = MemorySubscriptionStore([make_sub("a")])
        endpoint = make_sub("a").endpoint
        assert await store.delete(endpoint) is True
        assert await store.delete(endpoint) is False
        assert await store.count() == 0

    async def test_select_by_topic(self) -> None:
        everything = make_sub("all-topics")
        news = make_sub("news", topics={"news"})
        promos = make_sub("promos", topics={"promotions"})
        store = MemorySubscriptionStore([everything, news, promos])

        assert {s.endpoint for s in await store.select("news")} == {everything.endpoint, news.endpoint}
        assert {s.endpoint for s in await store.select("status")} == {everything.endpoint}
        assert len(await store.select("all")) == 3
