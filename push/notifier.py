"""Broadcast dispatcher: authorize, select, fan out, prune, log."""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from push import variables
from push.auth import Authorizer
from push.delivery_log import DeliveryLog, DeliveryLogEntry
from push.errors import DeliveryFailure, Forbidden, KeyUnavailable
from push.keys import KeyProvider
from push.payload import NotificationPayload
from push.subscription import Subscription, SubscriptionStore, origin_of
from push.transport import Transport

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    endpoint: str
    ok: bool
    status_code: Optional[int] = None


@dataclass(frozen=True)
class BroadcastResult:
    sent: int
    failed: int
    total: int

    def to_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "total": self.total}


def should_prune(outcome: DeliveryOutcome, prune_all_failures: bool = False) -> bool:
    if outcome.ok:
        return False
    if prune_all_failures:
        return True
    return outcome.status_code in variables.GONE_STATUSES


class Notifier:
    def __init__(
        self,
        store: SubscriptionStore,
        keys: KeyProvider,
        transport: Transport,
        authorizer: Authorizer,
        delivery_log: DeliveryLog,
        concurrency: Optional[int] = None,
        prune_all_failures: Optional[bool] = None,
    ):
        self.store = store
        self.keys = keys
        self.transport = transport
        self.authorizer = authorizer
        self.delivery_log = delivery_log
        self.concurrency = max(1, concurrency or variables.PUSH_CONCURRENCY)
        if prune_all_failures is None:
            prune_all_failures = variables.PUSH_PRUNE_ALL_FAILURES
        self.prune_all_failures = prune_all_failures

    async def select_targets(self, topic: str) -> List[Subscription]:
        return await self.store.select(topic)

    async def _deliver(
        self,
        sub: Subscription,
        data: str,
        semaphore: asyncio.Semaphore,
    ) -> DeliveryOutcome:
        endpoint = sub.endpoint
        async with semaphore:
            try:
                token = self.keys.sign({}, origin_of(endpoint))
                headers = {"Authorization": self.keys.authorization_header(token)}
                status_code = await self.transport.send(sub, data, headers)
            except DeliveryFailure as ex:
                log.warning("Push failed for %s...: %s (status=%s)", endpoint[:80], ex, ex.status_code)
                return DeliveryOutcome(endpoint, ok=False, status_code=ex.status_code)
            except (ValueError, KeyUnavailable) as ex:
                log.warning("Push skipped for %s...: %s", endpoint[:80], ex)
                return DeliveryOutcome(endpoint, ok=False)

        return DeliveryOutcome(endpoint, ok=True, status_code=status_code)

    async def _prune(self, outcomes: List[DeliveryOutcome]) -> int:
        pruned = 0
        for outcome in outcomes:
            if not should_prune(outcome, self.prune_all_failures):
                continue
            try:
                if await self.store.delete(outcome.endpoint):
                    pruned += 1
            except Exception as ex:
                log.warning("delete failed for %s...: %s", outcome.endpoint[:80], ex)
        return pruned

    async def broadcast(
        self,
        payload: NotificationPayload,
        topic: Optional[str],
        credential: Optional[str],
    ) -> BroadcastResult:
        caller = await self.authorizer.resolve(credential)
        if caller is None or not caller.privileged:
            raise Forbidden("Admin access required")

        topic = topic or variables.DEFAULT_TOPIC
        keys = await self.keys.get_keys()
        if not keys.can_sign:
            raise KeyUnavailable("private key not configured")

        targets = await self.select_targets(topic)
        log.info('Sending push notification: "%s" to topic: %s (%s targets)', payload.title, topic, len(targets))

        data = payload.to_push_data()
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(*(self._deliver(sub, data, semaphore) for sub in targets))

        sent = sum(1 for outcome in outcomes if outcome.ok)
        failed = len(outcomes) - sent
        pruned = await self._prune(outcomes)

        result = BroadcastResult(sent=sent, failed=failed, total=len(targets))

        entry = DeliveryLogEntry(
            title=payload.title,
            body=payload.body,
            url=payload.url,
            topic=topic,
            sent_count=sent,
            failed_count=failed,
            issued_by=caller.identity,
        )
        try:
            await self.delivery_log.append(entry)
        except Exception as ex:
            log.warning("delivery log append failed: %s", ex)

        log.info(
            "Push notification sent: %s success, %s failed, %s pruned",
            result.sent,
            result.failed,
            pruned,
        )
        return result
