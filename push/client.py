"""Device-side client for the push service HTTP API."""

import asyncio
import logging
from typing import Optional

import aiohttp

from push import variables
from push.keys import KeyProvider, RemoteKeySource
from push.subscription import Subscription

log = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ApiSubscriptionStore:
    """Persists this device's Subscription through ``/subscribe`` and ``/unsubscribe``.

    The service sets ``owner`` from ``token`` when one is given.
    """

    def __init__(self, server_url: Optional[str] = None, timeout: int = 30, token: Optional[str] = None):
        self.server_url = (server_url or variables.SERVER_URL).rstrip("/")
        self.timeout = timeout
        self.token = token

    async def _post(self, path: str, body: dict) -> dict:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.server_url}{path}", json=body, headers=headers) as resp:
                    if resp.status >= 400:
                        raise ApiError(f"{path} returned {resp.status}", status=resp.status)
                    return await resp.json()
        except asyncio.TimeoutError as exc:
            raise ApiError(f"{path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise ApiError(f"{path} failed: {exc}") from exc

    async def _subscribe(self, body: dict) -> dict:
        data = await self._post("/subscribe", body)
        if not data.get("ok"):
            raise ApiError(data.get("msg") or "subscribe rejected")
        return data

    @staticmethod
    def _body(sub: Subscription) -> dict:
        return {
            "subscription": {
                "endpoint": sub.endpoint,
                "keys": {"p256dh": sub.p256dh, "auth": sub.auth},
            },
            "topics": sorted(sub.topics),
            "locale": sub.locale,
        }

    async def upsert(self, sub: Subscription) -> bool:
        data = await self._subscribe(self._body(sub))
        return bool(data.get("created"))

    async def move(self, old_endpoint: Optional[str], sub: Subscription) -> Subscription:
        """The service carries the old record's owner and locale over."""
        body = self._body(sub)
        if old_endpoint:
            body["old_endpoint"] = old_endpoint
        await self._subscribe(body)
        return sub

    async def delete(self, endpoint: str) -> bool:
        data = await self._post("/unsubscribe", {"subscription": {"endpoint": endpoint}})
        return bool(data.get("removed"))


def device_key_provider(server_url: Optional[str] = None) -> KeyProvider:
    """Key provider that fetches the public key from the service once."""
    base = (server_url or variables.SERVER_URL).rstrip("/")
    return KeyProvider(source=RemoteKeySource(f"{base}/vapid_public_key"))
