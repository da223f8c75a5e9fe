import asyncio
import logging
from typing import Optional, Protocol

import requests
from pywebpush import WebPushException, webpush

from push import variables
from push.errors import DeliveryFailure
from push.subscription import Subscription

log = logging.getLogger(__name__)


class Transport(Protocol):
    async def send(self, sub: Subscription, data: str, headers: dict) -> int:
        """Deliver one message. Raises DeliveryFailure when it is not accepted."""


class WebPushTransport:
    """Sends through pywebpush, which encrypts ``data`` (aes128gcm) with the
    subscription's p256dh/auth keys.

    The Authorization header is signed by the caller, so pywebpush is never
    given the private key.
    """

    def __init__(
        self,
        ttl: Optional[int] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.ttl = variables.PUSH_TTL if ttl is None else ttl
        self.timeout = variables.PUSH_TIMEOUT if timeout is None else timeout
        self.session = session

    def _send_sync(self, sub: Subscription, data: str, headers: dict) -> int:
        try:
            response = webpush(
                subscription_info=sub.subscription_info(),
                data=data,
                headers=headers,
                ttl=self.ttl,
                timeout=self.timeout,
                content_encoding="aes128gcm",
                requests_session=self.session,
            )
        except WebPushException as ex:
            status_code = getattr(getattr(ex, "response", None), "status_code", None)
            raise DeliveryFailure(str(ex), status_code=status_code) from ex
        except requests.RequestException as ex:
            raise DeliveryFailure(f"network error: {ex}") from ex
        except (ValueError, TypeError) as ex:
            # malformed p256dh/auth material
            raise DeliveryFailure(f"invalid subscription keys: {ex}") from ex

        return response.status_code

    async def send(self, sub: Subscription, data: str, headers: dict) -> int:
        return await asyncio.to_thread(self._send_sync, sub, data, headers)
