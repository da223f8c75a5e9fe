import json
import logging
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from push.variables import (
    APP_NAME,
    DEFAULT_BADGE,
    DEFAULT_BODY,
    DEFAULT_ICON,
    DEFAULT_TOPIC,
    DEFAULT_URL,
)

log = logging.getLogger(__name__)


class NotificationPayload(BaseModel):
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    url: str = DEFAULT_URL
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE
    topic: str = DEFAULT_TOPIC

    def to_push_data(self) -> str:
        """JSON document delivered to the device."""
        return json.dumps(
            {
                "title": self.title,
                "body": self.body,
                "url": self.url,
                "icon": self.icon,
                "badge": self.badge,
            },
            ensure_ascii=False,
        )


DEFAULT_PAYLOAD = {
    "title": APP_NAME,
    "body": DEFAULT_BODY,
    "url": DEFAULT_URL,
    "icon": DEFAULT_ICON,
    "badge": DEFAULT_BADGE,
}


def build_payload(
    title: str,
    body: str,
    url: Optional[str] = None,
    icon: Optional[str] = None,
    topic: Optional[str] = None,
) -> NotificationPayload:
    return NotificationPayload(
        title=title,
        body=body,
        url=url or DEFAULT_URL,
        icon=icon or DEFAULT_ICON,
        topic=topic or DEFAULT_TOPIC,
    )


def decode_payload(data: Union[bytes, str, dict, None]) -> NotificationPayload:
    """Decode inbound push data over the default payload.

    Missing fields take their defaults, and anything that is not a JSON
    object with valid fields yields the default payload.
    """
    default = NotificationPayload(**DEFAULT_PAYLOAD)
    if data is None or data == b"" or data == "":
        return default

    parsed: Any = data
    if isinstance(data, (bytes, str)):
        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.error("Error parsing push data: %s", exc)
            return default

    if not isinstance(parsed, dict):
        log.error("Push data is not an object: %r", type(parsed).__name__)
        return default

    merged = {**DEFAULT_PAYLOAD, **{k: v for k, v in parsed.items() if v is not None}}
    try:
        return NotificationPayload(**merged)
    except (ValidationError, TypeError) as exc:
        log.error("Invalid push data, using defaults: %s", exc)
        return default
