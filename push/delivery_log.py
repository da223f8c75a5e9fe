from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol


@dataclass(frozen=True)
class DeliveryLogEntry:
    title: str
    body: str
    topic: str
    sent_count: int
    failed_count: int
    issued_by: str
    url: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "url": self.url,
            "topic": self.topic,
            "sent_count": self.sent_count,
            "failed_count": self.failed_count,
            "issued_by": self.issued_by,
            "timestamp": self.timestamp.isoformat(),
        }


class DeliveryLog(Protocol):
    async def append(self, entry: DeliveryLogEntry) -> None: ...

    async def recent(self, limit: int = 20) -> List[DeliveryLogEntry]: ...


class MemoryDeliveryLog:
    def __init__(self):
        self._entries: List[DeliveryLogEntry] = []

    async def append(self, entry: DeliveryLogEntry) -> None:
        self._entries.append(entry)

    async def recent(self, limit: int = 20) -> List[DeliveryLogEntry]:
        return list(reversed(self._entries))[:limit]

    def __len__(self) -> int:
        return len(self._entries)
