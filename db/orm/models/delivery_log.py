from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text

from db.orm.base import Base


class DeliveryLog(Base):
    __tablename__ = "push_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    body = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    topic = Column(String(64), nullable=False)
    sent_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    sent_by = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
