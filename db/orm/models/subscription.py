from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from db.orm.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Subscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    endpoint = Column(Text, unique=True, nullable=False)
    p256dh = Column(Text, nullable=False)
    auth = Column(Text, nullable=False)
    owner = Column(String(255), nullable=True, index=True)
    locale = Column(String(16), nullable=False, default="pt")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    # no rows = every broadcast
    topic_rows = relationship(
        "SubscriptionTopic",
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def topics(self):
        return [row.topic for row in self.topic_rows]


class SubscriptionTopic(Base):
    __tablename__ = "push_subscription_topics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(
        Integer,
        ForeignKey("push_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    topic = Column(String(64), nullable=False, index=True)

    subscription = relationship("Subscription", back_populates="topic_rows")
