from .subscription import Subscription, SubscriptionTopic
from .delivery_log import DeliveryLog

__all__ = [
    "Subscription",
    "SubscriptionTopic",
    "DeliveryLog",
]
