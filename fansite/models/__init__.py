"""
Database models package.
"""

from fansite.models.subscription import Subscription, SubscriptionStatus
from fansite.models.pending_subscription import PendingSubscription
from fansite.models.unsubscription_log import UnsubscriptionLog, UnsubscribeReason

__all__ = [
    "Subscription",
    "SubscriptionStatus",
    "PendingSubscription",
    "UnsubscriptionLog",
    "UnsubscribeReason",
]
