"""Database models"""
from app.models.user import User
from app.models.device import Device
from app.models.subscription import Subscription, SubscriptionStatus, QUEUE_STATUSES
from app.models.transaction import Transaction, TransactionType, TransactionStatus

__all__ = [
    "User",
    "Device",
    "Subscription",
    "SubscriptionStatus",
    "QUEUE_STATUSES",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
]
