"""Business logic services"""
from app.services.auth_service import AuthService
from app.services.admin_service import AdminService
from app.services.device_service import DeviceService
from app.services.ledger_service import LedgerService
from app.services.queue_service import QueueManager
from app.services.subscription_service import SubscriptionService

__all__ = [
    "AuthService",
    "AdminService",
    "DeviceService",
    "LedgerService",
    "QueueManager",
    "SubscriptionService",
]
