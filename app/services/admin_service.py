"""Admin review engine: queue listing, bulk transitions and dashboard statistics"""
from sqlalchemy.orm import Session, selectinload
from sqlalchemy import func, asc, desc
from typing import List, Dict, Any, Optional
from datetime import timedelta
from decimal import Decimal
import logging

from app.utils.time_utils import utc_now

from app.models.device import Device
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import Transaction, TransactionStatus
from app.core.exceptions import ServiceError, ValidationError
from app.services.email_service import EmailNotifier
from app.services.ledger_service import LedgerService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "queue_position": Subscription.queue_position,
    "priority": Subscription.priority,
    "created_at": Subscription.created_at,
    "updated_at": Subscription.updated_at,
    "reviewed_at": Subscription.reviewed_at,
    "price": Subscription.price,
    "plan": Subscription.plan,
    "status": Subscription.status,
    "email": Subscription.email,
    "imei": Subscription.imei,
}

BULK_ACTIONS = ("approve", "reject", "under_review", "update_priority")

RECENT_LIMIT = 10


def _as_decimal(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _average(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


class AdminService:
    """Service for admin review operations"""

    def __init__(self, db: Session, notifier: Optional[EmailNotifier] = None):
        self.db = db
        self.subscriptions = SubscriptionService(db, notifier)
        self.ledger = LedgerService(db)

    @staticmethod
    def _parse_statuses(status: Optional[str]) -> Optional[List[SubscriptionStatus]]:
        """'all' -> no filter; otherwise a single status or a comma-separated list"""
        if not status or status.strip().lower() == "all":
            return None
        try:
            return [SubscriptionStatus(value.strip().upper()) for value in status.split(",") if value.strip()]
        except ValueError:
            raise ValidationError(
                f"Invalid status filter '{status}'. Use 'all' or any of: "
                f"{', '.join(s.value for s in SubscriptionStatus)}"
            )

    def get_status_statistics(self) -> List[Dict[str, Any]]:
        rows = self.db.query(
            Subscription.status,
            func.count(Subscription.id),
            func.coalesce(func.sum(Subscription.price), 0),
            func.avg(Subscription.price)
        ).group_by(Subscription.status).all()

        return [
            {
                "status": status.value,
                "count": count,
                "total_revenue": _as_decimal(total),
                "avg_price": round(float(avg), 2) if avg is not None else 0.0
            }
            for status, count, total, avg in rows
        ]

    def get_processing_statistics(self) -> List[Dict[str, Any]]:
        """Days between submission and review, per resulting status"""
        rows = self.db.query(
            Subscription.status,
            Subscription.created_at,
            Subscription.reviewed_at
        ).filter(Subscription.reviewed_at.isnot(None)).all()

        durations: Dict[SubscriptionStatus, List[float]] = {}
        for status, created_at, reviewed_at in rows:
            days = (reviewed_at - created_at).total_seconds() / 86400
            durations.setdefault(status, []).append(days)

        return [
            {
                "status": status.value,
                "avg_processing_days": _average(values),
                "min_processing_days": round(min(values), 2),
                "max_processing_days": round(max(values), 2)
            }
            for status, values in durations.items()
        ]

    def list_subscriptions(
        self,
        status: Optional[str] = "PENDING",
        plan: Optional[str] = None,
        imei: Optional[str] = None,
        email: Optional[str] = None,
        sort_by: str = "queue_position",
        sort_order: str = "asc",
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """
        Filtered, sorted, paginated subscription list for the review queue

        Args:
            status: Single status, comma-separated list or 'all'
            plan: Exact plan filter
            imei: Case-insensitive substring filter
            email: Case-insensitive substring filter
            sort_by: One of SORTABLE_FIELDS
            sort_order: asc or desc
            page: 1-based page number
            limit: Page size

        Returns:
            Dict with subscriptions, pagination, statistics and processing_statistics
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive integers")
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'. Use one of: {', '.join(SORTABLE_FIELDS)}")

        query = self.db.query(Subscription).options(selectinload(Subscription.user))

        statuses = self._parse_statuses(status)
        if statuses:
            query = query.filter(Subscription.status.in_(statuses))
        if plan:
            query = query.filter(Subscription.plan == plan)
        if imei:
            query = query.filter(Subscription.imei.ilike(f"%{imei}%"))
        if email:
            query = query.filter(Subscription.email.ilike(f"%{email}%"))

        total = query.count()

        order = desc if sort_order.lower() == "desc" else asc
        subscriptions = query.order_by(
            order(SORTABLE_FIELDS[sort_by]),
            Subscription.created_at.asc()
        ).offset((page - 1) * limit).limit(limit).all()

        total_pages = (total + limit - 1) // limit

        return {
            "subscriptions": subscriptions,
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_items": total,
                "items_per_page": limit,
                "has_next": page < total_pages,
                "has_prev": page > 1
            },
            "statistics": self.get_status_statistics(),
            "processing_statistics": self.get_processing_statistics()
        }

    def get_subscription_details(self, subscription_id) -> Dict[str, Any]:
        """Subscription with its user's history, device, ledger chain and device history"""
        subscription = self.subscriptions.get_subscription(subscription_id)

        user_history = self.db.query(Subscription).filter(
            Subscription.user_id == subscription.user_id,
            Subscription.id != subscription.id
        ).order_by(Subscription.created_at.desc()).all()

        device_history = self.db.query(Subscription).filter(
            Subscription.imei == subscription.imei,
            Subscription.id != subscription.id
        ).order_by(Subscription.created_at.desc()).all()

        device = self.db.query(Device).filter(Device.imei == subscription.imei).first()

        return {
            "subscription": subscription,
            "user": subscription.user,
            "user_subscription_history": user_history,
            "device": device,
            "device_subscription_history": device_history,
            "transactions": self.ledger.get_chain(subscription.id)
        }

    def bulk_update(self, subscription_ids: List[str], action: str, data: Optional[Dict[str, Any]], admin_id) -> Dict[str, Any]:
        """
        Apply one transition to many subscriptions.

        Each id runs in its own store transaction; a failing id is reported
        and never aborts its siblings.
        """
        data = data or {}
        if not subscription_ids or not isinstance(subscription_ids, list):
            raise ValidationError("Subscription IDs array is required")
        if action not in BULK_ACTIONS:
            raise ValidationError(f"Invalid action specified. Use one of: {', '.join(BULK_ACTIONS)}")
        if action == "reject" and not (data.get("reason") or "").strip():
            raise ValidationError("Rejection reason is required for bulk rejection")
        if action == "update_priority":
            priority = data.get("priority")
            if priority is None or isinstance(priority, bool) or not isinstance(priority, int):
                raise ValidationError("Priority is required for bulk priority update")

        comments = data.get("comments")
        bulk_note = f"Bulk operation: {comments}" if comments else "Bulk operation"

        results = []
        for subscription_id in subscription_ids:
            try:
                if action == "approve":
                    outcome = self.subscriptions.approve(
                        subscription_id, admin_id, comments=bulk_note,
                        activate_now=bool(data.get("activate_now", False))
                    )
                elif action == "reject":
                    outcome = self.subscriptions.reject(
                        subscription_id, admin_id, reason=data["reason"], comments=comments
                    )
                elif action == "under_review":
                    outcome = self.subscriptions.mark_under_review(subscription_id, admin_id, notes=bulk_note)
                else:
                    outcome = self.subscriptions.update_priority(subscription_id, admin_id, data["priority"])

                result = {
                    "id": str(subscription_id),
                    "success": True,
                    "status": outcome["subscription"].status.value
                }
                if outcome.get("warning"):
                    result["warning"] = outcome["warning"]
                results.append(result)
            except ServiceError as e:
                results.append({"id": str(subscription_id), "success": False, "status": "failed", "reason": e.message})
            except Exception as e:
                logger.error(f"Bulk {action} failed for {subscription_id}: {e}", exc_info=True)
                results.append({"id": str(subscription_id), "success": False, "status": "failed", "reason": "Internal error"})

        successful = sum(1 for r in results if r["success"])
        logger.info(f"Bulk {action} by {admin_id}: {successful}/{len(results)} succeeded")

        return {
            "results": results,
            "processed": len(subscription_ids),
            "successful": successful,
            "failed": len(results) - successful
        }

    def get_dashboard(self) -> Dict[str, Any]:
        """Aggregated statistics for the admin dashboard"""
        now = utc_now()

        plan_rows = self.db.query(
            Subscription.plan,
            func.count(Subscription.id),
            func.coalesce(func.sum(Subscription.price), 0),
            func.avg(Subscription.price)
        ).group_by(Subscription.plan).all()
        plan_distribution = sorted(
            [
                {
                    "plan": plan,
                    "count": count,
                    "total_revenue": _as_decimal(total),
                    "avg_price": round(float(avg), 2) if avg is not None else 0.0
                }
                for plan, count, total, avg in plan_rows
            ],
            key=lambda row: row["total_revenue"],
            reverse=True
        )

        recent_subscriptions = self.db.query(Subscription).order_by(
            Subscription.created_at.desc()
        ).limit(RECENT_LIMIT).all()

        transaction_rows = self.db.query(
            Transaction.status,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0)
        ).group_by(Transaction.status).all()
        transaction_statistics = [
            {"status": status.value, "count": count, "total_amount": _as_decimal(total)}
            for status, count, total in transaction_rows
        ]

        recent_transactions = self.db.query(Transaction).order_by(
            Transaction.created_at.desc()
        ).limit(RECENT_LIMIT).all()

        # Monthly completed revenue, last 12 months
        completed = self.db.query(Transaction.created_at, Transaction.amount).filter(
            Transaction.status == TransactionStatus.COMPLETED,
            Transaction.created_at >= now - timedelta(days=365)
        ).all()
        months: Dict[tuple, Dict[str, Any]] = {}
        for created_at, amount in completed:
            bucket = months.setdefault(
                (created_at.year, created_at.month),
                {"year": created_at.year, "month": created_at.month, "revenue": Decimal("0"), "count": 0}
            )
            bucket["revenue"] += _as_decimal(amount)
            bucket["count"] += 1
        monthly_revenue = [months[key] for key in sorted(months)]

        pending = self.db.query(
            func.count(Subscription.id),
            func.min(Subscription.created_at),
            func.avg(Subscription.queue_position),
            func.coalesce(func.sum(Subscription.price), 0)
        ).filter(Subscription.status == SubscriptionStatus.PENDING).one()
        queue_analysis = {
            "total_pending": pending[0] or 0,
            "oldest_pending": pending[1],
            "avg_queue_position": round(float(pending[2]), 2) if pending[2] is not None else 0.0,
            "total_pending_value": _as_decimal(pending[3])
        }

        reviewed = self.db.query(Subscription.created_at, Subscription.reviewed_at).filter(
            Subscription.reviewed_at.isnot(None)
        ).all()
        avg_processing_days = _average([
            (reviewed_at - created_at).total_seconds() / 86400 for created_at, reviewed_at in reviewed
        ])

        return {
            "subscription_statistics": self.get_status_statistics(),
            "plan_distribution": plan_distribution,
            "recent_subscriptions": recent_subscriptions,
            "transaction_statistics": transaction_statistics,
            "recent_transactions": recent_transactions,
            "monthly_revenue": monthly_revenue,
            "queue_analysis": queue_analysis,
            "avg_processing_days": avg_processing_days,
            "last_updated": now
        }
