"""Transaction ledger: append-only audit trail of subscription state changes"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime
from decimal import Decimal
import logging
import secrets
import time

from app.database import atomic
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import Transaction, TransactionType, TransactionStatus
from app.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

# Ledger entry written to describe a subscription's current status during reconciliation
RECONCILE_ENTRY_BY_STATUS = {
    SubscriptionStatus.QUEUED: (TransactionType.QUEUED, TransactionStatus.PENDING),
    SubscriptionStatus.APPROVED: (TransactionType.APPROVED, TransactionStatus.PENDING),
    SubscriptionStatus.ACTIVE: (TransactionType.ACTIVATED, TransactionStatus.COMPLETED),
    SubscriptionStatus.CANCELLED: (TransactionType.CANCELLED, TransactionStatus.CANCELLED),
    SubscriptionStatus.EXPIRED: (TransactionType.EXPIRED, TransactionStatus.COMPLETED),
}


def generate_transaction_id() -> str:
    """
    Ledger-wide unique id: millisecond timestamp plus 48 random bits.

    The timestamp keeps ids roughly ordered; the random part keeps concurrent
    and bulk writers from colliding.
    """
    return f"TXN{int(time.time() * 1000)}{secrets.token_hex(6).upper()}"


class LedgerService:
    """Append-only transaction ledger, one chain per subscription"""

    def __init__(self, db: Session):
        self.db = db

    def get_latest(self, subscription_id) -> Optional[Transaction]:
        """Newest entry of a subscription's chain"""
        return self.db.query(Transaction).filter(
            Transaction.subscription_id == subscription_id
        ).order_by(Transaction.sequence.desc()).first()

    def record(
        self,
        subscription: Subscription,
        type: TransactionType,
        status: TransactionStatus,
        processed_by=None,
        amount: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None,
        admin_notes: Optional[str] = None,
        period: Optional[Tuple[Optional[datetime], Optional[datetime]]] = None,
        previous: Optional[Transaction] = None,
        plan: Optional[str] = None
    ) -> Transaction:
        """
        Append an entry to the subscription's chain.

        Runs inside the caller's store transaction and only flushes; the
        caller commits together with the subscription change it describes.

        Args:
            subscription: Subscription the event belongs to
            type: Event type
            status: Ledger status of the entry
            processed_by: Admin id, if an admin triggered the event
            amount: Amount; defaults to the subscription price
            metadata: Free-form details merged over the predecessor's metadata
            admin_notes: Notes shown in the admin UI
            period: (start, end) validity window after the event
            previous: Predecessor entry; defaults to the newest one in the chain
            plan: Plan snapshot; defaults to the subscription plan

        Returns:
            The new, flushed Transaction
        """
        latest = self.get_latest(subscription.id)
        if previous is None:
            previous = latest

        now = utc_now()
        merged_metadata: Dict[str, Any] = {}
        if previous is not None and previous.metadata_:
            merged_metadata.update(previous.metadata_)
        if metadata:
            merged_metadata.update(metadata)

        if period is None:
            period = (subscription.start_date, subscription.end_date)

        entry = Transaction(
            transaction_id=generate_transaction_id(),
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            device_id=subscription.device_id,
            type=type,
            status=status,
            amount=subscription.price if amount is None else amount,
            plan=plan or subscription.plan,
            processed_by=processed_by,
            processed_at=now if processed_by is not None else None,
            completed_at=now if status == TransactionStatus.COMPLETED else None,
            admin_notes=admin_notes,
            metadata_=merged_metadata,
            period_start=period[0],
            period_end=period[1],
            sequence=(latest.sequence + 1) if latest is not None else 1,
            previous_transaction_id=previous.id if previous is not None else None,
            created_at=now
        )
        self.db.add(entry)
        self.db.flush()

        logger.info(
            f"Ledger entry {entry.transaction_id} ({type.value}/{status.value}) "
            f"for subscription {subscription.id}"
        )
        return entry

    def supersede(
        self,
        entry: Transaction,
        subscription: Subscription,
        status: TransactionStatus,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """'Update' an entry's status by appending a new entry that points at it"""
        return self.record(
            subscription,
            type=entry.type,
            status=status,
            processed_by=entry.processed_by,
            amount=entry.amount,
            metadata=metadata,
            admin_notes=entry.admin_notes,
            period=(subscription.start_date, subscription.end_date),
            previous=entry,
            plan=entry.plan
        )

    def get_chain(self, subscription_id) -> List[Transaction]:
        """All entries of a subscription in chain order"""
        return self.db.query(Transaction).filter(
            Transaction.subscription_id == subscription_id
        ).order_by(Transaction.sequence.asc()).all()

    def get_user_transactions(self, user_id, limit: int = 50) -> List[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.user_id == user_id
        ).order_by(Transaction.created_at.desc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Audit & reconciliation
    # ------------------------------------------------------------------

    def audit_integrity(self) -> Dict[str, Any]:
        """
        Check the ledger for structural problems

        Returns:
            Dict with per-issue-type counts and offending transaction ids
        """
        issues = []

        orphaned = self.db.query(Transaction.transaction_id).outerjoin(
            Subscription, Transaction.subscription_id == Subscription.id
        ).filter(Subscription.id.is_(None)).all()
        if orphaned:
            issues.append({
                "type": "ORPHANED_TRANSACTIONS",
                "count": len(orphaned),
                "transactions": [row.transaction_id for row in orphaned]
            })

        duplicates = self.db.query(
            Transaction.transaction_id, func.count(Transaction.id)
        ).group_by(Transaction.transaction_id).having(func.count(Transaction.id) > 1).all()
        if duplicates:
            issues.append({
                "type": "DUPLICATE_TRANSACTION_IDS",
                "count": len(duplicates),
                "transactions": [row[0] for row in duplicates]
            })

        invalid_amounts = self.db.query(Transaction.transaction_id).filter(
            (Transaction.amount < 0) | (Transaction.amount.is_(None))
        ).all()
        if invalid_amounts:
            issues.append({
                "type": "INVALID_AMOUNTS",
                "count": len(invalid_amounts),
                "transactions": [row.transaction_id for row in invalid_amounts]
            })

        # Active subscriptions whose newest entry says the opposite
        inconsistent = []
        active_subs = self.db.query(Subscription.id).filter(
            Subscription.status == SubscriptionStatus.ACTIVE
        ).all()
        for (subscription_id,) in active_subs:
            latest = self.get_latest(subscription_id)
            if latest is not None and latest.status in (TransactionStatus.FAILED, TransactionStatus.CANCELLED):
                inconsistent.append(latest.transaction_id)
        if inconsistent:
            issues.append({
                "type": "STATUS_INCONSISTENCIES",
                "count": len(inconsistent),
                "transactions": inconsistent
            })

        # Chain links must point backwards within the same subscription
        broken = []
        entries = self.db.query(Transaction).filter(Transaction.previous_transaction_id.isnot(None)).all()
        for entry in entries:
            prev = entry.previous_transaction
            if prev is None or prev.subscription_id != entry.subscription_id or prev.sequence >= entry.sequence:
                broken.append(entry.transaction_id)
        if broken:
            issues.append({
                "type": "BROKEN_CHAINS",
                "count": len(broken),
                "transactions": broken
            })

        total = sum(issue["count"] for issue in issues)
        logger.info(f"Ledger audit completed: {len(issues)} issue types, {total} issues")

        return {
            "audit_date": utc_now(),
            "total_issues": total,
            "issues": issues,
            "healthy": not issues
        }

    def reconcile_missing(self) -> Dict[str, Any]:
        """
        Create ledger chains for subscriptions that have none.

        Each subscription is reconciled in its own store transaction so one
        failure does not undo the others.
        """
        subscriptions = self.db.query(Subscription).outerjoin(
            Transaction, Transaction.subscription_id == Subscription.id
        ).filter(Transaction.id.is_(None)).all()

        logger.info(f"Found {len(subscriptions)} subscriptions without ledger entries")

        reconciled, failed = [], []
        for subscription in subscriptions:
            try:
                with atomic(self.db):
                    created = self.record(
                        subscription,
                        TransactionType.CREATED,
                        TransactionStatus.PENDING,
                        metadata={"reconciled": True}
                    )
                    follow_up = RECONCILE_ENTRY_BY_STATUS.get(subscription.status)
                    if follow_up is not None:
                        self.record(
                            subscription,
                            follow_up[0],
                            follow_up[1],
                            metadata={"reconciled": True},
                            previous=created
                        )
                reconciled.append(str(subscription.id))
            except Exception as e:
                logger.error(f"Failed to reconcile subscription {subscription.id}: {e}")
                failed.append({"id": str(subscription.id), "reason": str(e)})

        return {"processed": len(subscriptions), "reconciled": reconciled, "failed": failed}

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def user_lifetime_value(self, user_id) -> Dict[str, Any]:
        """Completed revenue attributed to one user"""
        entries = self.db.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.status == TransactionStatus.COMPLETED
        ).order_by(Transaction.created_at.asc()).all()

        total = sum((entry.amount for entry in entries), Decimal("0"))
        plan_breakdown: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            bucket = plan_breakdown.setdefault(entry.plan, {"count": 0, "revenue": Decimal("0")})
            bucket["count"] += 1
            bucket["revenue"] += entry.amount

        return {
            "user_id": str(user_id),
            "total_revenue": total,
            "total_transactions": len(entries),
            "avg_transaction_value": (total / len(entries)).quantize(Decimal("0.01")) if entries else Decimal("0"),
            "first_transaction": entries[0].created_at if entries else None,
            "last_transaction": entries[-1].created_at if entries else None,
            "plan_breakdown": plan_breakdown
        }

    def financial_summary(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Revenue totals by status, plan and event type within an optional window"""
        filters = []
        if start_date:
            filters.append(Transaction.created_at >= start_date)
        if end_date:
            filters.append(Transaction.created_at <= end_date)

        by_status = self.db.query(
            Transaction.status,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0)
        ).filter(*filters).group_by(Transaction.status).all()

        by_plan = self.db.query(
            Transaction.plan,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0)
        ).filter(*filters, Transaction.status == TransactionStatus.COMPLETED).group_by(
            Transaction.plan
        ).all()

        by_type = self.db.query(
            Transaction.type,
            func.count(Transaction.id),
            func.coalesce(func.sum(Transaction.amount), 0)
        ).filter(*filters).group_by(Transaction.type).all()

        return {
            "period": {"start_date": start_date, "end_date": end_date},
            "by_status": [
                {"status": status.value, "count": count, "total_amount": Decimal(str(total))}
                for status, count, total in by_status
            ],
            "by_plan": sorted(
                [
                    {"plan": plan, "count": count, "revenue": Decimal(str(total))}
                    for plan, count, total in by_plan
                ],
                key=lambda row: row["revenue"],
                reverse=True
            ),
            "by_type": [
                {"type": type_.value, "count": count, "total_amount": Decimal(str(total))}
                for type_, count, total in by_type
            ],
            "generated_at": utc_now()
        }
