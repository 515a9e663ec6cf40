"""Subscription lifecycle: creation, admin review transitions and self-service changes"""
from sqlalchemy.orm import Session
from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from app.database import atomic
from app.models.user import User
from app.models.device import Device
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import Transaction, TransactionType, TransactionStatus
from app.core.plans import get_plan, get_plan_price, get_plan_duration, list_plans
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.services.device_service import DeviceService
from app.services.email_service import EmailNotifier, dispatch, get_notifier
from app.services.ledger_service import LedgerService
from app.services.queue_service import QueueManager
from app.utils.time_utils import utc_now, to_utc_isoformat
from app.utils.validators import parse_uuid, validate_imei, validate_phone

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Subscription state machine.

    Every transition runs inside one store transaction that updates the
    subscription, reshuffles the device queue when needed and appends the
    ledger entry. Emails go out only after the commit; a failed email is
    returned as ``warning`` and never undoes the transition.
    """

    def __init__(self, db: Session, notifier: Optional[EmailNotifier] = None):
        self.db = db
        self.notifier = notifier or get_notifier()
        self.ledger = LedgerService(db)
        self.queue = QueueManager(db, self.ledger)
        self.devices = DeviceService(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, subscription_id, lock: bool = False) -> Subscription:
        query = self.db.query(Subscription).filter(
            Subscription.id == parse_uuid(subscription_id, "subscription id")
        )
        if lock:
            query = query.with_for_update()
        subscription = query.first()
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    def _get_for_queue_change(self, subscription_id) -> Subscription:
        """Load a subscription, take its device-queue lock, then lock the row"""
        subscription = self._get(subscription_id)
        self.queue.lock_device_queue(subscription.imei)
        self.db.refresh(subscription, with_for_update=True)
        return subscription

    @staticmethod
    def _ensure_owner(subscription: Subscription, user: User) -> None:
        if str(subscription.user_id) != str(user.id) and not user.is_admin:
            raise ForbiddenError("You do not have access to this subscription")

    @staticmethod
    def _require_status(subscription: Subscription, action: str, *allowed: SubscriptionStatus) -> None:
        if subscription.status not in allowed:
            expected = " or ".join(status.value for status in allowed)
            raise InvalidStateError(
                f"Cannot {action} subscription with status {subscription.status.value} (expected {expected})"
            )

    def _check_active_conflicts(self, user_id, imei: str, exclude_id=None) -> None:
        """Raise ConflictError when the user or the device already holds an ACTIVE subscription"""
        active = self.db.query(Subscription).filter(Subscription.status == SubscriptionStatus.ACTIVE)
        if exclude_id is not None:
            active = active.filter(Subscription.id != exclude_id)

        if active.filter(Subscription.user_id == user_id).first():
            raise ConflictError("User already has an active subscription")
        if active.filter(Subscription.imei == imei).first():
            raise ConflictError("Device already has an active subscription")

    @staticmethod
    def _start_period(subscription: Subscription, now: datetime) -> None:
        subscription.start_date = now
        subscription.end_date = now + timedelta(days=get_plan_duration(subscription.plan))

    @staticmethod
    def _result(subscription: Subscription, transaction: Transaction, warning: Optional[str] = None, **extra) -> Dict[str, Any]:
        result = {"subscription": subscription, "transaction": transaction, "warning": warning}
        result.update(extra)
        return result

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_pending(
        self,
        user: User,
        imei: str,
        device_name: str,
        plan: str,
        phone: Optional[str],
        cards: List[Dict[str, Any]],
        price_override: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Persist a PENDING subscription and its CREATED ledger entry.

        Runs inside the caller's store transaction (registration reuses it).
        """
        get_plan(plan)
        if price_override is not None and Decimal(str(price_override)) < 0:
            raise ValidationError("Price must be non-negative")
        imei = validate_imei(imei)
        phone = validate_phone(phone or user.phone_number or "")

        self.queue.lock_device_queue(imei)
        self._check_active_conflicts(user.id, imei)

        device, is_new_device = self.devices.claim_device(user, imei, device_name)
        position = self.queue.get_next_queue_position(imei)
        price = Decimal(str(price_override)) if price_override is not None else get_plan_price(plan)

        subscription = Subscription(
            user_id=user.id,
            device_id=device.id,
            imei=imei,
            device_name=device_name or device.device_name,
            phone=phone,
            email=user.email,
            plan=plan,
            price=price,
            cards=list(cards or []),
            queue_position=position,
            status=SubscriptionStatus.PENDING
        )
        self.db.add(subscription)
        self.db.flush()

        details = {
            "device_info": {"imei": imei, "device_name": subscription.device_name},
            "encryption_cards": subscription.cards,
            "phone_number": phone,
            "email": user.email,
            "is_new_device": is_new_device,
            "queue_position": position
        }
        if metadata:
            details.update(metadata)

        transaction = self.ledger.record(
            subscription,
            TransactionType.CREATED,
            TransactionStatus.PENDING,
            metadata=details
        )

        logger.info(f"Subscription {subscription.id} created for device {imei} at queue position {position}")
        return {
            "subscription": subscription,
            "device": device,
            "transaction": transaction,
            "is_new_device": is_new_device
        }

    def create_subscription(
        self,
        user: User,
        imei: str,
        device_name: str,
        plan: str,
        phone: Optional[str] = None,
        cards: Optional[List[Dict[str, Any]]] = None,
        price_override: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Request a new subscription for a device; it waits in the device queue for review.

        Raises:
            InvalidPlanError: Unknown plan
            ConflictError: User or device already has an ACTIVE subscription
            DeviceOwnershipConflictError: Device belongs to a different user
        """
        if not cards:
            raise ValidationError("Please upload at least one encryption card file")

        with atomic(self.db):
            created = self.create_pending(
                user, imei, device_name, plan, phone, cards, price_override, metadata
            )

        subscription = created["subscription"]
        created["queue_length"] = len(self.queue.get_queue(subscription.imei))
        created["warning"] = dispatch(self.notifier.send_subscription_queued, subscription)
        return created

    # ------------------------------------------------------------------
    # Admin transitions
    # ------------------------------------------------------------------

    def approve(
        self,
        subscription_id,
        admin_id,
        comments: Optional[str] = None,
        activate_now: bool = False
    ) -> Dict[str, Any]:
        """PENDING -> APPROVED, or straight to ACTIVE when ``activate_now``"""
        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            self._require_status(subscription, "approve", SubscriptionStatus.PENDING)

            self._check_active_conflicts(subscription.user_id, subscription.imei, exclude_id=subscription.id)

            now = utc_now()
            if activate_now:
                subscription.status = SubscriptionStatus.ACTIVE
                self._start_period(subscription, now)
            else:
                subscription.status = SubscriptionStatus.APPROVED

            subscription.queue_position = None
            subscription.reviewed_by = admin_id
            subscription.reviewed_at = now
            subscription.admin_notes = comments or subscription.admin_notes
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.ACTIVATED if activate_now else TransactionType.APPROVED,
                TransactionStatus.COMPLETED if activate_now else TransactionStatus.PENDING,
                processed_by=admin_id,
                admin_notes=comments,
                metadata={"approval": {"approved_at": to_utc_isoformat(now), "activated": activate_now}}
            )
            self.queue.reorder_queue(subscription.imei)

        logger.info(f"Subscription {subscription.id} approved by {admin_id} (activated={activate_now})")
        warning = dispatch(self.notifier.send_subscription_approved, subscription, activate_now)
        return self._result(subscription, transaction, warning)

    def reject(
        self,
        subscription_id,
        admin_id,
        reason: str,
        comments: Optional[str] = None
    ) -> Dict[str, Any]:
        """PENDING -> CANCELLED; a reason is mandatory"""
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        reason = reason.strip()

        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            self._require_status(subscription, "reject", SubscriptionStatus.PENDING)

            now = utc_now()
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.queue_position = None
            subscription.reviewed_by = admin_id
            subscription.reviewed_at = now
            subscription.admin_notes = f"{reason}. {comments}" if comments else reason
            subscription.cancellation_reason = reason
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.REJECTED,
                TransactionStatus.FAILED,
                processed_by=admin_id,
                admin_notes=subscription.admin_notes,
                metadata={"rejection": {"reason": reason, "rejected_at": to_utc_isoformat(now)}}
            )
            self.queue.reorder_queue(subscription.imei)

        logger.info(f"Subscription {subscription.id} rejected by {admin_id}: {reason}")
        warning = dispatch(self.notifier.send_subscription_rejected, subscription, reason)
        return self._result(subscription, transaction, warning)

    def mark_under_review(self, subscription_id, admin_id, notes: Optional[str] = None) -> Dict[str, Any]:
        """PENDING -> QUEUED; the subscription keeps its place and waits for OTP activation"""
        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            self._require_status(subscription, "queue", SubscriptionStatus.PENDING)

            now = utc_now()
            subscription.status = SubscriptionStatus.QUEUED
            subscription.queued_by = admin_id
            subscription.queued_at = now
            if notes:
                subscription.admin_notes = notes
            if subscription.queue_position is None:
                subscription.queue_position = self.queue.get_next_queue_position(subscription.imei)
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.QUEUED,
                TransactionStatus.PENDING,
                processed_by=admin_id,
                admin_notes=notes,
                metadata={"queued": {"queued_at": to_utc_isoformat(now), "queue_position": subscription.queue_position}}
            )

        logger.info(f"Subscription {subscription.id} moved under review by {admin_id}")
        warning = dispatch(self.notifier.send_activation_instructions, subscription)
        return self._result(subscription, transaction, warning)

    def activate(self, subscription_id, admin_id, comments: Optional[str] = None) -> Dict[str, Any]:
        """APPROVED -> ACTIVE; conflicts are re-checked at activation time"""
        with atomic(self.db):
            subscription = self._get(subscription_id, lock=True)
            self._require_status(subscription, "activate", SubscriptionStatus.APPROVED)
            self._check_active_conflicts(subscription.user_id, subscription.imei, exclude_id=subscription.id)

            now = utc_now()
            subscription.status = SubscriptionStatus.ACTIVE
            self._start_period(subscription, now)
            if comments:
                subscription.admin_notes = comments
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.ACTIVATED,
                TransactionStatus.COMPLETED,
                processed_by=admin_id,
                admin_notes=comments,
                metadata={"activation": {"method": "admin", "activated_at": to_utc_isoformat(now)}}
            )

        logger.info(f"Subscription {subscription.id} activated by {admin_id}")
        warning = dispatch(self.notifier.send_subscription_approved, subscription, True)
        return self._result(subscription, transaction, warning)

    def update_queue_position(self, subscription_id, new_position: int, admin_id) -> Dict[str, Any]:
        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            result = self.queue.update_queue_position(subscription, new_position, admin_id)
        return result

    def update_priority(self, subscription_id, admin_id, priority: int) -> Dict[str, Any]:
        """Set a queued subscription's priority and reorder its device queue"""
        if priority is None or isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError("Priority must be an integer")

        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            if not subscription.in_queue:
                raise InvalidStateError(
                    f"Can only change priority of queued subscriptions (current status: {subscription.status.value})"
                )

            old_priority = subscription.priority
            old_position = subscription.queue_position
            subscription.priority = priority
            self.queue.reorder_queue(subscription.imei)

            transaction = self.ledger.record(
                subscription,
                TransactionType.QUEUE_POSITION_UPDATED,
                TransactionStatus.PENDING,
                processed_by=admin_id,
                amount=0,
                admin_notes=f"Priority changed from {old_priority} to {priority}",
                metadata={
                    "priority_change": {"from": old_priority, "to": priority},
                    "queue_position_change": {"from": old_position, "to": subscription.queue_position}
                }
            )

        logger.info(f"Subscription {subscription.id} priority {old_priority} -> {priority}")
        return self._result(subscription, transaction)

    def reorder_queue(self, imei: str) -> Dict[str, Any]:
        imei = validate_imei(imei)
        with atomic(self.db):
            self.queue.lock_device_queue(imei)
            count = self.queue.reorder_queue(imei)
        return {"imei": imei, "queue_length": count}

    # ------------------------------------------------------------------
    # User transitions
    # ------------------------------------------------------------------

    def activate_via_otp(self, user: User, subscription_id, imei: str, otp_code: str) -> Dict[str, Any]:
        """
        QUEUED -> ACTIVE, gated by the device's one-time password

        Raises:
            ForbiddenError: Subscription belongs to someone else
            ValidationError: IMEI mismatch or invalid code
            InvalidStateError: Subscription is not QUEUED
            NotFoundError: No device for (user, imei)
        """
        imei = validate_imei(imei)

        with atomic(self.db):
            subscription = self._get_for_queue_change(subscription_id)
            if str(subscription.user_id) != str(user.id):
                raise ForbiddenError("You do not have access to this subscription")
            if subscription.imei != imei:
                raise ValidationError("IMEI does not match this subscription")
            self._require_status(subscription, "activate", SubscriptionStatus.QUEUED)

            device = self.db.query(Device).filter(
                Device.imei == imei,
                Device.user_id == user.id
            ).with_for_update().first()
            if not device:
                raise NotFoundError("Device not found for this user")

            if not self.devices.verify_otp(device, otp_code):
                raise ValidationError("Invalid or expired OTP code")

            self._check_active_conflicts(subscription.user_id, imei, exclude_id=subscription.id)

            now = utc_now()
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.queue_position = None
            subscription.device_id = subscription.device_id or device.id
            self._start_period(subscription, now)
            device.onboarded = True
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.ACTIVATED,
                TransactionStatus.COMPLETED,
                metadata={"activation": {"method": "otp", "activated_at": to_utc_isoformat(now)}}
            )
            self.queue.reorder_queue(imei)

        duration = get_plan_duration(subscription.plan)
        logger.info(f"Subscription {subscription.id} activated via OTP on device {imei}")
        warning = dispatch(self.notifier.send_subscription_approved, subscription, True)
        return self._result(subscription, transaction, warning, duration=duration)

    def upgrade(self, user: User, subscription_id, new_plan: str) -> Dict[str, Any]:
        """Move an ACTIVE subscription to a strictly more expensive plan"""
        new_price = get_plan_price(new_plan)

        with atomic(self.db):
            subscription = self._get(subscription_id, lock=True)
            self._ensure_owner(subscription, user)
            self._require_status(subscription, "upgrade", SubscriptionStatus.ACTIVE)

            old_plan = subscription.plan
            old_price = Decimal(subscription.price)
            if new_price <= get_plan_price(old_plan):
                raise ConflictError("New plan must be a higher tier than the current plan")

            now = utc_now()
            remaining_days = max((subscription.end_date - now).days, 0) if subscription.end_date else 0
            prorated_amount = max(new_price - old_price, Decimal("0"))

            subscription.plan = new_plan
            subscription.price = new_price
            start = subscription.start_date or now
            subscription.end_date = start + timedelta(days=get_plan_duration(new_plan))
            subscription.pending_plan_change = None
            self.db.flush()

            pending = self.ledger.record(
                subscription,
                TransactionType.UPGRADED,
                TransactionStatus.PENDING,
                amount=prorated_amount,
                metadata={
                    "old_plan": old_plan,
                    "new_plan": new_plan,
                    "prorated_days": remaining_days,
                    "full_new_price": str(new_price),
                    "old_price": str(old_price)
                }
            )
            transaction = self.ledger.supersede(pending, subscription, TransactionStatus.COMPLETED)

        logger.info(f"Subscription {subscription.id} upgraded {old_plan} -> {new_plan}")
        return self._result(subscription, transaction, prorated_amount=prorated_amount)

    def downgrade(self, user: User, subscription_id, new_plan: str) -> Dict[str, Any]:
        """Schedule a cheaper plan to take effect at the current end date"""
        new_price = get_plan_price(new_plan)

        with atomic(self.db):
            subscription = self._get(subscription_id, lock=True)
            self._ensure_owner(subscription, user)
            self._require_status(subscription, "downgrade", SubscriptionStatus.ACTIVE)

            old_plan = subscription.plan
            if new_price >= get_plan_price(old_plan):
                raise ConflictError("New plan must be a lower tier than the current plan")

            effective_date = to_utc_isoformat(subscription.end_date)
            subscription.pending_plan_change = {
                "new_plan": new_plan,
                "new_price": str(new_price),
                "effective_date": effective_date
            }
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.DOWNGRADED,
                TransactionStatus.COMPLETED,
                amount=0,
                plan=new_plan,
                metadata={
                    "old_plan": old_plan,
                    "new_plan": new_plan,
                    "new_price": str(new_price),
                    "effective_date": effective_date
                }
            )

        logger.info(f"Subscription {subscription.id} downgrade to {new_plan} scheduled for {effective_date}")
        return self._result(subscription, transaction, effective_date=subscription.end_date)

    def cancel(
        self,
        user: User,
        subscription_id,
        reason: Optional[str] = None,
        immediate: bool = False
    ) -> Dict[str, Any]:
        """Cancel now, or at the end of the current period"""
        with atomic(self.db):
            subscription = self._get(subscription_id, lock=True)
            self._ensure_owner(subscription, user)
            self._require_status(subscription, "cancel", SubscriptionStatus.ACTIVE)

            now = utc_now()
            original_end_date = to_utc_isoformat(subscription.end_date)
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
            if immediate:
                subscription.status = SubscriptionStatus.CANCELLED
                subscription.end_date = now
            self.db.flush()

            transaction = self.ledger.record(
                subscription,
                TransactionType.CANCELLED,
                TransactionStatus.COMPLETED,
                amount=0,
                metadata={
                    "cancellation_reason": reason,
                    "immediate": immediate,
                    "original_end_date": original_end_date
                }
            )

        logger.info(f"Subscription {subscription.id} cancelled (immediate={immediate})")
        return self._result(subscription, transaction)

    def renew(self, user: User, subscription_id) -> Dict[str, Any]:
        """EXPIRED -> ACTIVE for a fresh period, applying any scheduled downgrade"""
        with atomic(self.db):
            subscription = self._get(subscription_id, lock=True)
            self._ensure_owner(subscription, user)
            self._require_status(subscription, "renew", SubscriptionStatus.EXPIRED)
            self._check_active_conflicts(subscription.user_id, subscription.imei, exclude_id=subscription.id)

            applied_change = None
            if subscription.pending_plan_change:
                applied_change = dict(subscription.pending_plan_change)
                applied_change["old_plan"] = subscription.plan
                subscription.plan = applied_change["new_plan"]
                subscription.price = get_plan_price(subscription.plan)
                subscription.pending_plan_change = None

            now = utc_now()
            subscription.status = SubscriptionStatus.ACTIVE
            self._start_period(subscription, now)
            subscription.cancelled_at = None
            subscription.cancellation_reason = None
            self.db.flush()

            pending = self.ledger.record(
                subscription,
                TransactionType.RENEWED,
                TransactionStatus.PENDING,
                metadata={"applied_plan_change": applied_change}
            )
            transaction = self.ledger.supersede(pending, subscription, TransactionStatus.COMPLETED)

        logger.info(f"Subscription {subscription.id} renewed until {subscription.end_date}")
        return self._result(subscription, transaction)

    def expire_due_subscriptions(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Close out ACTIVE subscriptions whose period has ended.

        A subscription with a deferred cancellation becomes CANCELLED, every
        other one EXPIRED. Each record is handled in its own store transaction.
        """
        now = now or utc_now()
        due_ids = [
            row.id for row in self.db.query(Subscription.id).filter(
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.end_date < now
            ).all()
        ]

        expired, cancelled, failed = 0, 0, []
        for subscription_id in due_ids:
            try:
                with atomic(self.db):
                    subscription = self._get(subscription_id, lock=True)
                    if subscription.status != SubscriptionStatus.ACTIVE or subscription.end_date >= now:
                        continue

                    if subscription.cancelled_at is not None:
                        subscription.status = SubscriptionStatus.CANCELLED
                        entry_type, entry_status = TransactionType.CANCELLED, TransactionStatus.COMPLETED
                        cancelled += 1
                    else:
                        subscription.status = SubscriptionStatus.EXPIRED
                        entry_type, entry_status = TransactionType.EXPIRED, TransactionStatus.COMPLETED
                        expired += 1
                    self.db.flush()

                    self.ledger.record(
                        subscription,
                        entry_type,
                        entry_status,
                        amount=0,
                        metadata={"expired_at": to_utc_isoformat(now)}
                    )
            except Exception as e:
                logger.error(f"Failed to expire subscription {subscription_id}: {e}")
                failed.append(str(subscription_id))

        if due_ids:
            logger.info(f"Expiry run: {expired} expired, {cancelled} cancelled, {len(failed)} failed")
        return {"processed": len(due_ids), "expired": expired, "cancelled": cancelled, "failed": failed}

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_subscription(self, subscription_id) -> Subscription:
        return self._get(subscription_id)

    def get_plans(self) -> List[Dict[str, Any]]:
        return list_plans()

    def list_user_subscriptions(self, user: User) -> List[Subscription]:
        return self.db.query(Subscription).filter(
            Subscription.user_id == user.id
        ).order_by(Subscription.created_at.desc()).all()

    def get_user_subscription(self, user: User, subscription_id) -> Subscription:
        subscription = self._get(subscription_id)
        self._ensure_owner(subscription, user)
        return subscription

    def get_subscription_transactions(self, user: User, subscription_id) -> List[Transaction]:
        subscription = self.get_user_subscription(user, subscription_id)
        return self.ledger.get_chain(subscription.id)

    def get_device_queue(self, imei: str) -> List[Subscription]:
        return self.queue.get_queue(validate_imei(imei))
