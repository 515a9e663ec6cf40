"""Per-device review queue arithmetic"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Dict, Any
import logging

from app.database import lock_key
from app.models.subscription import Subscription, QUEUE_STATUSES
from app.models.transaction import TransactionType, TransactionStatus
from app.core.exceptions import ValidationError, InvalidStateError
from app.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Queue positions for subscriptions awaiting admin action.

    Positions are 1-based and dense per IMEI among PENDING/QUEUED records.
    Every method runs inside the caller's store transaction and never
    commits; callers must take ``lock_device_queue`` before mutating.
    """

    def __init__(self, db: Session, ledger: LedgerService = None):
        self.db = db
        self.ledger = ledger or LedgerService(db)

    def lock_device_queue(self, imei: str) -> None:
        """Serialize queue mutations for one device until commit/rollback"""
        lock_key(self.db, f"queue:{imei}")

    def _queue_query(self, imei: str):
        return self.db.query(Subscription).filter(
            Subscription.imei == imei,
            Subscription.status.in_(QUEUE_STATUSES)
        )

    def get_next_queue_position(self, imei: str) -> int:
        """Max position among the device's queued records + 1, or 1 for an empty queue"""
        current_max = self.db.query(func.max(Subscription.queue_position)).filter(
            Subscription.imei == imei,
            Subscription.status.in_(QUEUE_STATUSES)
        ).scalar()
        return (current_max or 0) + 1

    def get_queue(self, imei: str) -> List[Subscription]:
        """Queued records of a device in position order"""
        return self._queue_query(imei).order_by(Subscription.queue_position.asc()).all()

    def reorder_queue(self, imei: str) -> int:
        """
        Rewrite positions 1..N by (priority desc, created_at asc).

        Idempotent. Returns the number of records in the queue.
        """
        self.db.flush()
        queued = self._queue_query(imei).order_by(
            Subscription.priority.desc(),
            Subscription.created_at.asc()
        ).with_for_update().all()

        for index, subscription in enumerate(queued, start=1):
            if subscription.queue_position != index:
                subscription.queue_position = index

        self.db.flush()
        logger.info(f"Reordered queue for device {imei}: {len(queued)} entries")
        return len(queued)

    def update_queue_position(
        self,
        subscription: Subscription,
        new_position: int,
        admin_id
    ) -> Dict[str, Any]:
        """
        Move a queued subscription to ``new_position``, shifting the records in between.

        Moving earlier increments every record in [new, old); moving later
        decrements every record in (old, new]. The shift is one bulk UPDATE
        followed by the target's own update.

        Raises:
            InvalidStateError: Subscription is not in the queue
            ValidationError: new_position outside 1..N
        """
        if not subscription.in_queue:
            raise InvalidStateError(
                f"Can only update queue position for queued subscriptions (current status: {subscription.status.value})"
            )

        total = self._queue_query(subscription.imei).count()
        if new_position is None or new_position < 1 or new_position > total:
            raise ValidationError(f"Queue position must be between 1 and {total}")

        old_position = subscription.queue_position
        if new_position == old_position:
            return {"subscription": subscription, "old_position": old_position, "new_position": new_position}

        others = self._queue_query(subscription.imei).filter(Subscription.id != subscription.id)
        if new_position < old_position:
            others.filter(
                Subscription.queue_position >= new_position,
                Subscription.queue_position < old_position
            ).update(
                {Subscription.queue_position: Subscription.queue_position + 1},
                synchronize_session="fetch"
            )
        else:
            others.filter(
                Subscription.queue_position > old_position,
                Subscription.queue_position <= new_position
            ).update(
                {Subscription.queue_position: Subscription.queue_position - 1},
                synchronize_session="fetch"
            )

        subscription.queue_position = new_position
        self.db.flush()

        self.ledger.record(
            subscription,
            TransactionType.QUEUE_POSITION_UPDATED,
            TransactionStatus.PENDING,
            processed_by=admin_id,
            amount=0,
            admin_notes=f"Queue position changed from {old_position} to {new_position}",
            metadata={"queue_position_change": {"from": old_position, "to": new_position}}
        )

        logger.info(
            f"Queue position of subscription {subscription.id} moved {old_position} -> {new_position}"
        )
        return {"subscription": subscription, "old_position": old_position, "new_position": new_position}
