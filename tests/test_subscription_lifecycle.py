"""Subscription state machine and its ledger trail"""
from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import (
    ConflictError,
    DeviceOwnershipConflictError,
    ForbiddenError,
    InternalError,
    InvalidPlanError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import TransactionStatus, TransactionType

from conftest import CARDS, IMEI_A, IMEI_B


def activate_now(service, admin, subscription):
    return service.approve(subscription.id, admin.id, activate_now=True)["subscription"]


def test_new_subscription_is_pending_with_created_entry(service, make_user, notifier):
    user = make_user()

    result = service.create_subscription(
        user, imei=IMEI_A, device_name="Field phone", plan="mobile-v5-premium", cards=CARDS
    )

    subscription = result["subscription"]
    assert subscription.status == SubscriptionStatus.PENDING
    assert subscription.price == Decimal("59.99")
    assert subscription.phone == user.phone_number
    assert result["is_new_device"] is True
    assert result["queue_length"] == 1
    assert result["transaction"].type == TransactionType.CREATED
    assert result["transaction"].status == TransactionStatus.PENDING
    assert result["transaction"].sequence == 1
    assert result["warning"] is None
    assert notifier.kinds() == ["queued"]


def test_unknown_plan_is_rejected(service, make_user):
    with pytest.raises(InvalidPlanError):
        service.create_subscription(make_user(), imei=IMEI_A, device_name="Phone", plan="gold", cards=CARDS)


def test_cards_are_required(service, make_user):
    with pytest.raises(ValidationError):
        service.create_subscription(make_user(), imei=IMEI_A, device_name="Phone", plan="mobile-v4-basic", cards=[])


def test_device_owned_by_someone_else(service, make_user, create_sub):
    create_sub(make_user(), IMEI_A)

    with pytest.raises(DeviceOwnershipConflictError):
        create_sub(make_user(), IMEI_A)


def test_user_can_hold_only_one_active_subscription(db, service, make_user, admin, create_sub):
    user = make_user()
    activate_now(service, admin, create_sub(user, IMEI_A))

    with pytest.raises(ConflictError, match="User already has an active subscription"):
        create_sub(user, IMEI_B)

    assert db.query(Subscription).filter(Subscription.imei == IMEI_B).count() == 0


def test_device_can_hold_only_one_active_subscription(db, service, make_user, admin, create_sub):
    user = make_user()
    first = create_sub(user, IMEI_A)
    second = create_sub(user, IMEI_A)
    activate_now(service, admin, first)

    with pytest.raises(ConflictError):
        service.approve(second.id, admin.id, activate_now=True)

    db.refresh(second)
    assert second.status == SubscriptionStatus.PENDING
    active = db.query(Subscription).filter(Subscription.status == SubscriptionStatus.ACTIVE).all()
    assert [s.id for s in active] == [first.id]


@pytest.mark.parametrize("second_imei", [IMEI_A, IMEI_B])
def test_approve_without_activation_checks_active_conflicts(db, service, make_user, admin, create_sub, second_imei):
    user = make_user()
    first = create_sub(user, IMEI_A)
    second = create_sub(user, second_imei)
    activate_now(service, admin, first)

    with pytest.raises(ConflictError, match="already has an active subscription"):
        service.approve(second.id, admin.id)

    db.refresh(second)
    assert second.status == SubscriptionStatus.PENDING
    assert [t.type for t in service.ledger.get_chain(second.id)] == [TransactionType.CREATED]


def test_approve_activate_cancel_chain(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A)

    approved = service.approve(subscription.id, admin.id, comments="Cards look good")
    assert approved["subscription"].status == SubscriptionStatus.APPROVED
    assert approved["subscription"].reviewed_by == admin.id

    activated = service.activate(subscription.id, admin.id)
    sub = activated["subscription"]
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.end_date - sub.start_date == timedelta(days=30)

    cancelled = service.cancel(user, subscription.id, reason="Moving abroad")
    assert cancelled["subscription"].status == SubscriptionStatus.ACTIVE
    assert cancelled["subscription"].cancelled_at is not None

    chain = service.ledger.get_chain(subscription.id)
    assert [t.type for t in chain] == [
        TransactionType.CREATED,
        TransactionType.APPROVED,
        TransactionType.ACTIVATED,
        TransactionType.CANCELLED,
    ]
    assert [t.sequence for t in chain] == [1, 2, 3, 4]
    assert chain[0].previous_transaction_id is None
    for previous, entry in zip(chain, chain[1:]):
        assert entry.previous_transaction_id == previous.id
    assert chain[1].processed_by == admin.id
    assert chain[2].status == TransactionStatus.COMPLETED
    assert chain[3].amount == 0
    assert len(chain[0].related_transactions) == 1


def test_activate_requires_approval(service, make_user, admin, create_sub):
    subscription = create_sub(make_user(), IMEI_A)

    with pytest.raises(InvalidStateError):
        service.activate(subscription.id, admin.id)


def test_reject_requires_reason(service, make_user, admin, create_sub):
    subscription = create_sub(make_user(), IMEI_A)

    with pytest.raises(ValidationError):
        service.reject(subscription.id, admin.id, reason="  ")


def test_reject_records_failed_entry(service, make_user, admin, create_sub, notifier):
    subscription = create_sub(make_user(), IMEI_A)

    result = service.reject(subscription.id, admin.id, reason="Invalid card", comments="Re-upload please")

    assert result["subscription"].admin_notes == "Invalid card. Re-upload please"
    assert result["subscription"].cancellation_reason == "Invalid card"
    assert result["transaction"].type == TransactionType.REJECTED
    assert result["transaction"].status == TransactionStatus.FAILED
    assert notifier.kinds()[-1] == "rejected"


def test_upgrade_charges_difference_and_extends_from_start(service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A, plan="mobile-v4-basic"))
    original_start = subscription.start_date

    result = service.upgrade(user, subscription.id, "mobile-v4-premium")

    sub = result["subscription"]
    assert sub.start_date == original_start
    assert sub.plan == "mobile-v4-premium"
    assert sub.price == Decimal("49.99")
    assert result["prorated_amount"] == Decimal("20.00")
    assert sub.end_date - sub.start_date == timedelta(days=60)

    chain = service.ledger.get_chain(sub.id)
    pending, completed = chain[-2], chain[-1]
    assert (pending.type, pending.status) == (TransactionType.UPGRADED, TransactionStatus.PENDING)
    assert (completed.type, completed.status) == (TransactionType.UPGRADED, TransactionStatus.COMPLETED)
    assert completed.previous_transaction_id == pending.id
    assert completed.amount == Decimal("20.00")


@pytest.mark.parametrize("new_plan", ["mobile-v4-basic", "mobile-v4-premium"])
def test_upgrade_needs_more_expensive_plan(db, service, make_user, admin, create_sub, new_plan):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A, plan="mobile-v4-premium"))

    with pytest.raises(ConflictError):
        service.upgrade(user, subscription.id, new_plan)

    db.refresh(subscription)
    assert subscription.plan == "mobile-v4-premium"


def test_downgrade_is_deferred_until_renewal(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A, plan="mobile-v4-premium"))
    end_date = subscription.end_date

    result = service.downgrade(user, subscription.id, "mobile-v4-basic")

    sub = result["subscription"]
    assert sub.plan == "mobile-v4-premium"
    assert sub.pending_plan_change["new_plan"] == "mobile-v4-basic"
    assert sub.pending_plan_change["new_price"] == "29.99"
    assert result["effective_date"] == end_date
    assert result["transaction"].type == TransactionType.DOWNGRADED
    assert result["transaction"].amount == 0

    outcome = service.expire_due_subscriptions(now=end_date + timedelta(seconds=1))
    assert outcome["expired"] == 1

    renewed = service.renew(user, subscription.id)["subscription"]
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.plan == "mobile-v4-basic"
    assert renewed.price == Decimal("29.99")
    assert renewed.pending_plan_change is None
    assert renewed.end_date - renewed.start_date == timedelta(days=30)


def test_downgrade_needs_cheaper_plan(service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A, plan="mobile-v4-basic"))

    with pytest.raises(ConflictError):
        service.downgrade(user, subscription.id, "mobile-v4-premium")


def test_renew_only_from_expired(service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A))

    with pytest.raises(InvalidStateError):
        service.renew(user, subscription.id)


def test_renew_starts_fresh_period(service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A, plan="mobile-v4-enterprise"))
    original_start = subscription.start_date
    service.expire_due_subscriptions(now=subscription.end_date + timedelta(days=3))

    result = service.renew(user, subscription.id)

    sub = result["subscription"]
    assert sub.end_date - sub.start_date == timedelta(days=90)
    assert sub.start_date > original_start
    assert result["transaction"].type == TransactionType.RENEWED
    assert result["transaction"].status == TransactionStatus.COMPLETED


def test_immediate_cancel_ends_now(service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A))

    sub = service.cancel(user, subscription.id, immediate=True)["subscription"]

    assert sub.status == SubscriptionStatus.CANCELLED
    assert sub.end_date == sub.cancelled_at


def test_deferred_cancel_becomes_cancelled_at_expiry(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = activate_now(service, admin, create_sub(user, IMEI_A))
    service.cancel(user, subscription.id)

    outcome = service.expire_due_subscriptions(now=subscription.end_date + timedelta(minutes=1))

    db.refresh(subscription)
    assert outcome == {"processed": 1, "expired": 0, "cancelled": 1, "failed": []}
    assert subscription.status == SubscriptionStatus.CANCELLED


def test_expiry_leaves_current_subscriptions_alone(service, make_user, admin, create_sub):
    subscription = activate_now(service, admin, create_sub(make_user(), IMEI_A))

    outcome = service.expire_due_subscriptions(now=subscription.end_date - timedelta(days=1))

    assert outcome["processed"] == 0


def test_other_users_cannot_touch_subscription(service, make_user, admin, create_sub):
    owner, stranger = make_user(), make_user()
    subscription = activate_now(service, admin, create_sub(owner, IMEI_A))

    with pytest.raises(ForbiddenError):
        service.cancel(stranger, subscription.id)
    with pytest.raises(ForbiddenError):
        service.get_user_subscription(stranger, subscription.id)


def test_unknown_and_malformed_ids(service, admin):
    with pytest.raises(NotFoundError):
        service.approve("00000000-0000-0000-0000-000000000000", admin.id)
    with pytest.raises(ValidationError):
        service.approve("not-a-uuid", admin.id)


def test_notifier_failure_becomes_warning(db, service, make_user, admin, create_sub, notifier):
    subscription = create_sub(make_user(), IMEI_A)
    notifier.fail = True

    result = service.approve(subscription.id, admin.id)

    assert result["warning"] == "Operation completed but the notification email could not be sent"
    db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.APPROVED


def test_ledger_entries_are_write_once(db, service, make_user, create_sub):
    subscription = create_sub(make_user(), IMEI_A)
    entry = service.ledger.get_latest(subscription.id)

    entry.status = TransactionStatus.COMPLETED
    with pytest.raises(InternalError):
        db.flush()
    db.rollback()

    db.delete(service.ledger.get_latest(subscription.id))
    with pytest.raises(InternalError):
        db.flush()
    db.rollback()

    assert service.ledger.get_latest(subscription.id).status == TransactionStatus.PENDING


def test_plan_changes_compare_catalog_prices_not_overrides(service, make_user, admin):
    user = make_user()
    discounted = service.create_subscription(
        user, imei=IMEI_A, device_name="Field phone", plan="mobile-v4-premium",
        cards=CARDS, price_override=Decimal("10.00")
    )["subscription"]
    activate_now(service, admin, discounted)

    downgraded = service.downgrade(user, discounted.id, "mobile-v4-basic")
    assert downgraded["subscription"].pending_plan_change["new_plan"] == "mobile-v4-basic"

    with pytest.raises(ConflictError):
        service.upgrade(user, discounted.id, "mobile-v4-basic")

    upgraded = service.upgrade(user, discounted.id, "mobile-v4-enterprise")
    assert upgraded["prorated_amount"] == Decimal("89.99")


def test_upgrade_from_overpriced_subscription_charges_nothing(service, make_user, admin):
    user = make_user()
    overpriced = service.create_subscription(
        user, imei=IMEI_A, device_name="Field phone", plan="mobile-v4-basic",
        cards=CARDS, price_override=Decimal("99.00")
    )["subscription"]
    activate_now(service, admin, overpriced)

    result = service.upgrade(user, overpriced.id, "mobile-v4-premium")

    assert result["prorated_amount"] == Decimal("0")
    assert result["transaction"].amount == Decimal("0")
