"""Admin review engine: listing, bulk transitions, ledger audit and reporting"""
from decimal import Decimal

import pytest

from app.core.exceptions import ValidationError
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.transaction import TransactionStatus, TransactionType
from app.services.admin_service import AdminService
from app.services.ledger_service import LedgerService, generate_transaction_id

from conftest import IMEI_A, IMEI_B, IMEI_C


@pytest.fixture
def admin_service(db, notifier):
    return AdminService(db, notifier)


def test_transaction_ids_do_not_collide():
    ids = {generate_transaction_id() for _ in range(2000)}
    assert len(ids) == 2000


def test_list_defaults_to_pending_sorted_by_position(admin_service, service, make_user, admin, create_sub):
    user = make_user()
    s1, s2, s3 = [create_sub(user, IMEI_A) for _ in range(3)]
    service.approve(s1.id, admin.id)

    result = admin_service.list_subscriptions()

    assert [s.id for s in result["subscriptions"]] == [s2.id, s3.id]
    assert result["pagination"]["total_items"] == 2
    counts = {row["status"]: row["count"] for row in result["statistics"]}
    assert counts == {"PENDING": 2, "APPROVED": 1}
    assert [row["status"] for row in result["processing_statistics"]] == ["APPROVED"]


def test_list_filters_and_paginates(admin_service, make_user, create_sub):
    create_sub(make_user(), IMEI_A, plan="mobile-v4-basic")
    create_sub(make_user(), IMEI_B, plan="mobile-v5-basic")
    create_sub(make_user(), IMEI_C, plan="mobile-v5-basic")

    result = admin_service.list_subscriptions(status="all", plan="mobile-v5-basic", page=2, limit=1)

    assert len(result["subscriptions"]) == 1
    assert result["pagination"] == {
        "current_page": 2,
        "total_pages": 2,
        "total_items": 2,
        "items_per_page": 1,
        "has_next": False,
        "has_prev": True,
    }


def test_list_rejects_unknown_status_and_sort(admin_service):
    with pytest.raises(ValidationError):
        admin_service.list_subscriptions(status="LOST")
    with pytest.raises(ValidationError):
        admin_service.list_subscriptions(sort_by="password_hash")


def test_details_include_histories_and_chain(admin_service, service, make_user, admin, create_sub):
    user = make_user()
    first = create_sub(user, IMEI_A)
    second = create_sub(user, IMEI_A)
    service.approve(first.id, admin.id)

    details = admin_service.get_subscription_details(first.id)

    assert details["user"].id == user.id
    assert details["device"].imei == IMEI_A
    assert [s.id for s in details["user_subscription_history"]] == [second.id]
    assert [s.id for s in details["device_subscription_history"]] == [second.id]
    assert [t.type for t in details["transactions"]] == [TransactionType.CREATED, TransactionType.APPROVED]


def test_bulk_update_reports_partial_success(db, admin_service, service, make_user, admin, create_sub):
    user = make_user()
    pending = create_sub(user, IMEI_A)
    already_approved = create_sub(user, IMEI_A)
    service.approve(already_approved.id, admin.id)

    result = admin_service.bulk_update(
        [str(pending.id), str(already_approved.id), "not-a-uuid"],
        "approve",
        {"comments": "Batch review"},
        admin.id
    )

    assert result["processed"] == 3
    assert result["successful"] == 1
    assert result["failed"] == 2
    assert [r["success"] for r in result["results"]] == [True, False, False]
    assert result["results"][0]["status"] == "APPROVED"
    assert "Cannot approve" in result["results"][1]["reason"]
    db.refresh(pending)
    assert pending.status == SubscriptionStatus.APPROVED
    assert pending.admin_notes == "Bulk operation: Batch review"


def test_bulk_approve_skips_devices_with_an_active_subscription(db, admin_service, service, make_user, admin, create_sub):
    user = make_user()
    active = create_sub(user, IMEI_A)
    waiting = create_sub(user, IMEI_A)
    service.approve(active.id, admin.id, activate_now=True)

    result = admin_service.bulk_update([str(waiting.id)], "approve", {}, admin.id)

    assert (result["successful"], result["failed"]) == (0, 1)
    assert "already has an active subscription" in result["results"][0]["reason"]
    db.refresh(waiting)
    assert waiting.status == SubscriptionStatus.PENDING


def test_bulk_reject_needs_reason_before_any_work(db, admin_service, make_user, admin, create_sub):
    subscription = create_sub(make_user(), IMEI_A)

    with pytest.raises(ValidationError):
        admin_service.bulk_update([str(subscription.id)], "reject", {}, admin.id)

    db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.PENDING


def test_bulk_validates_action_and_ids(admin_service, admin):
    with pytest.raises(ValidationError):
        admin_service.bulk_update([], "approve", {}, admin.id)
    with pytest.raises(ValidationError):
        admin_service.bulk_update(["x"], "delete", {}, admin.id)
    with pytest.raises(ValidationError):
        admin_service.bulk_update(["x"], "update_priority", {}, admin.id)


def test_bulk_priority_and_review(db, admin_service, make_user, admin, create_sub):
    user = make_user()
    s1, s2 = create_sub(user, IMEI_A), create_sub(user, IMEI_A)

    admin_service.bulk_update([str(s2.id)], "update_priority", {"priority": 3}, admin.id)
    result = admin_service.bulk_update([str(s1.id), str(s2.id)], "under_review", {}, admin.id)

    assert result["successful"] == 2
    db.refresh(s1)
    db.refresh(s2)
    assert (s2.queue_position, s1.queue_position) == (1, 2)
    assert s1.status == s2.status == SubscriptionStatus.QUEUED


def test_dashboard_aggregates(admin_service, service, make_user, admin, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A, plan="mobile-v4-premium")
    create_sub(make_user(), IMEI_B, plan="mobile-v4-basic")
    service.approve(subscription.id, admin.id, activate_now=True)

    dashboard = admin_service.get_dashboard()

    assert dashboard["queue_analysis"]["total_pending"] == 1
    assert dashboard["queue_analysis"]["total_pending_value"] == Decimal("29.99")
    plans = {row["plan"]: row["count"] for row in dashboard["plan_distribution"]}
    assert plans == {"mobile-v4-premium": 1, "mobile-v4-basic": 1}
    assert len(dashboard["recent_subscriptions"]) == 2
    assert sum(m["revenue"] for m in dashboard["monthly_revenue"]) == Decimal("49.99")


def test_audit_is_clean_after_normal_flows(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A)
    service.approve(subscription.id, admin.id, activate_now=True)
    service.upgrade(user, subscription.id, "mobile-v4-enterprise")
    service.cancel(user, subscription.id)

    audit = LedgerService(db).audit_integrity()

    assert audit["healthy"] is True
    assert audit["total_issues"] == 0


def test_reconcile_backfills_missing_chains(db, make_user):
    user = make_user()
    orphan = Subscription(
        user_id=user.id,
        imei=IMEI_A,
        device_name="Imported",
        phone="+15551234567",
        email=user.email,
        plan="mobile-v4-basic",
        price=Decimal("29.99"),
        cards=[],
        status=SubscriptionStatus.APPROVED
    )
    db.add(orphan)
    db.commit()
    ledger = LedgerService(db)

    result = ledger.reconcile_missing()

    assert result == {"processed": 1, "reconciled": [str(orphan.id)], "failed": []}
    chain = ledger.get_chain(orphan.id)
    assert [t.type for t in chain] == [TransactionType.CREATED, TransactionType.APPROVED]
    assert chain[1].previous_transaction_id == chain[0].id
    assert ledger.reconcile_missing()["processed"] == 0


def test_lifetime_value_and_financial_summary(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A, plan="mobile-v4-basic")
    service.approve(subscription.id, admin.id, activate_now=True)
    service.upgrade(user, subscription.id, "mobile-v4-premium")
    ledger = LedgerService(db)

    ltv = ledger.user_lifetime_value(user.id)

    # ACTIVATED 29.99 + UPGRADED 20.00 (completed entries only)
    assert ltv["total_revenue"] == Decimal("49.99")
    assert ltv["total_transactions"] == 2
    assert set(ltv["plan_breakdown"]) == {"mobile-v4-basic", "mobile-v4-premium"}

    summary = ledger.financial_summary()
    by_status = {row["status"]: row["count"] for row in summary["by_status"]}
    assert by_status[TransactionStatus.COMPLETED.value] == 2
    by_type = {row["type"] for row in summary["by_type"]}
    assert {"CREATED", "ACTIVATED", "UPGRADED"} <= by_type
