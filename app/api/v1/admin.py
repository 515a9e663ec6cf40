"""Admin review API endpoints"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.database import get_db
from app.core.dependencies import get_admin_user
from app.models.user import User
from app.services.admin_service import AdminService
from app.services.ledger_service import LedgerService
from app.services.subscription_service import SubscriptionService
from app.utils.validators import parse_uuid
from app.schemas.subscription import SubscriptionActionResponse, SubscriptionResponse
from app.schemas.admin import (
    ApproveRequest,
    RejectRequest,
    ActivateRequest,
    ReviewRequest,
    QueuePositionRequest,
    PriorityRequest,
    BulkUpdateRequest,
    QueueListResponse,
    SubscriptionDetailsResponse,
    QueuePositionResponse,
    ReorderResponse,
    BulkUpdateResponse,
    DashboardResponse,
    AuditResponse,
    ReconcileResponse,
    LifetimeValueResponse,
    FinancialReportResponse
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/queue", response_model=QueueListResponse)
def get_review_queue(
    status: Optional[str] = Query("PENDING", description="Status, comma-separated statuses or 'all'"),
    plan: Optional[str] = Query(None),
    imei: Optional[str] = Query(None, description="IMEI substring"),
    email: Optional[str] = Query(None, description="Email substring"),
    sort_by: str = Query("queue_position"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """
    Get subscriptions awaiting review (Admin only)

    - **status**: Defaults to PENDING
    - **plan**, **imei**, **email**: Filters
    - **sort_by**: queue_position, created_at, priority, price, plan or status
    - **page** / **limit**: Pagination

    Also returns per-status counts and processing-time statistics.
    """
    result = AdminService(db).list_subscriptions(
        status=status,
        plan=plan,
        imei=imei,
        email=email,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit
    )
    return QueueListResponse.model_validate(result, from_attributes=True)


@router.get("/queue/{subscription_id}", response_model=SubscriptionDetailsResponse)
def get_subscription_details(
    subscription_id: str,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Subscription with user, device, both histories and its ledger chain (Admin only)"""
    result = AdminService(db).get_subscription_details(subscription_id)
    return SubscriptionDetailsResponse.model_validate(result, from_attributes=True)


@router.put("/queue/{subscription_id}/approve", response_model=SubscriptionActionResponse)
def approve_subscription(
    subscription_id: str,
    payload: ApproveRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """
    Approve a PENDING subscription (Admin only)

    - **comments**: Review notes
    - **activate_now**: Activate immediately instead of leaving it APPROVED
    """
    result = SubscriptionService(db).approve(
        subscription_id, admin_user.id, comments=payload.comments, activate_now=payload.activate_now
    )
    message = "Subscription approved and activated" if payload.activate_now else "Subscription approved"
    return SubscriptionActionResponse.from_result(result, message)


@router.put("/queue/{subscription_id}/reject", response_model=SubscriptionActionResponse)
def reject_subscription(
    subscription_id: str,
    payload: RejectRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Reject a PENDING subscription with a reason (Admin only)"""
    result = SubscriptionService(db).reject(
        subscription_id, admin_user.id, reason=payload.reason, comments=payload.comments
    )
    return SubscriptionActionResponse.from_result(result, "Subscription rejected")


@router.put("/queue/{subscription_id}/review", response_model=SubscriptionActionResponse)
def mark_under_review(
    subscription_id: str,
    payload: ReviewRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Move a PENDING subscription to QUEUED, awaiting OTP activation by the user (Admin only)"""
    result = SubscriptionService(db).mark_under_review(subscription_id, admin_user.id, notes=payload.notes)
    return SubscriptionActionResponse.from_result(result, "Subscription moved under review")


@router.put("/queue/{subscription_id}/activate", response_model=SubscriptionActionResponse)
def activate_subscription(
    subscription_id: str,
    payload: ActivateRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Activate an APPROVED subscription (Admin only)"""
    result = SubscriptionService(db).activate(subscription_id, admin_user.id, comments=payload.comments)
    return SubscriptionActionResponse.from_result(result, "Subscription activated")


@router.put("/queue/{subscription_id}/position", response_model=QueuePositionResponse)
def update_queue_position(
    subscription_id: str,
    payload: QueuePositionRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """
    Move a subscription within its device queue (Admin only)

    Entries between the old and new position shift by one.
    """
    result = SubscriptionService(db).update_queue_position(subscription_id, payload.new_position, admin_user.id)
    return QueuePositionResponse(
        message="Queue position updated",
        subscription=SubscriptionResponse.model_validate(result["subscription"]),
        old_position=result["old_position"],
        new_position=result["new_position"]
    )


@router.put("/queue/{subscription_id}/priority", response_model=SubscriptionActionResponse)
def update_priority(
    subscription_id: str,
    payload: PriorityRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Set a queued subscription's priority and re-sort its device queue (Admin only)"""
    result = SubscriptionService(db).update_priority(subscription_id, admin_user.id, payload.priority)
    return SubscriptionActionResponse.from_result(result, "Priority updated")


@router.post("/queue/reorder/{imei}", response_model=ReorderResponse)
def reorder_queue(
    imei: str,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Renumber a device queue by priority, then age (Admin only)"""
    result = SubscriptionService(db).reorder_queue(imei)
    return ReorderResponse(**result)


@router.post("/queue/bulk", response_model=BulkUpdateResponse)
def bulk_update(
    payload: BulkUpdateRequest,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """
    Apply one action to many subscriptions (Admin only)

    - **action**: approve, reject, under_review or update_priority
    - **data**: Action parameters (reason for reject, priority for update_priority)

    Each subscription is processed independently; failures are reported
    per id without undoing the others.
    """
    result = AdminService(db).bulk_update(
        payload.subscription_ids, payload.action, payload.data, admin_user.id
    )
    return BulkUpdateResponse(
        message=f"Bulk {payload.action} completed: {result['successful']} succeeded, {result['failed']} failed",
        **result
    )


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(admin_user: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    result = AdminService(db).get_dashboard()
    return DashboardResponse.model_validate(result, from_attributes=True)


@router.get("/transactions/audit", response_model=AuditResponse)
def audit_transactions(admin_user: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    """Check the ledger for orphans, duplicates, bad amounts and broken chains (Admin only)"""
    return AuditResponse(**LedgerService(db).audit_integrity())


@router.post("/transactions/reconcile", response_model=ReconcileResponse)
def reconcile_transactions(admin_user: User = Depends(get_admin_user), db: Session = Depends(get_db)):
    """Create ledger entries for subscriptions that have none (Admin only)"""
    return ReconcileResponse(**LedgerService(db).reconcile_missing())


@router.get("/transactions/report", response_model=FinancialReportResponse)
def financial_report(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    return FinancialReportResponse(**LedgerService(db).financial_summary(start_date, end_date))


@router.get("/users/{user_id}/ltv", response_model=LifetimeValueResponse)
def user_lifetime_value(
    user_id: str,
    admin_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Completed revenue for one user (Admin only)"""
    result = LedgerService(db).user_lifetime_value(parse_uuid(user_id, "user id"))
    return LifetimeValueResponse(**result)
