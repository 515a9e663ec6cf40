"""Admin review schemas"""
from pydantic import BaseModel, Field, field_serializer
from typing import List, Optional, Dict, Any
from datetime import datetime

from app.schemas.auth import UserResponse
from app.schemas.device import DeviceResponse
from app.schemas.subscription import SubscriptionResponse
from app.schemas.transaction import TransactionResponse
from app.utils.time_utils import to_utc_isoformat


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------

class ApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)
    activate_now: bool = False


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    comments: Optional[str] = Field(None, max_length=1000)


class ActivateRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class ReviewRequest(BaseModel):
    """Move a pending subscription under review (awaiting OTP activation)"""
    notes: Optional[str] = Field(None, max_length=1000)


class QueuePositionRequest(BaseModel):
    new_position: int = Field(..., ge=1)


class PriorityRequest(BaseModel):
    priority: int


class BulkUpdateRequest(BaseModel):
    """
    Bulk transition

    data keys per action:
        approve: comments, activate_now
        reject: reason (required), comments
        under_review: comments
        update_priority: priority (required)
    """
    subscription_ids: List[str] = Field(..., min_length=1)
    action: str = Field(..., pattern="^(approve|reject|under_review|update_priority)$")
    data: Dict[str, Any] = Field(default_factory=dict)


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------

class StatusStatistics(BaseModel):
    status: str
    count: int
    total_revenue: float
    avg_price: float


class ProcessingStatistics(BaseModel):
    status: str
    avg_processing_days: Optional[float] = None
    min_processing_days: Optional[float] = None
    max_processing_days: Optional[float] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next: bool
    has_prev: bool


class QueueListResponse(BaseModel):
    """Paginated review queue with statistics"""
    success: bool = True
    subscriptions: List[SubscriptionResponse]
    pagination: Pagination
    statistics: List[StatusStatistics]
    processing_statistics: List[ProcessingStatistics]


class SubscriptionDetailsResponse(BaseModel):
    success: bool = True
    subscription: SubscriptionResponse
    user: Optional[UserResponse] = None
    user_subscription_history: List[SubscriptionResponse]
    device: Optional[DeviceResponse] = None
    device_subscription_history: List[SubscriptionResponse]
    transactions: List[TransactionResponse]


class QueuePositionResponse(BaseModel):
    success: bool = True
    message: str
    subscription: SubscriptionResponse
    old_position: Optional[int] = None
    new_position: int


class ReorderResponse(BaseModel):
    success: bool = True
    imei: str
    queue_length: int


class BulkResult(BaseModel):
    id: str
    success: bool
    status: str
    reason: Optional[str] = None
    warning: Optional[str] = None


class BulkUpdateResponse(BaseModel):
    success: bool = True
    message: str
    results: List[BulkResult]
    processed: int
    successful: int
    failed: int


class PlanStatistics(BaseModel):
    plan: str
    count: int
    total_revenue: float
    avg_price: float


class TransactionStatistics(BaseModel):
    status: str
    count: int
    total_amount: float


class MonthlyRevenue(BaseModel):
    year: int
    month: int
    revenue: float
    count: int


class QueueAnalysis(BaseModel):
    total_pending: int
    oldest_pending: Optional[datetime] = None
    avg_queue_position: float
    total_pending_value: float

    @field_serializer('oldest_pending')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)


class DashboardResponse(BaseModel):
    """Admin dashboard statistics"""
    success: bool = True
    subscription_statistics: List[StatusStatistics]
    plan_distribution: List[PlanStatistics]
    recent_subscriptions: List[SubscriptionResponse]
    transaction_statistics: List[TransactionStatistics]
    recent_transactions: List[TransactionResponse]
    monthly_revenue: List[MonthlyRevenue]
    queue_analysis: QueueAnalysis
    avg_processing_days: Optional[float] = None
    last_updated: datetime

    @field_serializer('last_updated')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)


class AuditIssue(BaseModel):
    type: str
    count: int
    transactions: List[str]


class AuditResponse(BaseModel):
    success: bool = True
    audit_date: datetime
    total_issues: int
    issues: List[AuditIssue]
    healthy: bool

    @field_serializer('audit_date')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)


class ReconcileFailure(BaseModel):
    id: str
    reason: str


class ReconcileResponse(BaseModel):
    success: bool = True
    processed: int
    reconciled: List[str]
    failed: List[ReconcileFailure]


class PlanRevenue(BaseModel):
    count: int
    revenue: float


class LifetimeValueResponse(BaseModel):
    success: bool = True
    user_id: str
    total_revenue: float
    total_transactions: int
    avg_transaction_value: float
    first_transaction: Optional[datetime] = None
    last_transaction: Optional[datetime] = None
    plan_breakdown: Dict[str, PlanRevenue]

    @field_serializer('first_transaction', 'last_transaction')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)


class StatusTotal(BaseModel):
    status: str
    count: int
    total_amount: float


class PlanTotal(BaseModel):
    plan: str
    count: int
    revenue: float


class TypeTotal(BaseModel):
    type: str
    count: int
    total_amount: float


class ReportPeriod(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class FinancialReportResponse(BaseModel):
    success: bool = True
    period: ReportPeriod
    by_status: List[StatusTotal]
    by_plan: List[PlanTotal]
    by_type: List[TypeTotal]
    generated_at: datetime

    @field_serializer('generated_at')
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        return to_utc_isoformat(value)
