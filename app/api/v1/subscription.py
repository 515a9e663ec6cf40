"""Subscription API endpoints"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.services.device_service import DeviceService
from app.services.subscription_service import SubscriptionService
from app.schemas.transaction import TransactionListResponse, TransactionResponse
from app.schemas.subscription import (
    SubscriptionPlansResponse,
    SubscriptionPlan,
    SubscriptionResponse,
    SubscriptionListResponse,
    SubscriptionActionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    ChangePlanRequest,
    UpgradeResponse,
    DowngradeResponse,
    CancelSubscriptionRequest,
    DeviceCheckRequest,
    DeviceCheckResponse,
    DeviceSetupRequest,
    DeviceSetupResponse,
    ActivateSubscriptionRequest,
    ActivateSubscriptionResponse
)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/plans", response_model=SubscriptionPlansResponse)
def get_subscription_plans(db: Session = Depends(get_db)):
    """
    Get all available subscription plans

    No authentication required
    """
    plans = SubscriptionService(db).get_plans()
    return SubscriptionPlansResponse(plans=[SubscriptionPlan(**plan) for plan in plans])


@router.post("", response_model=CreateSubscriptionResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: CreateSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Request a subscription for a device

    - **device_name**: Display name of the device
    - **imei**: Device IMEI (a new IMEI registers the device to you)
    - **plan**: Catalog plan id
    - **phone_number**: Contact number (defaults to the account's)
    - **cards**: At least one uploaded encryption card

    The subscription joins the device's review queue as PENDING.
    """
    result = SubscriptionService(db).create_subscription(
        current_user,
        imei=payload.imei,
        device_name=payload.device_name,
        plan=payload.plan,
        phone=payload.phone_number,
        cards=[card.model_dump() for card in payload.cards]
    )
    return CreateSubscriptionResponse.from_result(
        result,
        "Subscription request submitted and queued for review",
        is_new_device=result["is_new_device"],
        queue_length=result["queue_length"]
    )


@router.get("", response_model=SubscriptionListResponse)
def list_subscriptions(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    subscriptions = SubscriptionService(db).list_user_subscriptions(current_user)
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.model_validate(s) for s in subscriptions],
        total=len(subscriptions)
    )


@router.post("/check-device", response_model=DeviceCheckResponse)
def check_device(
    payload: DeviceCheckRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Whether the device exists for this user and has completed OTP onboarding"""
    result = DeviceService(db).check_onboarded(current_user, payload.imei)
    return DeviceCheckResponse(**result)


@router.post("/setup", response_model=DeviceSetupResponse)
def setup_device(
    payload: DeviceSetupRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Issue a TOTP secret for a device

    Returns the secret, an otpauth:// provisioning URI and a QR code
    (SVG data URI) for authenticator apps. Calling it again rotates the
    secret and resets onboarding.
    """
    result = DeviceService(db).setup_device_otp(current_user, payload.imei, payload.device_name)
    return DeviceSetupResponse(**result)


@router.post("/activate", response_model=ActivateSubscriptionResponse)
def activate_subscription(
    payload: ActivateSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Activate a QUEUED subscription with the device's one-time password

    - **subscription_id**: Subscription to activate
    - **imei**: Device the subscription is for
    - **otp_code**: Current code from the authenticator app
    """
    result = SubscriptionService(db).activate_via_otp(
        current_user, payload.subscription_id, payload.imei, payload.otp_code
    )
    return ActivateSubscriptionResponse.from_result(
        result, "Subscription activated successfully", duration=result["duration"]
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    subscription = SubscriptionService(db).get_user_subscription(current_user, subscription_id)
    return SubscriptionResponse.model_validate(subscription)


@router.get("/{subscription_id}/transactions", response_model=TransactionListResponse)
def get_subscription_transactions(
    subscription_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Ledger chain of a subscription, oldest first"""
    transactions = SubscriptionService(db).get_subscription_transactions(current_user, subscription_id)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=len(transactions)
    )


@router.post("/{subscription_id}/upgrade", response_model=UpgradeResponse)
def upgrade_subscription(
    subscription_id: str,
    payload: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Upgrade an ACTIVE subscription to a more expensive plan

    Takes effect immediately; the period restarts and the price difference
    is charged.
    """
    result = SubscriptionService(db).upgrade(current_user, subscription_id, payload.new_plan)
    return UpgradeResponse.from_result(
        result,
        f"Subscription upgraded to {payload.new_plan}",
        prorated_amount=result["prorated_amount"]
    )


@router.post("/{subscription_id}/downgrade", response_model=DowngradeResponse)
def downgrade_subscription(
    subscription_id: str,
    payload: ChangePlanRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Schedule a downgrade to a cheaper plan

    The current plan stays in force until the end of the period; the new
    plan applies on renewal.
    """
    result = SubscriptionService(db).downgrade(current_user, subscription_id, payload.new_plan)
    return DowngradeResponse.from_result(
        result,
        f"Downgrade to {payload.new_plan} scheduled for the end of the current period",
        effective_date=result["effective_date"]
    )


@router.post("/{subscription_id}/cancel", response_model=SubscriptionActionResponse)
def cancel_subscription(
    subscription_id: str,
    payload: CancelSubscriptionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Cancel a subscription

    - **reason**: Optional cancellation reason
    - **immediate**: End now instead of at the end of the period
    """
    result = SubscriptionService(db).cancel(
        current_user, subscription_id, reason=payload.reason, immediate=payload.immediate
    )
    message = "Subscription cancelled" if payload.immediate else \
        "Subscription will be cancelled at the end of the current period"
    return SubscriptionActionResponse.from_result(result, message)


@router.post("/{subscription_id}/renew", response_model=SubscriptionActionResponse)
def renew_subscription(
    subscription_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Renew an EXPIRED subscription, applying any scheduled plan change"""
    result = SubscriptionService(db).renew(current_user, subscription_id)
    return SubscriptionActionResponse.from_result(result, "Subscription renewed successfully")
