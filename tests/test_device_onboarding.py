"""TOTP device onboarding and OTP-gated activation"""
import time

import pyotp
import pytest

from app.core.exceptions import DeviceOwnershipConflictError, ForbiddenError, InvalidStateError, ValidationError
from app.models.device import Device
from app.models.subscription import SubscriptionStatus
from app.models.transaction import TransactionType
from app.services.device_service import DeviceService

from conftest import IMEI_A, IMEI_B


def mid_step_time():
    """Current time, waiting out the last seconds of a 30s TOTP step"""
    if 30 - time.time() % 30 < 3:
        time.sleep(3)
    return int(time.time())


def test_setup_issues_secret_uri_and_qr(db, make_user):
    user = make_user("carol")

    result = DeviceService(db).setup_device_otp(user, IMEI_A, "Carol's phone")

    assert result["imei"] == IMEI_A
    assert result["device_name"] == "Carol's phone"
    assert result["provisioning_uri"].startswith("otpauth://totp/")
    assert "issuer=" in result["provisioning_uri"]
    assert result["qr_code"].startswith("data:image/svg+xml;base64,")
    device = db.query(Device).filter(Device.imei == IMEI_A).one()
    assert device.totp_secret == result["secret"]
    assert device.onboarded is False


def test_setup_again_rotates_secret(db, make_user):
    user = make_user()
    devices = DeviceService(db)

    first = devices.setup_device_otp(user, IMEI_A)["secret"]
    second = devices.setup_device_otp(user, IMEI_A)["secret"]

    assert first != second


def test_setup_for_foreign_device_is_refused(db, make_user):
    devices = DeviceService(db)
    devices.setup_device_otp(make_user(), IMEI_A)

    with pytest.raises(DeviceOwnershipConflictError):
        devices.setup_device_otp(make_user(), IMEI_A)


def test_check_onboarded_for_unknown_device(db, make_user):
    assert DeviceService(db).check_onboarded(make_user(), IMEI_B) == {
        "exists": False, "onboarded": False, "device_name": None
    }


def test_otp_window_tolerates_clock_drift(db, make_user):
    user = make_user()
    secret = DeviceService(db).setup_device_otp(user, IMEI_A)["secret"]
    device = db.query(Device).filter(Device.imei == IMEI_A).one()
    totp = pyotp.TOTP(secret)
    now = mid_step_time()

    assert DeviceService.verify_otp(device, totp.now())
    for drift in (-60, -30, 30, 60):
        assert DeviceService.verify_otp(device, totp.at(now + drift)), drift
    for drift in (-300, -90, 90):
        assert not DeviceService.verify_otp(device, totp.at(now + drift)), drift
    assert not DeviceService.verify_otp(device, "abcdef")
    assert not DeviceService.verify_otp(device, "")


@pytest.fixture
def queued(db, service, make_user, admin, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A)
    service.mark_under_review(subscription.id, admin.id)
    secret = DeviceService(db).setup_device_otp(user, IMEI_A)["secret"]
    return user, subscription, pyotp.TOTP(secret)


def test_otp_activation(db, service, queued, notifier):
    user, subscription, totp = queued

    result = service.activate_via_otp(user, subscription.id, IMEI_A, totp.now())

    sub = result["subscription"]
    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.queue_position is None
    assert result["duration"] == 30
    assert result["transaction"].type == TransactionType.ACTIVATED
    assert result["transaction"].metadata_["activation"]["method"] == "otp"
    assert db.query(Device).filter(Device.imei == IMEI_A).one().onboarded is True
    assert DeviceService(db).check_onboarded(user, IMEI_A)["onboarded"] is True
    assert notifier.kinds()[-1] == "approved"


def test_otp_code_activates_only_once(db, service, queued):
    user, subscription, totp = queued
    code = totp.now()
    service.activate_via_otp(user, subscription.id, IMEI_A, code)
    chain_before = [t.id for t in service.ledger.get_chain(subscription.id)]

    with pytest.raises(InvalidStateError):
        service.activate_via_otp(user, subscription.id, IMEI_A, code)

    db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert [t.id for t in service.ledger.get_chain(subscription.id)] == chain_before


def test_wrong_code_keeps_subscription_queued(db, service, queued):
    user, subscription, totp = queued

    with pytest.raises(ValidationError, match="Invalid or expired OTP code"):
        service.activate_via_otp(user, subscription.id, IMEI_A, totp.at(int(time.time()) - 600))

    db.refresh(subscription)
    assert subscription.status == SubscriptionStatus.QUEUED


def test_imei_must_match_subscription(service, queued):
    user, subscription, totp = queued

    with pytest.raises(ValidationError):
        service.activate_via_otp(user, subscription.id, IMEI_B, totp.now())


def test_only_owner_can_activate(service, make_user, queued):
    _, subscription, totp = queued

    with pytest.raises(ForbiddenError):
        service.activate_via_otp(make_user(), subscription.id, IMEI_A, totp.now())


def test_pending_subscription_cannot_use_otp(db, service, make_user, create_sub):
    user = make_user()
    subscription = create_sub(user, IMEI_A)
    secret = DeviceService(db).setup_device_otp(user, IMEI_A)["secret"]

    with pytest.raises(InvalidStateError):
        service.activate_via_otp(user, subscription.id, IMEI_A, pyotp.TOTP(secret).now())


def test_search_is_scoped_to_caller(db, make_user, admin):
    alice, bob = make_user(), make_user()
    devices = DeviceService(db)
    devices.setup_device_otp(alice, IMEI_A, "Alice field unit")
    devices.setup_device_otp(bob, IMEI_B, "Bob field unit")

    assert [d.imei for d in devices.search_devices(alice, "field")] == [IMEI_A]
    assert {d.imei for d in devices.search_devices(admin, "FIELD")} == {IMEI_A, IMEI_B}
    assert [d.imei for d in devices.search_devices(bob, "3569")] == [IMEI_B]

    with pytest.raises(ValidationError):
        devices.search_devices(alice, "  ")
