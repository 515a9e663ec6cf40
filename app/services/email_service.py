"""
Email notification service

Sends transactional emails for:
- Email verification and welcome
- Subscription queued / approved / rejected
- Device activation instructions

Delivers over SMTP, falling back to log-only mode when SMTP_HOST is not set.
Notifications are best effort: they run after the store transaction commits
and a delivery failure is reported back as a warning, never as an error.
"""
from dataclasses import dataclass
from email.message import EmailMessage
from enum import Enum
from typing import Callable, Optional
import logging
import smtplib

from app.config import settings

logger = logging.getLogger(__name__)


class EmailType(str, Enum):
    """Types of emails"""
    VERIFICATION = "verification"
    WELCOME = "welcome"
    SUBSCRIPTION_QUEUED = "subscription_queued"
    SUBSCRIPTION_APPROVED = "subscription_approved"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_REJECTED = "subscription_rejected"
    ACTIVATION_INSTRUCTIONS = "activation_instructions"


@dataclass
class Email:
    """Complete email data"""
    to: str
    subject: str
    body: str
    email_type: Optional[EmailType] = None


class EmailTemplates:
    """Plain-text email templates"""

    SIGNATURE = "\n\nBest regards,\nThe {name} Team"

    @classmethod
    def _wrap(cls, body: str) -> str:
        return body.strip() + cls.SIGNATURE.format(name=settings.SMTP_FROM_NAME)

    @classmethod
    def verification(cls, username: str, token: str) -> str:
        link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
        return cls._wrap(f"""
Hello {username},

Thanks for signing up. Please confirm your email address by opening the link below:

{link}

The link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.
""")

    @classmethod
    def welcome(cls, username: str) -> str:
        return cls._wrap(f"""
Hello {username},

Your email address is verified and your account is now active.
You can sign in at {settings.FRONTEND_URL}/login.
""")

    @classmethod
    def subscription_queued(cls, device_name: str, imei: str, plan: str, position: Optional[int]) -> str:
        return cls._wrap(f"""
Your subscription request has been received.

Device: {device_name} ({imei})
Plan: {plan}
Queue position: {position if position is not None else "-"}

An administrator will review it shortly.
""")

    @classmethod
    def subscription_approved(cls, device_name: str, plan: str, activated: bool) -> str:
        state = "is now active" if activated else "has been approved and will be activated shortly"
        return cls._wrap(f"""
Good news: your {plan} subscription for {device_name} {state}.
""")

    @classmethod
    def subscription_rejected(cls, device_name: str, plan: str, reason: str) -> str:
        return cls._wrap(f"""
Your {plan} subscription request for {device_name} was not approved.

Reason: {reason}
""")

    @classmethod
    def activation_instructions(cls, device_name: str, imei: str) -> str:
        return cls._wrap(f"""
Your subscription for {device_name} ({imei}) is ready for activation.

1. Sign in at {settings.FRONTEND_URL}/login
2. Open "Activate device" and scan the QR code with your authenticator app
3. Enter the 6-digit code to activate your subscription
""")


class EmailNotifier:
    """
    Email notification service.

    Uses SMTP when configured, console logging otherwise.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None
    ):
        self.host = settings.SMTP_HOST if host is None else host
        self.port = port or settings.SMTP_PORT
        self.username = settings.SMTP_USER if username is None else username
        self.password = settings.SMTP_PASSWORD if password is None else password
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.from_email = from_email or settings.SMTP_FROM_EMAIL
        self.from_name = from_name or settings.SMTP_FROM_NAME

        if not self.host:
            logger.warning("SMTP not configured, emails will be logged only")

    @property
    def is_configured(self) -> bool:
        return bool(self.host)

    def send(self, email: Email) -> None:
        """
        Send an email.

        Raises:
            smtplib.SMTPException, OSError: If SMTP delivery fails
        """
        if self.is_configured:
            self._send_smtp(email)
        else:
            self._send_console(email)

    def _send_smtp(self, email: Email) -> None:
        msg = EmailMessage()
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = email.to
        msg["Subject"] = email.subject
        msg.set_content(email.body)

        with smtplib.SMTP(self.host, self.port, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)

        logger.info(f"Email sent to {email.to}: {email.subject}")

    def _send_console(self, email: Email) -> None:
        """Log email to console (development mode)"""
        logger.info(f"[EMAIL] To: {email.to}")
        logger.info(f"[EMAIL] Subject: {email.subject}")
        logger.info(f"[EMAIL] Type: {email.email_type.value if email.email_type else 'N/A'}")
        logger.debug(f"[EMAIL] Content preview: {email.body[:200]}...")

    # =========================================================================
    # Convenience senders
    # =========================================================================

    def send_verification(self, to: str, username: str, token: str) -> None:
        self.send(Email(
            to=to,
            subject=f"Welcome to {self.from_name} - Verify Your Email Address",
            body=EmailTemplates.verification(username, token),
            email_type=EmailType.VERIFICATION
        ))

    def send_welcome(self, to: str, username: str) -> None:
        self.send(Email(
            to=to,
            subject=f"Welcome to {self.from_name} - Account Activated",
            body=EmailTemplates.welcome(username),
            email_type=EmailType.WELCOME
        ))

    def send_subscription_queued(self, subscription) -> None:
        self.send(Email(
            to=subscription.email,
            subject="Subscription request received",
            body=EmailTemplates.subscription_queued(
                subscription.device_name,
                subscription.imei,
                subscription.plan,
                subscription.queue_position
            ),
            email_type=EmailType.SUBSCRIPTION_QUEUED
        ))

    def send_subscription_approved(self, subscription, activated: bool) -> None:
        self.send(Email(
            to=subscription.email,
            subject="Subscription activated" if activated else "Subscription approved",
            body=EmailTemplates.subscription_approved(
                subscription.device_name, subscription.plan, activated
            ),
            email_type=EmailType.SUBSCRIPTION_ACTIVATED if activated else EmailType.SUBSCRIPTION_APPROVED
        ))

    def send_subscription_rejected(self, subscription, reason: str) -> None:
        self.send(Email(
            to=subscription.email,
            subject="Subscription request declined",
            body=EmailTemplates.subscription_rejected(
                subscription.device_name, subscription.plan, reason
            ),
            email_type=EmailType.SUBSCRIPTION_REJECTED
        ))

    def send_activation_instructions(self, subscription) -> None:
        self.send(Email(
            to=subscription.email,
            subject="Activate your device",
            body=EmailTemplates.activation_instructions(subscription.device_name, subscription.imei),
            email_type=EmailType.ACTIVATION_INSTRUCTIONS
        ))

    def close(self) -> None:
        """Release resources (SMTP connections are per message, nothing pooled)"""
        logger.info("Email notifier shut down")


def dispatch(send: Callable[..., None], *args, **kwargs) -> Optional[str]:
    """
    Run a notification after commit.

    Returns:
        None on success, otherwise a warning message for the response
    """
    try:
        send(*args, **kwargs)
        return None
    except Exception as e:
        logger.error(f"Notification failed ({getattr(send, '__name__', 'send')}): {e}")
        return "Operation completed but the notification email could not be sent"


# Process-wide instance, created at startup
_notifier: Optional[EmailNotifier] = None


def init_notifier() -> EmailNotifier:
    global _notifier
    if _notifier is None:
        _notifier = EmailNotifier()
        logger.info(f"Email notifier initialized ({'smtp' if _notifier.is_configured else 'log-only'})")
    return _notifier


def get_notifier() -> EmailNotifier:
    """Get the notifier, creating it on first use outside the app lifecycle"""
    return _notifier if _notifier is not None else init_notifier()


def shutdown_notifier() -> None:
    global _notifier
    if _notifier is not None:
        _notifier.close()
        _notifier = None
