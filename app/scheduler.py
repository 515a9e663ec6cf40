"""Background scheduler for periodic tasks"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()


def start_scheduler():
    """Start the background scheduler"""
    try:
        scheduler.start()
        logger.info("✅ Scheduler started successfully")
    except Exception as e:
        logger.error(f"❌ Failed to start scheduler: {e}")


def stop_scheduler():
    """Stop the background scheduler"""
    if not scheduler.running:
        return
    try:
        scheduler.shutdown()
        logger.info("✅ Scheduler stopped successfully")
    except Exception as e:
        logger.error(f"❌ Failed to stop scheduler: {e}")


def run_expiration_sweep() -> dict:
    """
    Expire ACTIVE subscriptions whose period has ended.

    Subscriptions cancelled for end-of-period become CANCELLED, the rest
    EXPIRED. Each one is committed on its own.
    """
    from app.database import SessionLocal
    from app.services.subscription_service import SubscriptionService

    db = SessionLocal()
    try:
        return SubscriptionService(db).expire_due_subscriptions()
    finally:
        db.close()


@scheduler.scheduled_job('cron', hour=0, minute=30)
async def check_subscription_expirations():
    """
    Check for expired subscriptions
    Runs daily at 12:30 AM
    """
    try:
        logger.info("🔍 Checking subscription expirations")
        result = run_expiration_sweep()
        logger.info(
            f"✅ Processed {result['processed']} subscriptions: "
            f"{result['expired']} expired, {result['cancelled']} cancelled, {len(result['failed'])} failed"
        )
    except Exception as e:
        logger.error(f"❌ Error checking subscription expirations: {e}")
