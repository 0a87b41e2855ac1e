"""
Background job scheduler for webhook monitoring.
Uses APScheduler to report webhook events stuck in RECEIVED.
"""
import logging
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from database import session_scope
from db_models import WebhookEvent
from services.integrations.types import WebhookEventStatus
from settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

scheduler = AsyncIOScheduler()

# Cap on ids listed per warning
MAX_REPORTED_EVENTS = 20


def find_stalled_webhook_events(db, stall_minutes: int):
    """Events written ahead of processing that never reached a terminal status."""
    cutoff = datetime.utcnow() - timedelta(minutes=stall_minutes)
    return db.query(WebhookEvent).filter(
        WebhookEvent.status == WebhookEventStatus.RECEIVED.value,
        WebhookEvent.received_at < cutoff
    ).order_by(WebhookEvent.received_at).all()


async def report_stalled_webhook_events():
    """Periodic job; only logs, never changes event status."""
    try:
        with session_scope() as db:
            stalled = find_stalled_webhook_events(db, settings.WEBHOOK_STALL_MINUTES)
            if not stalled:
                logger.debug("No stalled webhook events")
                return

            listed = ", ".join(f"{e.provider}:{e.event_id}" for e in stalled[:MAX_REPORTED_EVENTS])
            logger.warning(
                f"{len(stalled)} webhook event(s) still RECEIVED after "
                f"{settings.WEBHOOK_STALL_MINUTES} minutes: {listed}"
            )
    except Exception as e:
        logger.error(f"Stalled webhook check failed: {e}")


def start_scheduler():
    """Start the background scheduler."""
    if not settings.WEBHOOK_MONITOR_ENABLED:
        logger.info("Webhook monitor is disabled (WEBHOOK_MONITOR_ENABLED=false)")
        return

    scheduler.add_job(
        report_stalled_webhook_events,
        trigger=IntervalTrigger(minutes=settings.WEBHOOK_STALL_MINUTES),
        id="stalled_webhook_monitor",
        name="Stalled Webhook Monitor",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - stalled webhook check every {settings.WEBHOOK_STALL_MINUTES} minutes")


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown complete")
