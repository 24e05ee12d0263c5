import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from reviewhub.utils.email_notification import deliver_review_notification
from reviewhub.utils.subscription import sync_all_subscriptions

logger = logging.getLogger(__name__)

_notification_lock = threading.Lock()


def start_scheduler(app: Flask):
    """
    Start background scheduler for:
    - One-off review notification jobs
    - Nightly subscription sync (03:00)
    """
    scheduler = BackgroundScheduler()

    def sync_subscriptions():
        with app.app_context():
            count = sync_all_subscriptions()
            logger.info('[Scheduler] Synced %d subscriptions', count)

    scheduler.add_job(
        func=sync_subscriptions,
        trigger="cron",
        hour=3,
        minute=0,
        id='sync_subscriptions'
    )

    scheduler.start()
    app.extensions['scheduler'] = scheduler
    logger.info('[Scheduler] Background tasks started')

    return scheduler


def _notification_scheduler(app: Flask):
    """Scheduler for notification jobs when the app did not start one."""
    with _notification_lock:
        scheduler = app.extensions.get('notification_scheduler')
        if scheduler is None or not scheduler.running:
            scheduler = BackgroundScheduler()
            scheduler.start()
            app.extensions['notification_scheduler'] = scheduler
            logger.info('[Scheduler] Notification scheduler started')
        return scheduler


def enqueue_review_notification(app: Flask, notification):
    """
    Hand the notification to a background job so the request never waits
    on the mail server.
    """
    scheduler = app.extensions.get('scheduler')
    if scheduler is None or not scheduler.running:
        scheduler = _notification_scheduler(app)
    scheduler.add_job(
        func=deliver_review_notification,
        args=[app, notification],
        misfire_grace_time=app.config.get('NOTIFICATION_GRACE_SECONDS', 300),
    )
