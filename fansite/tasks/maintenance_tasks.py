"""
Celery tasks for periodic newsletter maintenance.
"""

import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(name="cleanup_expired_pending_subscriptions")
def cleanup_expired_pending_subscriptions_task():
    """
    Periodic task to remove expired double opt-in confirmations.

    Confirmation lookups already ignore expired tokens; this keeps the
    pending store from growing. Scheduled hourly in celery_app.beat_schedule.
    """
    from fansite.core.database import SessionLocal
    from fansite.core.double_optin import cleanup_expired_pending
    from fansite.core.pending_store import get_pending_store_backend

    db = SessionLocal()
    try:
        deleted_count = cleanup_expired_pending(get_pending_store_backend(db))
        logger.info(f"Cleaned up {deleted_count} expired pending subscriptions")
        return {"status": "success", "deleted_count": deleted_count}
    except Exception as e:
        logger.error(f"Error cleaning up pending subscriptions: {str(e)}")
        raise
    finally:
        db.close()
