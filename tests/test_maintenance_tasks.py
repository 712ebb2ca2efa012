"""
Tests for the periodic maintenance task.
"""

from datetime import timedelta

from fansite.core import database
from fansite.core.celery_app import celery_app
from fansite.core.double_optin import generate_confirmation_token
from fansite.models.pending_subscription import PendingSubscription
from fansite.tasks.maintenance_tasks import cleanup_expired_pending_subscriptions_task


def add_pending(db_session, email, age_hours):
    db_session.add(PendingSubscription(
        token=generate_confirmation_token(),
        email=email,
        source="web",
        tags=[],
        extra_metadata={},
        created_at=database.utcnow() - timedelta(hours=age_hours),
    ))
    db_session.commit()


class TestCleanupTask:
    """Test cleanup of expired pending confirmations"""

    def test_removes_only_expired(self, db_session, monkeypatch):
        add_pending(db_session, "fresh@example.com", age_hours=1)
        add_pending(db_session, "stale@example.com", age_hours=30)
        monkeypatch.setattr(database, "SessionLocal", lambda: db_session)

        result = cleanup_expired_pending_subscriptions_task()

        assert result == {"status": "success", "deleted_count": 1}
        remaining = db_session.query(PendingSubscription).all()
        assert [p.email for p in remaining] == ["fresh@example.com"]

    def test_scheduled_hourly(self):
        schedule = celery_app.conf.beat_schedule["cleanup-expired-pending-subscriptions"]
        assert schedule["task"] == "cleanup_expired_pending_subscriptions"
