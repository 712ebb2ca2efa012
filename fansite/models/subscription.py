"""
Newsletter subscription model.

One row per email address. Rows are never hard-deleted: unsubscribing is a
status transition, and resubscribing reactivates the same row. The unique
index on email is the final guard against concurrent duplicate signups.
"""

import enum
import secrets
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Enum, JSON, Index
from sqlalchemy.dialects.postgresql import UUID
from fansite.core.database import Base, utcnow


class SubscriptionStatus(str, enum.Enum):
    """
    Subscription lifecycle states.

    - PENDING: Signed up, not yet confirmed
    - ACTIVE: Confirmed and receiving the newsletter
    - UNSUBSCRIBED: Opted out (row kept for history and reactivation)
    """
    PENDING = "pending"
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"


def generate_unsubscribe_token() -> str:
    """64 lowercase hex characters"""
    return secrets.token_hex(32)


class Subscription(Base):
    __tablename__ = "newsletter_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Always stored trimmed and lowercased
    email = Column(String(254), nullable=False, unique=True, index=True)

    status = Column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=SubscriptionStatus.PENDING,
    )

    source = Column(String(50), nullable=False, default="web")
    tags = Column(JSON, nullable=False, default=list)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    subscribed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    unsubscribed_at = Column(DateTime(timezone=True), nullable=True)

    unsubscribe_token = Column(String(64), nullable=False, unique=True, index=True, default=generate_unsubscribe_token)
    verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_newsletter_subscriptions_status', 'status'),
        Index('ix_newsletter_subscriptions_subscribed_at', 'subscribed_at'),
        Index('ix_newsletter_subscriptions_source', 'source'),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def __repr__(self):
        return f"<Subscription(id={self.id}, status={self.status}, source={self.source})>"
