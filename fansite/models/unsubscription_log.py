"""
Unsubscription audit log.

Insert-only record of every unsubscribe, with the reason and a snapshot of
the subscription at the time it ended.
"""

import enum
import uuid
from sqlalchemy import Column, String, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from fansite.core.database import Base, utcnow


class UnsubscribeReason(str, enum.Enum):
    TOO_FREQUENT = "too_frequent"
    NOT_RELEVANT = "not_relevant"
    NEVER_SIGNED_UP = "never_signed_up"
    PRIVACY_CONCERNS = "privacy_concerns"
    TECHNICAL_ISSUES = "technical_issues"
    CONTENT_QUALITY = "content_quality"
    OTHER = "other"


class UnsubscriptionLog(Base):
    __tablename__ = "unsubscription_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        UUID(as_uuid=True),
        ForeignKey("newsletter_subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    email = Column(String(254), nullable=False)
    reason = Column(String(32), nullable=True)
    feedback = Column(Text, nullable=True)

    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(64), nullable=True)

    unsubscribed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index('ix_unsubscription_logs_unsubscribed_at', 'unsubscribed_at'),
    )

    def __repr__(self):
        return f"<UnsubscriptionLog(subscription_id={self.subscription_id}, reason={self.reason})>"
