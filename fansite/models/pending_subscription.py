"""
Pending double opt-in confirmations.

Each row holds a single-use 32-character hex token waiting for the
subscriber to click the confirmation link. Expiry is implicit
(created_at + TTL) and is checked when the token is looked up.
"""

import uuid
from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.dialects.postgresql import UUID
from fansite.core.database import Base, utcnow


class PendingSubscription(Base):
    __tablename__ = "pending_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    token = Column(String(32), nullable=False, unique=True, index=True)

    # At most one outstanding token per address
    email = Column(String(254), nullable=False, unique=True, index=True)

    source = Column(String(50), nullable=False, default="web")
    tags = Column(JSON, nullable=False, default=list)
    extra_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('ix_pending_subscriptions_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<PendingSubscription(token={self.token[:8]}..., created_at={self.created_at})>"
