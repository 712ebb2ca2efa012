"""
CRUD operations for newsletter subscriptions and unsubscription logs.

Functions that build or modify rows only flush; callers own the commit so a
subscription write and its pending-token removal land in one transaction.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Session

from fansite.core.database import ensure_utc, utcnow
from fansite.models.subscription import Subscription, SubscriptionStatus, generate_unsubscribe_token
from fansite.models.unsubscription_log import UnsubscriptionLog


def get_by_email(db: Session, email: str) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.email == email).first()


def get_by_unsubscribe_token(db: Session, token: str) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.unsubscribe_token == token).first()


def count_active(db: Session) -> int:
    return db.query(func.count(Subscription.id)).filter(
        Subscription.status == SubscriptionStatus.ACTIVE
    ).scalar() or 0


def count_by_status(db: Session) -> Dict[str, int]:
    rows = db.query(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status).all()
    counts = {status.value: 0 for status in SubscriptionStatus}
    for status, count in rows:
        key = status.value if isinstance(status, SubscriptionStatus) else str(status)
        counts[key] = count
    return counts


def build_subscription(
    email: str,
    source: str = "web",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    verified: bool = False,
) -> Subscription:
    """
    Build an unsaved Subscription with its id and unsubscribe token assigned.

    Args:
        email: Sanitized email address
        source: Signup source (e.g. "web", "footer")
        tags: Optional list of tags
        metadata: Optional free-form metadata
        status: Initial status
        verified: Whether the address has been confirmed

    Returns:
        Subscription: Transient instance (not added to the session)
    """
    now = utcnow()
    return Subscription(
        id=uuid.uuid4(),
        email=email,
        status=status,
        source=source or "web",
        tags=list(tags or []),
        extra_metadata=dict(metadata or {}),
        subscribed_at=now,
        confirmed_at=now if verified else None,
        unsubscribe_token=generate_unsubscribe_token(),
        verified=verified,
        created_at=now,
        updated_at=now,
    )


def reactivate(
    subscription: Subscription,
    source: Optional[str] = None,
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    verified: bool = False,
) -> Subscription:
    """
    Return an unsubscribed or pending row to active.

    Tags are merged, metadata is merged with the new values winning, and
    the unsubscribe token is rotated so links from the previous
    subscription stop working.
    """
    now = utcnow()
    merged_tags = list(subscription.tags or [])
    for tag in tags or []:
        if tag not in merged_tags:
            merged_tags.append(tag)

    merged_metadata = dict(subscription.extra_metadata or {})
    merged_metadata.update(metadata or {})
    merged_metadata["reactivated_at"] = now.isoformat()

    subscription.status = SubscriptionStatus.ACTIVE
    subscription.source = source or subscription.source
    subscription.tags = merged_tags
    subscription.extra_metadata = merged_metadata
    subscription.subscribed_at = now
    subscription.unsubscribed_at = None
    subscription.unsubscribe_token = generate_unsubscribe_token()
    if verified:
        subscription.verified = True
        subscription.confirmed_at = now
    subscription.updated_at = now
    return subscription


def activate_confirmed(
    db: Session,
    email: str,
    source: str = "web",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[Subscription, bool]:
    """
    Upsert an active, verified subscription after double opt-in confirmation.

    Args:
        db: Database session
        email: Sanitized email address
        source: Signup source recorded on the pending token
        tags: Tags recorded on the pending token
        metadata: Metadata recorded on the pending token

    Returns:
        Tuple[Subscription, bool]: (subscription, already_active)
    """
    existing = get_by_email(db, email)
    if existing is not None and existing.status == SubscriptionStatus.ACTIVE:
        if not existing.verified:
            existing.verified = True
            existing.confirmed_at = utcnow()
            db.flush()
        return existing, True

    if existing is not None:
        reactivate(existing, source=source, tags=tags, metadata=metadata, verified=True)
        db.flush()
        return existing, False

    subscription = build_subscription(
        email,
        source=source,
        tags=tags,
        metadata=metadata,
        status=SubscriptionStatus.ACTIVE,
        verified=True,
    )
    db.add(subscription)
    db.flush()
    return subscription, False


def mark_unsubscribed(
    subscription: Subscription,
    reason: Optional[str] = None,
    feedback: Optional[str] = None,
    method: str = "token",
) -> Subscription:
    now = utcnow()
    metadata = dict(subscription.extra_metadata or {})
    metadata.update({
        "unsubscribed_at": now.isoformat(),
        "unsubscribe_reason": reason,
        "unsubscribe_feedback": feedback,
        "unsubscribe_method": method,
    })
    subscription.status = SubscriptionStatus.UNSUBSCRIBED
    subscription.unsubscribed_at = now
    subscription.extra_metadata = metadata
    subscription.updated_at = now
    return subscription


def create_unsubscription_log(
    db: Session,
    subscription: Subscription,
    reason: Optional[str],
    feedback: Optional[str],
    ip_address: Optional[str],
    user_agent: Optional[str],
    method: str = "token",
) -> UnsubscriptionLog:
    """Add an unsubscription log row (caller commits)"""
    subscribed_at = ensure_utc(subscription.subscribed_at)
    unsubscribed_at = ensure_utc(subscription.unsubscribed_at) or utcnow()
    duration_days = (unsubscribed_at - subscribed_at).days if subscribed_at else None

    log = UnsubscriptionLog(
        id=uuid.uuid4(),
        subscription_id=subscription.id,
        email=subscription.email,
        reason=reason,
        feedback=feedback,
        user_agent=(user_agent or "")[:500] or None,
        ip_address=ip_address,
        unsubscribed_at=unsubscribed_at,
        extra_metadata={
            "original_source": subscription.source,
            "original_tags": list(subscription.tags or []),
            "feedback": feedback,
            "method": method,
            "subscription_duration_days": duration_days,
        },
    )
    db.add(log)
    return log


def list_subscribed_between(
    db: Session,
    start: datetime,
    end: datetime,
    source: Optional[str] = None,
) -> List[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.subscribed_at >= start,
        Subscription.subscribed_at <= end,
    )
    if source:
        query = query.filter(Subscription.source == source)
    return query.order_by(Subscription.subscribed_at.desc()).all()


def count_subscribed_since(db: Session, since: datetime) -> int:
    return db.query(func.count(Subscription.id)).filter(Subscription.subscribed_at >= since).scalar() or 0


def list_unsubscriptions_between(db: Session, start: datetime, end: datetime) -> List[UnsubscriptionLog]:
    return db.query(UnsubscriptionLog).filter(
        UnsubscriptionLog.unsubscribed_at >= start,
        UnsubscriptionLog.unsubscribed_at <= end,
    ).all()
