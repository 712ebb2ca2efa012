"""
Newsletter statistics for the authenticated stats endpoint.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fansite.core.config import settings
from fansite.core.database import ensure_utc, isoformat_utc, utcnow
from fansite.core.pending_store import PendingStoreBackend, PendingStoreError
from fansite.core.result import Err, Ok, Result
from fansite.crud import subscription as crud_subscription
from fansite.schemas.newsletter import StatsQuery

logger = logging.getLogger(__name__)

MAX_DATE_RANGE_DAYS = 365


def resolve_date_range(params: StatsQuery, now: Optional[datetime] = None) -> Result:
    """
    Work out the reporting window.

    Explicit start/end dates win over the period; otherwise the window ends
    now and starts one period earlier ("day" covers the current UTC day).

    Returns:
        Result: Ok((start, end)) or Err("validation_date_range")
    """
    now = now or utcnow()

    if params.start_date or params.end_date:
        start = ensure_utc(params.start_date) if params.start_date else now - timedelta(days=30)
        end = ensure_utc(params.end_date) if params.end_date else now
        if start > end:
            return Err("validation_date_range", "start_date must be before end_date", 400)
        if (end - start).days > MAX_DATE_RANGE_DAYS:
            return Err("validation_date_range", f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days", 400)
        return Ok((start, end))

    if params.period == "day":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
    elif params.period == "week":
        start, end = now - timedelta(days=7), now
    elif params.period == "year":
        start, end = now - timedelta(days=365), now
    else:
        start, end = now - timedelta(days=30), now
    return Ok((start, end))


def _period_key(moment: datetime, group_by: str) -> str:
    moment = ensure_utc(moment)
    if group_by == "week":
        # Weeks start on Sunday
        week_start = moment - timedelta(days=(moment.weekday() + 1) % 7)
        return week_start.date().isoformat()
    if group_by == "month":
        return f"{moment.year}-{moment.month:02d}"
    return moment.date().isoformat()


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def compute_stats(
    db: Session,
    store: PendingStoreBackend,
    params: StatsQuery,
    now: Optional[datetime] = None,
) -> Result:
    """
    Build the stats payload.

    Args:
        db: Database session
        store: Pending store (for the pending-confirmation count)
        params: Parsed query parameters
        now: Current time, for tests

    Returns:
        Result: Ok(stats dict) or Err
    """
    now = now or utcnow()
    window = resolve_date_range(params, now)
    if not window.ok:
        return window
    start, end = window.value

    try:
        subscriptions = crud_subscription.list_subscribed_between(db, start, end, source=params.source)
        if params.tag:
            subscriptions = [s for s in subscriptions if params.tag in (s.tags or [])]

        status_counts = crud_subscription.count_by_status(db)
        total_rows = sum(status_counts.values())
        active = status_counts.get("active", 0)

        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        data: Dict[str, Any] = {
            "total": active,
            "today": crud_subscription.count_subscribed_since(db, today_start),
            "thisWeek": crud_subscription.count_subscribed_since(db, now - timedelta(days=7)),
            "thisMonth": crud_subscription.count_subscribed_since(db, now - timedelta(days=30)),
        }

        source_counts = Counter(s.source or "unknown" for s in subscriptions)
        data["topSources"] = [
            {"source": source, "count": count}
            for source, count in source_counts.most_common(params.limit)
        ]

        unsubscriptions = None
        if params.include_summary or params.include_period_data:
            unsubscriptions = crud_subscription.list_unsubscriptions_between(db, start, end)

        if params.include_summary:
            try:
                pending = store.count_live(settings.PENDING_TOKEN_TTL_HOURS)
            except PendingStoreError as e:
                logger.warning(f"Could not count pending confirmations: {e}")
                pending = 0
            data["summary"] = {
                "totalSubscriptions": total_rows,
                "activeSubscriptions": active,
                "unsubscribed": status_counts.get("unsubscribed", 0),
                "pendingConfirmation": pending + status_counts.get("pending", 0),
                "growthRate": _percentage(len(subscriptions), total_rows),
                "churnRate": _percentage(len(unsubscriptions), total_rows),
            }

        group_by = params.group_by or "day"
        if params.include_period_data and group_by in ("day", "week", "month"):
            grouped: Dict[str, Dict[str, int]] = defaultdict(lambda: {"subscriptions": 0, "unsubscriptions": 0})
            for sub in subscriptions:
                grouped[_period_key(sub.subscribed_at, group_by)]["subscriptions"] += 1
            for log in unsubscriptions:
                grouped[_period_key(log.unsubscribed_at, group_by)]["unsubscriptions"] += 1
            data["periodData"] = [
                {
                    "period": period,
                    "subscriptions": counts["subscriptions"],
                    "unsubscriptions": counts["unsubscriptions"],
                    "netGrowth": counts["subscriptions"] - counts["unsubscriptions"],
                }
                for period, counts in sorted(grouped.items())
            ][:params.limit]

        if params.include_tags:
            tag_counts = Counter(tag for s in subscriptions for tag in (s.tags or []))
            data["tags"] = [
                {"tag": tag, "count": count, "percentage": _percentage(count, len(subscriptions))}
                for tag, count in tag_counts.most_common(params.limit)
            ]

    except SQLAlchemyError as e:
        logger.error(f"Failed to compute newsletter stats: {e}")
        return Err("database_unavailable", "Statistics are temporarily unavailable", 500)

    data["meta"] = {
        "period": params.period,
        "startDate": isoformat_utc(start),
        "endDate": isoformat_utc(end),
        "totalRecords": len(subscriptions),
        "cacheExpiresAt": isoformat_utc(now + timedelta(seconds=settings.stats_cache_ttl)),
    }
    return Ok(data)


def stats_cache_key(params: StatsQuery, auth_method: str) -> Tuple:
    """Cache key covering every query parameter plus the auth method"""
    return ("stats", auth_method) + tuple(sorted(params.model_dump(mode="json").items()))
