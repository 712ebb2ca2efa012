"""
Tests for the authenticated newsletter stats endpoint.
"""

from datetime import timedelta

from fastapi import status

from fansite.core.database import utcnow
from fansite.crud.subscription import build_subscription
from fansite.schemas.newsletter import StatsQuery
from fansite.services.stats_service import resolve_date_range

STATS_URL = "/api/newsletter/stats"


def add_subscriptions(db_session):
    db_session.add_all([
        build_subscription("a@example.com", source="homepage", tags=["release", "news"]),
        build_subscription("b@example.com", source="homepage", tags=["release"]),
        build_subscription("c@example.com", source="footer"),
    ])
    db_session.commit()


class TestStatsAuth:
    """Test stats authentication"""

    def test_requires_credentials(self, client):
        response = client.get(STATS_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "security_unauthorized"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_wrong_key(self, client):
        response = client.get(STATS_URL, headers={"Authorization": "Bearer wrong-key"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_bearer_token(self, client, stats_headers):
        response = client.get(STATS_URL, headers=stats_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["success"] is True

    def test_api_key_header(self, client):
        response = client.get(STATS_URL, headers={"X-API-Key": "test-stats-key"})

        assert response.status_code == status.HTTP_200_OK

    def test_method_not_allowed(self, client, stats_headers):
        response = client.post(STATS_URL, headers=stats_headers)

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET"


class TestStats:
    """Test stats payload"""

    def test_basic_counts(self, client, db_session, stats_headers):
        add_subscriptions(db_session)

        response = client.get(STATS_URL, headers=stats_headers)

        data = response.json()["data"]
        assert data["total"] == 3
        assert data["today"] == 3
        assert data["thisWeek"] == 3
        assert data["thisMonth"] == 3
        assert data["topSources"][0] == {"source": "homepage", "count": 2}
        assert data["meta"]["period"] == "month"
        assert data["meta"]["totalRecords"] == 3

    def test_summary_includes_pending(self, client, db_session, stats_headers, active_subscription):
        client.post("/api/subscribe", json={"email": "waiting@example.com"})

        summary = client.get(STATS_URL, headers=stats_headers).json()["data"]["summary"]

        assert summary["activeSubscriptions"] == 1
        assert summary["pendingConfirmation"] == 1
        assert summary["unsubscribed"] == 0

    def test_tags_and_filters(self, client, db_session, stats_headers):
        add_subscriptions(db_session)

        response = client.get(STATS_URL, headers=stats_headers, params={
            "include_tags": "true",
            "source": "homepage",
        })

        data = response.json()["data"]
        assert data["meta"]["totalRecords"] == 2
        assert data["tags"][0] == {"tag": "release", "count": 2, "percentage": 100.0}

    def test_period_data(self, client, db_session, stats_headers):
        add_subscriptions(db_session)

        response = client.get(STATS_URL, headers=stats_headers, params={
            "include_period_data": "true",
            "group_by": "day",
        })

        period_data = response.json()["data"]["periodData"]
        assert len(period_data) == 1
        assert period_data[0]["subscriptions"] == 3
        assert period_data[0]["netGrowth"] == 3

    def test_invalid_period(self, client, stats_headers):
        response = client.get(STATS_URL, headers=stats_headers, params={"period": "decade"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_query_params"

    def test_invalid_limit(self, client, stats_headers):
        response = client.get(STATS_URL, headers=stats_headers, params={"limit": "0"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_query_params"

    def test_start_after_end(self, client, stats_headers):
        response = client.get(STATS_URL, headers=stats_headers, params={
            "start_date": "2025-06-01T00:00:00Z",
            "end_date": "2025-01-01T00:00:00Z",
        })

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_date_range"

    def test_range_too_long(self, client, stats_headers):
        response = client.get(STATS_URL, headers=stats_headers, params={
            "start_date": "2023-01-01T00:00:00Z",
            "end_date": "2025-01-01T00:00:00Z",
        })

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_date_range"

    def test_second_request_is_cached(self, client, db_session, stats_headers):
        first = client.get(STATS_URL, headers=stats_headers)
        assert first.headers["X-Cache"] == "MISS"
        assert first.headers["Cache-Control"].startswith("private, max-age=")

        add_subscriptions(db_session)
        second = client.get(STATS_URL, headers=stats_headers)

        assert second.headers["X-Cache"] == "HIT"
        assert second.json()["data"]["total"] == 0

    def test_cache_is_per_query(self, client, stats_headers):
        client.get(STATS_URL, headers=stats_headers)

        response = client.get(STATS_URL, headers=stats_headers, params={"period": "week"})

        assert response.headers["X-Cache"] == "MISS"

    def test_rate_limit(self, client, stats_headers):
        for _ in range(10):
            client.get(STATS_URL, headers=stats_headers)

        response = client.get(STATS_URL, headers=stats_headers)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS


class TestResolveDateRange:
    """Test reporting window resolution"""

    def test_default_is_last_thirty_days(self):
        now = utcnow()
        start, end = resolve_date_range(StatsQuery(), now).value
        assert end == now
        assert end - start == timedelta(days=30)

    def test_day_covers_current_day(self):
        now = utcnow()
        start, end = resolve_date_range(StatsQuery(period="day"), now).value
        assert start.hour == 0 and start.minute == 0
        assert start <= now <= end
