"""
Tests for the double opt-in subscribe endpoint and the subscriber count.
"""

from fastapi import status

from fansite.models.pending_subscription import PendingSubscription
from fansite.models.subscription import Subscription

SUBSCRIBE_URL = "/api/subscribe"


class TestSubscribe:
    """Test POST /api/subscribe"""

    def test_subscribe_sends_confirmation(self, client, db_session, email_service):
        """A new address gets a pending token and one confirmation email"""
        response = client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body["success"] is True
        assert body["code"] == "EMAIL_SENT"
        assert body["data"]["email"] == "fan@example.com"
        assert body["data"]["status"] == "pending"
        assert body["data"]["expiresAt"].endswith("Z")
        assert "timestamp" in body
        assert "error" not in body

        tokens = email_service.confirmation_tokens("fan@example.com")
        assert len(tokens) == 1
        assert len(tokens[0]) == 32

        pending = db_session.query(PendingSubscription).one()
        assert pending.token == tokens[0]
        assert db_session.query(Subscription).count() == 0

    def test_email_is_normalized(self, client, email_service):
        response = client.post(SUBSCRIBE_URL, json={"email": "  Fan@Example.COM "})

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["data"]["email"] == "fan@example.com"
        assert email_service.confirmation_tokens("fan@example.com")

    def test_source_and_tags_are_kept_on_pending_record(self, client, db_session):
        client.post(SUBSCRIBE_URL, json={
            "email": "fan@example.com",
            "source": "homepage",
            "tags": ["release", "news"],
        })

        pending = db_session.query(PendingSubscription).one()
        assert pending.source == "homepage"
        assert pending.tags == ["release", "news"]

    def test_second_request_is_already_pending(self, client, email_service):
        client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        response = client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "ALREADY_PENDING"
        assert response.headers["X-Error-Code"] == "ALREADY_PENDING"
        assert len(email_service.sent) == 1

    def test_already_active_subscriber(self, client, active_subscription, email_service):
        response = client.post(SUBSCRIBE_URL, json={"email": "hornet@example.com"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["code"] == "ALREADY_SUBSCRIBED"
        assert email_service.sent == []

    def test_blocked_domain_is_rejected(self, client, db_session, email_service):
        response = client.post(SUBSCRIBE_URL, json={"email": "test@tempmail.org"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_email_domain"
        assert "not allowed" in body["error"]
        assert email_service.sent == []
        assert db_session.query(PendingSubscription).count() == 0

    def test_invalid_email_format(self, client):
        response = client.post(SUBSCRIBE_URL, json={"email": "not-an-email"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_email_format"

    def test_reserved_domain_is_rejected(self, client, db_session, email_service):
        response = client.post(SUBSCRIBE_URL, json={"email": "fan@test.local"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_email_format"
        assert email_service.sent == []
        assert db_session.query(PendingSubscription).count() == 0

    def test_missing_email(self, client):
        response = client.post(SUBSCRIBE_URL, json={"source": "web"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_email_required"
        assert response.json()["error"] == "Email is required"

    def test_too_many_tags(self, client):
        response = client.post(SUBSCRIBE_URL, json={
            "email": "fan@example.com",
            "tags": [f"t{i}" for i in range(11)],
        })

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_schema"

    def test_wrong_content_type(self, client):
        response = client.post(
            SUBSCRIBE_URL,
            content="email=fan@example.com",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_content_type"

    def test_malformed_json(self, client):
        response = client.post(
            SUBSCRIBE_URL,
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["code"] == "validation_json"

    def test_email_failure_leaves_nothing_behind(self, client, db_session, email_service):
        """If the confirmation email cannot be sent, no pending token survives"""
        email_service.fail = True

        response = client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["code"] == "EMAIL_DELIVERY_FAILED"
        assert db_session.query(PendingSubscription).count() == 0

        count = client.get(SUBSCRIBE_URL)
        assert count.json()["data"]["count"] == 0

    def test_retry_after_email_failure(self, client, email_service):
        email_service.fail = True
        client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})
        email_service.fail = False

        response = client.post(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        assert response.status_code == status.HTTP_201_CREATED

    def test_typo_suggestion_is_returned(self, client):
        response = client.post(SUBSCRIBE_URL, json={"email": "fan@gmial.com"})

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["data"]["suggestions"] == ["fan@gmail.com"]

    def test_rate_limit(self, client):
        """Sixth request from one client within the window is rejected"""
        for i in range(5):
            response = client.post(SUBSCRIBE_URL, json={"email": f"fan{i}@example.com"})
            assert response.status_code == status.HTTP_201_CREATED
            assert response.headers["X-RateLimit-Remaining"] == str(4 - i)

        response = client.post(SUBSCRIBE_URL, json={"email": "fan5@example.com"})

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        body = response.json()
        assert body["code"] == "rate_limit_exceeded"
        assert body["retryAfter"] > 0
        assert int(response.headers["Retry-After"]) > 0
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_rate_limit_is_per_client(self, client):
        for i in range(5):
            client.post(SUBSCRIBE_URL, json={"email": f"fan{i}@example.com"},
                        headers={"X-Forwarded-For": "203.0.113.1"})

        response = client.post(SUBSCRIBE_URL, json={"email": "other@example.com"},
                               headers={"X-Forwarded-For": "203.0.113.2"})

        assert response.status_code == status.HTTP_201_CREATED

    def test_method_not_allowed(self, client):
        response = client.put(SUBSCRIBE_URL, json={"email": "fan@example.com"})

        assert response.status_code == status.HTTP_405_METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, POST"
        assert response.json()["code"] == "METHOD_NOT_ALLOWED"


class TestSubscriberCount:
    """Test GET /api/subscribe"""

    def test_count_only_includes_active(self, client, db_session, active_subscription):
        client.post(SUBSCRIBE_URL, json={"email": "pending@example.com"})

        response = client.get(SUBSCRIBE_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"] == {"count": 1}
        assert response.headers["Cache-Control"] == "public, max-age=300"

    def test_count_is_cached(self, client, db_session, active_subscription):
        from fansite.crud.subscription import build_subscription

        assert client.get(SUBSCRIBE_URL).json()["data"]["count"] == 1

        # Written directly, so nothing invalidates the cache
        db_session.add(build_subscription("direct@example.com"))
        db_session.commit()

        assert client.get(SUBSCRIBE_URL).json()["data"]["count"] == 1

    def test_count_on_newsletter_route(self, client, active_subscription):
        response = client.get("/api/newsletter/subscribe")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["count"] == 1
