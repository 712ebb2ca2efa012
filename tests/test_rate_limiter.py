"""
Unit tests for the in-process rate limiter and endpoint limit helpers.
"""

from starlette.requests import Request

from fansite.core.api_rate_limiter import get_client_ip, get_rate_limit_rule, rate_limit_headers
from fansite.core.rate_limiter import REASON_RATE_LIMIT, REASON_TOKEN_REUSE, RateLimiter


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_request(headers=None):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": ("10.0.0.1", 1234),
    }
    return Request(scope)


class TestRateLimiter:
    """Test fixed window behavior"""

    def test_allows_up_to_max_then_denies(self):
        limiter = RateLimiter(clock=FakeClock())

        results = [limiter.check("subscribe:1.2.3.4", 5, 900) for _ in range(6)]

        assert all(r.allowed for r in results[:5])
        assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]
        denied = results[5]
        assert not denied.allowed
        assert denied.reason == REASON_RATE_LIMIT
        assert denied.retry_after == 900

    def test_window_resets_after_expiry(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(2):
            limiter.check("k", 2, 60)
        assert not limiter.check("k", 2, 60).allowed

        clock.advance(60)

        result = limiter.check("k", 2, 60)
        assert result.allowed
        assert result.remaining == 1

    def test_retry_after_rounds_up(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", 1, 60)
        clock.advance(59.5)

        denied = limiter.check("k", 1, 60)
        assert denied.retry_after == 1

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.check("a", 1, 60)
        assert not limiter.check("a", 1, 60).allowed
        assert limiter.check("b", 1, 60).allowed

    def test_token_reuse_is_denied_with_budget_left(self):
        limiter = RateLimiter(clock=FakeClock())
        assert limiter.check("unsubscribe:ip", 5, 600, token="abc").allowed

        reused = limiter.check("unsubscribe:ip", 5, 600, token="abc")

        assert not reused.allowed
        assert reused.reason == REASON_TOKEN_REUSE
        assert reused.remaining == 4

    def test_token_forgotten_after_window(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("k", 5, 600, token="abc")
        clock.advance(600)
        assert limiter.check("k", 5, 600, token="abc").allowed

    def test_sweep_removes_expired_entries(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("short", 5, 10)
        limiter.check("long", 5, 1000)
        clock.advance(10)

        assert limiter.sweep() == 1
        assert len(limiter) == 1

    def test_reset(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.check("k", 1, 60)
        limiter.reset("k")
        assert limiter.check("k", 1, 60).allowed
        limiter.reset()
        assert len(limiter) == 0


class TestEndpointLimits:
    """Test endpoint rule resolution and headers"""

    def test_production_limits_outside_development(self):
        rule = get_rate_limit_rule("subscribe")
        assert rule.max_requests == 5
        assert rule.window_seconds == 900

    def test_headers_for_denied_request(self):
        limiter = RateLimiter(clock=FakeClock(100.0))
        limiter.check("k", 1, 60)
        headers = rate_limit_headers(limiter.check("k", 1, 60))

        assert headers["X-RateLimit-Limit"] == "1"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == "160"
        assert headers["Retry-After"] == "60"

    def test_headers_for_allowed_request_have_no_retry_after(self):
        limiter = RateLimiter(clock=FakeClock())
        headers = rate_limit_headers(limiter.check("k", 3, 60))
        assert "Retry-After" not in headers
        assert headers["X-RateLimit-Remaining"] == "2"


class TestClientIp:
    """Test client identifier extraction"""

    def test_first_forwarded_for_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_cloudflare_header(self):
        assert get_client_ip(make_request({"CF-Connecting-IP": "198.51.100.4"})) == "198.51.100.4"

    def test_real_ip_header(self):
        assert get_client_ip(make_request({"X-Real-IP": "192.0.2.9"})) == "192.0.2.9"

    def test_unknown_without_headers(self):
        assert get_client_ip(make_request()) == "unknown"
