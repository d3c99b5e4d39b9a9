# Tests for the token-bucket rate limiter.
# Created: 2026-10-12

from mcphub.security.rate_limiter import RateLimiter, get_limiter_for_path, reset_limiters


class TestRateLimiter:
    def test_burst_then_block(self):
        limiter = RateLimiter(rate=0.001, capacity=3)
        assert [limiter.allow("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_keys_are_independent(self):
        limiter = RateLimiter(rate=0.001, capacity=1)
        assert limiter.allow("a")
        assert limiter.allow("b")
        assert not limiter.allow("a")

    def test_headers(self):
        limiter = RateLimiter(rate=1.0, capacity=1)
        ok = limiter.check("a")
        assert ok.headers() == {"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0"}
        blocked = limiter.check("a")
        assert not blocked.allowed
        assert int(blocked.headers()["Retry-After"]) >= 1

    def test_refill(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("mcphub.security.rate_limiter.time.monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=1.0, capacity=1)
        assert limiter.allow("a")
        assert not limiter.allow("a")
        clock[0] += 1.5
        assert limiter.allow("a")

    def test_cleanup(self, monkeypatch):
        clock = [0.0]
        monkeypatch.setattr("mcphub.security.rate_limiter.time.monotonic", lambda: clock[0])
        limiter = RateLimiter(rate=1.0, capacity=5)
        limiter.check("old")
        clock[0] = 4000.0
        limiter.check("new")
        assert limiter.cleanup(max_age=3600.0) == 1


class TestLimiterTiers:
    def test_paths(self):
        token = get_limiter_for_path("/oauth/token")
        assert token is get_limiter_for_path("/oauth/token")
        registration = get_limiter_for_path("/oauth/register")
        assert get_limiter_for_path("/oauth/register/abc") is registration
        assert get_limiter_for_path("/oauth/authorize") is not token
        assert get_limiter_for_path("/oauth/userinfo") is None
        assert get_limiter_for_path("/health") is None

    def test_capacity_from_settings(self, monkeypatch):
        monkeypatch.setenv("MCPHUB_AUTH_RATE_PER_MINUTE", "5")
        reset_limiters()
        assert get_limiter_for_path("/oauth/token").capacity == 5
