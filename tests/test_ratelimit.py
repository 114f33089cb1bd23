import math
import threading
import unittest
from types import SimpleNamespace

from api.postguard.ratelimit import (
    AI_RATE_LIMITS,
    ANONYMOUS,
    RateLimitConfig,
    RateLimiter,
    bearer_identifier,
    configure_defaults,
    rate_limit_headers,
)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fake_request(authorization=None):
    headers = {} if authorization is None else {"authorization": authorization}
    return SimpleNamespace(headers=headers)


class RateLimitConfigTests(unittest.TestCase):
    def test_rejects_non_positive_values(self):
        with self.assertRaises(ValueError):
            RateLimitConfig(window_seconds=0, max_requests=10)
        with self.assertRaises(ValueError):
            RateLimitConfig(window_seconds=60, max_requests=0)
        with self.assertRaises(ValueError):
            RateLimitConfig(window_seconds=60, max_requests=10, burst_limit=0)

    def test_burst_window_is_capped_at_one_second(self):
        self.assertEqual(RateLimitConfig(window_seconds=60, max_requests=1).burst_window_seconds, 1.0)
        self.assertEqual(RateLimitConfig(window_seconds=5, max_requests=1).burst_window_seconds, 0.5)

    def test_config_is_immutable(self):
        cfg = RateLimitConfig(window_seconds=60, max_requests=10)
        with self.assertRaises(AttributeError):
            cfg.max_requests = 20


class RateLimiterTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(clock=self.clock)

    def test_blocks_after_max_requests_in_window(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=5))
        for expected_remaining in (4, 3, 2, 1, 0):
            result = self.limiter.check_limit("api", "user")
            self.assertTrue(result.allowed)
            self.assertEqual(result.remaining, expected_remaining)

        self.clock.advance(10)
        rejected = self.limiter.check_limit("api", "user")
        self.assertFalse(rejected.allowed)
        self.assertEqual(rejected.remaining, 0)
        self.assertAlmostEqual(rejected.retry_after, 50)

    def test_window_rollover_starts_fresh(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=3))
        for _ in range(3):
            self.limiter.check_limit("api", "user")
        self.assertFalse(self.limiter.check_limit("api", "user").allowed)

        self.clock.advance(60)
        result = self.limiter.check_limit("api", "user")
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 2)
        self.assertEqual(result.reset_time, self.clock.now + 60)

    def test_burst_limit_rejects_before_window_is_exhausted(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=10, burst_limit=2))
        self.assertTrue(self.limiter.check_limit("api", "user").allowed)
        self.assertTrue(self.limiter.check_limit("api", "user").allowed)

        self.clock.advance(0.25)
        result = self.limiter.check_limit("api", "user")
        self.assertFalse(result.allowed)
        self.assertEqual(result.burst_remaining, 0)
        self.assertAlmostEqual(result.retry_after, 0.75)

    def test_insights_scenario(self):
        self.limiter.configure("insights", RateLimitConfig(window_seconds=60, max_requests=10, burst_limit=3))
        bursts = [self.limiter.check_limit("insights", "user1") for _ in range(3)]
        self.assertTrue(all(r.allowed for r in bursts))
        self.assertEqual([r.burst_remaining for r in bursts], [2, 1, 0])

        self.assertFalse(self.limiter.check_limit("insights", "user1").allowed)

        self.clock.advance(1.1)
        result = self.limiter.check_limit("insights", "user1")
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 6)
        self.assertEqual(result.burst_remaining, 2)

    def test_identifiers_are_independent(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=1))
        self.assertTrue(self.limiter.check_limit("api", "a").allowed)
        self.assertFalse(self.limiter.check_limit("api", "a").allowed)

        result = self.limiter.check_limit("api", "b")
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 0)

    def test_unconfigured_endpoint_fails_open(self):
        for _ in range(100):
            result = self.limiter.check_limit("unknown", "user")
            self.assertTrue(result.allowed)
        self.assertTrue(math.isinf(result.remaining))
        self.assertFalse(result.limited)
        self.assertEqual(len(self.limiter), 0)

    def test_get_status_does_not_consume(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=2, burst_limit=2))
        fresh = self.limiter.get_status("api", "user")
        self.assertEqual((fresh.allowed, fresh.remaining, fresh.burst_remaining), (True, 2, 2))

        self.limiter.check_limit("api", "user")
        for _ in range(3):
            status = self.limiter.get_status("api", "user")
        self.assertEqual(status.remaining, 1)
        self.assertEqual(status.burst_remaining, 1)

        self.limiter.check_limit("api", "user")
        self.assertFalse(self.limiter.get_status("api", "user").allowed)

    def test_reset_clears_one_identifier(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=1))
        self.limiter.check_limit("api", "a")
        self.limiter.check_limit("api", "b")

        self.limiter.reset("api", "a")
        self.assertTrue(self.limiter.check_limit("api", "a").allowed)
        self.assertFalse(self.limiter.check_limit("api", "b").allowed)

    def test_reset_endpoint_and_identifier(self):
        self.limiter.configure("one", RateLimitConfig(window_seconds=60, max_requests=1))
        self.limiter.configure("two", RateLimitConfig(window_seconds=60, max_requests=1))
        for endpoint in ("one", "two"):
            for who in ("a", "b"):
                self.limiter.check_limit(endpoint, who)

        self.assertEqual(self.limiter.reset_endpoint("one"), 2)
        self.assertTrue(self.limiter.check_limit("one", "a").allowed)

        self.assertEqual(self.limiter.reset_identifier("b"), 2)
        self.assertTrue(self.limiter.check_limit("two", "b").allowed)
        self.assertFalse(self.limiter.check_limit("two", "a").allowed)

    def test_cleanup_drops_expired_windows_only(self):
        self.limiter.configure("short", RateLimitConfig(window_seconds=10, max_requests=5))
        self.limiter.configure("long", RateLimitConfig(window_seconds=100, max_requests=5))
        self.limiter.check_limit("short", "user")
        self.limiter.check_limit("long", "user")

        self.clock.advance(10)
        self.assertEqual(self.limiter.cleanup(), 1)
        self.assertEqual([(e, i) for e, i, _ in self.limiter.active_limits()], [("long", "user")])

    def test_status_snapshot_masks_identifiers(self):
        self.limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=5))
        self.limiter.check_limit("api", "secret-token-value")

        snapshot = self.limiter.status_snapshot()
        self.assertEqual(snapshot["active_limits"], 1)
        self.assertEqual(snapshot["limits"][0]["identifier"], "secret-t...")
        self.assertEqual(snapshot["limits"][0]["count"], 1)

    def test_configure_defaults_registers_ai_endpoints(self):
        configure_defaults(self.limiter)
        self.assertEqual(sorted(self.limiter.endpoints()), sorted(AI_RATE_LIMITS))
        self.assertEqual(self.limiter.config_for("trendAnalysis").window_seconds, 300)


class RateLimiterConcurrencyTests(unittest.TestCase):
    def _hammer(self, limiter, identifiers, threads=8, calls=200):
        start = threading.Barrier(threads)
        admitted = []
        lock = threading.Lock()

        def worker(n):
            start.wait()
            for _ in range(calls):
                identifier = identifiers[n % len(identifiers)]
                if limiter.check_limit("api", identifier).allowed:
                    with lock:
                        admitted.append(identifier)

        workers = [threading.Thread(target=worker, args=(n,)) for n in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()
        return admitted

    def test_admits_exactly_max_requests_across_threads(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=100))

        admitted = self._hammer(limiter, ["shared"])
        self.assertEqual(len(admitted), 100)
        self.assertEqual(limiter.get_status("api", "shared").remaining, 0)

    def test_each_identifier_gets_its_own_quota_under_contention(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=25))

        admitted = self._hammer(limiter, ["a", "b"])
        self.assertEqual(admitted.count("a"), 25)
        self.assertEqual(admitted.count("b"), 25)


class KeyDerivationTests(unittest.TestCase):
    def test_bearer_token_is_identifier(self):
        self.assertEqual(bearer_identifier(fake_request("Bearer abc123")), "abc123")

    def test_token_normalisation(self):
        self.assertEqual(bearer_identifier(fake_request("Bearer  abc123 ")), "abc123")
        self.assertEqual(bearer_identifier(fake_request("Token abc123")), "Token abc123")

    def test_missing_token_shares_anonymous_bucket(self):
        self.assertEqual(bearer_identifier(fake_request()), ANONYMOUS)
        self.assertEqual(bearer_identifier(fake_request("Bearer ")), ANONYMOUS)

        limiter = RateLimiter(clock=FakeClock())
        cfg = RateLimitConfig(window_seconds=60, max_requests=1)
        limiter.configure("api", cfg)
        self.assertTrue(limiter.check_limit("api", cfg.identify(fake_request())).allowed)
        self.assertFalse(limiter.check_limit("api", cfg.identify(fake_request())).allowed)

    def test_custom_key_generator(self):
        cfg = RateLimitConfig(window_seconds=60, max_requests=1, key_generator=lambda req: req.headers["x-user"])
        self.assertEqual(cfg.identify(SimpleNamespace(headers={"x-user": "u-1"})), "u-1")


class HeaderTests(unittest.TestCase):
    def test_rejection_headers(self):
        clock = FakeClock(1000.2)
        limiter = RateLimiter(clock=clock)
        limiter.configure("api", RateLimitConfig(window_seconds=60, max_requests=1, burst_limit=5))
        limiter.check_limit("api", "user")
        clock.advance(0.5)

        headers = rate_limit_headers(limiter.check_limit("api", "user"))
        self.assertEqual(headers["X-RateLimit-Limit"], "1")
        self.assertEqual(headers["X-RateLimit-Remaining"], "0")
        self.assertEqual(headers["X-RateLimit-Reset"], "1061")
        self.assertEqual(headers["X-RateLimit-Burst-Remaining"], "4")
        self.assertEqual(headers["Retry-After"], "60")

    def test_no_headers_for_unconfigured_endpoint(self):
        self.assertEqual(rate_limit_headers(RateLimiter().check_limit("nope", "user")), {})


if __name__ == "__main__":
    unittest.main()
