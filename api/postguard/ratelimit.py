import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .expiring import Clock, ExpiringMap

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"

# Burst counters reset on a faster cadence than the main window
MAX_BURST_WINDOW_SECONDS = 1.0


def bearer_identifier(request: Any) -> str:
    """
    Default key generator: the bearer token from the Authorization header.
    Callers without a token all share the "anonymous" bucket.

    Only a leading "Bearer " is removed; any other header value is used as the
    identifier as-is. Surrounding whitespace is stripped, so "Bearer  abc " and
    "Bearer abc" count against the same bucket.
    """
    auth = request.headers.get("authorization") or ""
    if auth.startswith("Bearer "):
        auth = auth[len("Bearer "):]
    return auth.strip() or ANONYMOUS


KeyGenerator = Callable[[Any], str]


@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds: float
    max_requests: int
    burst_limit: Optional[int] = None
    key_generator: Optional[KeyGenerator] = None

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds!r}")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {self.max_requests!r}")
        if self.burst_limit is not None and self.burst_limit <= 0:
            raise ValueError(f"burst_limit must be positive when set, got {self.burst_limit!r}")

    @property
    def burst_window_seconds(self) -> float:
        return min(MAX_BURST_WINDOW_SECONDS, self.window_seconds / 10)

    def identify(self, request: Any) -> str:
        generator = self.key_generator or bearer_identifier
        return generator(request)


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float
    burst_count: int
    last_request_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: float
    reset_time: float
    retry_after: Optional[float] = None
    burst_remaining: Optional[int] = None
    limit: Optional[int] = None

    @property
    def limited(self) -> bool:
        """False for endpoints without a configured quota."""
        return self.limit is not None


def _window_expired(entry: RateLimitEntry, now: float) -> bool:
    return now >= entry.window_reset_at


class RateLimiter:
    """
    In-memory, per-process fixed-window limiter keyed by (endpoint, identifier),
    with an optional nested burst window.

    Endpoints without a configuration are always admitted.
    """

    def __init__(self, clock: Clock = time.time):
        self._configs: Dict[str, RateLimitConfig] = {}
        self._entries: ExpiringMap[Tuple[str, str], RateLimitEntry] = ExpiringMap(_window_expired, clock)

    def configure(self, endpoint: str, config: RateLimitConfig) -> None:
        self._configs[endpoint] = config
        logger.info(
            "Rate limit for %s: %s requests / %ss (burst %s)",
            endpoint, config.max_requests, config.window_seconds, config.burst_limit,
        )

    def config_for(self, endpoint: str) -> Optional[RateLimitConfig]:
        return self._configs.get(endpoint)

    def endpoints(self) -> List[str]:
        return list(self._configs)

    def _now(self) -> float:
        return self._entries.now()

    def unlimited(self) -> RateLimitResult:
        """Admission for traffic that is not subject to any quota."""
        return RateLimitResult(allowed=True, remaining=math.inf, reset_time=self._now())

    def _burst_remaining(self, config: RateLimitConfig, entry: RateLimitEntry) -> Optional[int]:
        if config.burst_limit is None:
            return None
        return max(0, config.burst_limit - entry.burst_count)

    def check_limit(self, endpoint: str, identifier: str) -> RateLimitResult:
        config = self._configs.get(endpoint)
        if config is None:
            return self.unlimited()

        key = (endpoint, identifier)
        with self._entries.lock:
            now = self._now()
            entry = self._entries.peek(key)
            if entry is None or now >= entry.window_reset_at:
                entry = RateLimitEntry(
                    count=0,
                    window_reset_at=now + config.window_seconds,
                    burst_count=0,
                    last_request_at=now,
                )

            if config.burst_limit is not None and entry.burst_count >= config.burst_limit:
                since_last = now - entry.last_request_at
                burst_window = config.burst_window_seconds
                if since_last < burst_window:
                    logger.debug("Burst limit hit for %s", endpoint)
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_time=entry.window_reset_at,
                        retry_after=burst_window - since_last,
                        burst_remaining=0,
                        limit=config.max_requests,
                    )
                entry.burst_count = 0

            if entry.count >= config.max_requests:
                logger.debug("Window limit hit for %s", endpoint)
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=entry.window_reset_at,
                    retry_after=entry.window_reset_at - now,
                    burst_remaining=self._burst_remaining(config, entry),
                    limit=config.max_requests,
                )

            entry.count += 1
            entry.burst_count += 1
            entry.last_request_at = now
            self._entries.put(key, entry)

            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests - entry.count,
                reset_time=entry.window_reset_at,
                burst_remaining=self._burst_remaining(config, entry),
                limit=config.max_requests,
            )

    def get_status(self, endpoint: str, identifier: str) -> RateLimitResult:
        """Current state for an identifier without consuming a request."""
        config = self._configs.get(endpoint)
        if config is None:
            return self.unlimited()
        now = self._now()

        entry = self._entries.peek((endpoint, identifier))
        if entry is None or now >= entry.window_reset_at:
            return RateLimitResult(
                allowed=True,
                remaining=config.max_requests,
                reset_time=now + config.window_seconds,
                burst_remaining=config.burst_limit,
                limit=config.max_requests,
            )

        return RateLimitResult(
            allowed=entry.count < config.max_requests,
            remaining=max(0, config.max_requests - entry.count),
            reset_time=entry.window_reset_at,
            burst_remaining=self._burst_remaining(config, entry),
            limit=config.max_requests,
        )

    def reset(self, endpoint: str, identifier: str) -> None:
        self._entries.pop((endpoint, identifier))

    def reset_endpoint(self, endpoint: str) -> int:
        with self._entries.lock:
            keys = [k for k in self._entries.keys() if k[0] == endpoint]
            for k in keys:
                self._entries.pop(k)
        return len(keys)

    def reset_identifier(self, identifier: str, endpoints: Optional[Iterable[str]] = None) -> int:
        """Clear an identifier's counters on the given endpoints (all configured ones by default)."""
        targets = list(endpoints) if endpoints is not None else self.endpoints()
        for endpoint in targets:
            self.reset(endpoint, identifier)
        return len(targets)

    def active_limits(self) -> List[Tuple[str, str, RateLimitEntry]]:
        now = self._now()
        return [
            (endpoint, identifier, entry)
            for (endpoint, identifier), entry in self._entries.items()
            if entry.window_reset_at > now
        ]

    def status_snapshot(self) -> Dict[str, Any]:
        active = self.active_limits()
        return {
            "active_limits": len(active),
            "limits": [
                {
                    "endpoint": endpoint,
                    # never expose full tokens
                    "identifier": identifier[:8] + "...",
                    "count": entry.count,
                    "reset_time": entry.window_reset_at,
                    "burst_count": entry.burst_count,
                }
                for endpoint, identifier, entry in active
            ],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def cleanup(self) -> int:
        removed = self._entries.sweep()
        if removed:
            logger.info("Rate limit cleanup: removed %d expired entries", removed)
        return removed

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """X-RateLimit-* / Retry-After headers for a decision on a configured endpoint."""
    if not result.limited:
        return {}

    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(int(result.remaining)),
        "X-RateLimit-Reset": str(math.ceil(result.reset_time)),
    }
    if result.burst_remaining is not None:
        headers["X-RateLimit-Burst-Remaining"] = str(result.burst_remaining)
    if not result.allowed and result.retry_after:
        headers["Retry-After"] = str(math.ceil(result.retry_after))
    return headers


# Quotas for the AI endpoints
AI_RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # expensive, allow 3 rapid requests then slow down
    "insights": RateLimitConfig(window_seconds=60, max_requests=10, burst_limit=3, key_generator=bearer_identifier),
    "contentGeneration": RateLimitConfig(window_seconds=60, max_requests=20, burst_limit=5, key_generator=bearer_identifier),
    "trendAnalysis": RateLimitConfig(window_seconds=5 * 60, max_requests=5, burst_limit=2, key_generator=bearer_identifier),
    "audienceAnalysis": RateLimitConfig(window_seconds=2 * 60, max_requests=8, burst_limit=3, key_generator=bearer_identifier),
    "contentOptimization": RateLimitConfig(window_seconds=60, max_requests=15, burst_limit=4, key_generator=bearer_identifier),
}


def configure_defaults(limiter: RateLimiter, limits: Optional[Dict[str, RateLimitConfig]] = None) -> RateLimiter:
    for endpoint, config in (limits or AI_RATE_LIMITS).items():
        limiter.configure(endpoint, config)
    return limiter
