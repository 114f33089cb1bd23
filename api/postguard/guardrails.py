import logging
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response

from .cache import CacheRegistry
from .expiring import Clock
from .ratelimit import RateLimiter, RateLimitResult, configure_defaults, rate_limit_headers
from .settings import Settings
from .sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)


@dataclass
class Guardrails:
    """Rate limiter and AI caches shared by the routes of one app instance."""

    limiter: RateLimiter
    caches: CacheRegistry
    sweeper: PeriodicSweeper
    allow_test_bypass: bool = False
    background_sweep: bool = True

    def start(self) -> None:
        if self.background_sweep:
            self.sweeper.start()

    def close(self) -> None:
        self.sweeper.stop()


def build_guardrails(settings: Settings, clock: Clock = time.time) -> Guardrails:
    limiter = configure_defaults(RateLimiter(clock=clock))
    caches = CacheRegistry(clock=clock)
    sweeper = PeriodicSweeper(
        interval=settings.cleanup_interval_seconds,
        tasks={"rate_limits": limiter.cleanup, "caches": caches.cleanup},
    )
    return Guardrails(
        limiter=limiter,
        caches=caches,
        sweeper=sweeper,
        allow_test_bypass=settings.allow_test_bypass,
        background_sweep=settings.enable_background_sweep,
    )


def get_guardrails(request: Request) -> Guardrails:
    guardrails: Optional[Guardrails] = getattr(request.app.state, "guardrails", None)
    if guardrails is None:
        raise HTTPException(status_code=503, detail="Service is starting up.")
    return guardrails


def rate_limited(endpoint: str):
    """
    Dependency factory: consumes one request slot on `endpoint` for the caller
    and raises 429 when the quota is exhausted. Admitted responses carry the
    X-RateLimit-* headers.
    """

    def dependency(request: Request, response: Response, guardrails: Guardrails = Depends(get_guardrails)) -> RateLimitResult:
        limiter = guardrails.limiter
        if guardrails.allow_test_bypass and request.headers.get("x-test-bypass") == "true":
            return limiter.unlimited()

        config = limiter.config_for(endpoint)
        if config is None:
            return limiter.unlimited()

        result = limiter.check_limit(endpoint, config.identify(request))
        headers = rate_limit_headers(result)
        if not result.allowed:
            logger.warning("Rate limit exceeded on %s (retry after %.2fs)", endpoint, result.retry_after or 0)
            raise HTTPException(
                status_code=429,
                detail={
                    "message": "Rate limit exceeded. Please slow down your requests.",
                    "retry_after": result.retry_after,
                    "remaining": result.remaining,
                },
                headers=headers,
            )

        response.headers.update(headers)
        return result

    return dependency
