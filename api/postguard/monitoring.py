import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from .guardrails import Guardrails, get_guardrails
from .schemas import CacheClearResponse, MonitoringResponse, RateLimitAction, RateLimitActionResponse
from .settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/monitoring")

LOW_HIT_RATE = 50
HIGH_UTILIZATION = 90
MAX_ACTIVE_LIMITS = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def require_admin(request: Request) -> None:
    if not settings.admin_token:
        raise HTTPException(status_code=503, detail="Monitoring is disabled.")

    auth = request.headers.get("authorization") or ""
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Valid authorization token required.")
    # bytes: compare_digest rejects non-ASCII str, and headers arrive latin-1 decoded
    token = auth[len("Bearer "):].encode("utf-8")
    if not secrets.compare_digest(token, settings.admin_token.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Admin access required.")


def calculate_system_health(cache_stats: Dict[str, Dict[str, Any]], rate_limit_stats: Dict[str, Any]) -> Dict[str, Any]:
    score = 100
    issues = []
    recommendations = []

    for name, stats in cache_stats.items():
        # a cache nobody has queried yet has no meaningful hit rate
        if stats["total_requests"] and stats["hit_rate"] < LOW_HIT_RATE:
            score -= 10
            issues.append(f"Low cache hit rate for {name}: {stats['hit_rate']}%")
            recommendations.append(f"Consider increasing cache TTL for {name}")
        if stats["utilization"] > HIGH_UTILIZATION:
            score -= 5
            issues.append(f"High cache utilization for {name}: {stats['utilization']}%")
            recommendations.append(f"Consider increasing cache size for {name}")

    if rate_limit_stats["active_limits"] > MAX_ACTIVE_LIMITS:
        score -= 15
        issues.append(f"High number of active rate limits: {rate_limit_stats['active_limits']}")
        recommendations.append("Monitor for potential abuse or consider adjusting rate limits")

    if score >= 90:
        status = "healthy"
    elif score >= 70:
        status = "warning"
    else:
        status = "critical"

    return {"score": max(0, score), "status": status, "issues": issues, "recommendations": recommendations}


@router.get("/ai-services", response_model=MonitoringResponse, dependencies=[Depends(require_admin)])
def ai_services_status(guardrails: Guardrails = Depends(get_guardrails)):
    cache_stats = guardrails.caches.stats()
    rate_limit_stats = guardrails.limiter.status_snapshot()
    return {
        "system_health": calculate_system_health(cache_stats, rate_limit_stats),
        "cache_stats": cache_stats,
        "rate_limit_stats": rate_limit_stats,
        "timestamp": _now_iso(),
    }


@router.delete("/ai-services", response_model=CacheClearResponse, dependencies=[Depends(require_admin)])
def clear_ai_caches(
    type: Optional[str] = Query(None, max_length=50),
    pattern: Optional[str] = Query(None, min_length=1, max_length=200),
    guardrails: Guardrails = Depends(get_guardrails),
):
    caches = guardrails.caches
    if type:
        if type not in caches:
            raise HTTPException(status_code=400, detail=f"Unknown cache type: {type}")
        cleared = caches.clear(type)
        count = 1
    elif pattern:
        deleted = caches.invalidate_pattern(pattern)
        cleared = list(deleted)
        count = sum(deleted.values())
    else:
        cleared = caches.clear()
        count = len(cleared)

    logger.info("Cleared caches %s (%d)", cleared, count)
    return {"cleared_count": count, "cleared_caches": cleared, "timestamp": _now_iso()}


@router.post("/ai-services", response_model=RateLimitActionResponse, dependencies=[Depends(require_admin)])
def manage_rate_limits(req: RateLimitAction, guardrails: Guardrails = Depends(get_guardrails)):
    limiter = guardrails.limiter
    if req.action == "reset_user_limits":
        if not req.identifier:
            raise HTTPException(status_code=400, detail="Identifier is required for resetting user limits.")
        reset_count = limiter.reset_identifier(req.identifier)
    elif req.action == "reset_endpoint_limits":
        if not req.endpoint:
            raise HTTPException(status_code=400, detail="Endpoint is required for resetting endpoint limits.")
        reset_count = limiter.reset_endpoint(req.endpoint)
    else:
        raise HTTPException(status_code=400, detail=f"Unknown action: {req.action}")

    logger.info("Rate limit action %s applied (%d)", req.action, reset_count)
    return {
        "action": req.action,
        "endpoint": req.endpoint,
        "identifier": req.identifier,
        "reset_count": reset_count,
        "timestamp": _now_iso(),
    }
