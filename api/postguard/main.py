import logging
import math

from fastapi import Depends, FastAPI, HTTPException, Request

from .analysis import extract_features, recommendations_for, score_content
from .guardrails import Guardrails, build_guardrails, get_guardrails, rate_limited
from .ratelimit import RateLimitResult, bearer_identifier
from .schemas import InsightsRequest, InsightsResponse, RateLimitStatus
from .settings import settings
from .monitoring import router as monitoring_router

logger = logging.getLogger(__name__)

app = FastAPI(title="PostGuard API", version="0.3.0")
app.include_router(monitoring_router)


@app.on_event("startup")
def _startup():
    logging.getLogger("api.postguard").setLevel(settings.log_level)
    guardrails = build_guardrails(settings)
    guardrails.start()
    app.state.guardrails = guardrails


@app.on_event("shutdown")
def _shutdown():
    guardrails = getattr(app.state, "guardrails", None)
    if guardrails is not None:
        guardrails.close()


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/ai/insights", response_model=InsightsResponse)
def ai_insights(
    req: InsightsRequest,
    _limit: RateLimitResult = Depends(rate_limited("insights")),
    guardrails: Guardrails = Depends(get_guardrails),
):
    text = req.content.text or ""
    media = [m.model_dump() for m in req.content.media]

    caches = guardrails.caches
    cache = caches["contentScoring"]
    cache_key = caches.create_ai_key("contentScoring", text, {"platform": req.platform, "media": media})
    cached = cache.get(cache_key)
    if cached is not None:
        return {**cached, "cached": True}

    try:
        features = extract_features(text, media, req.platform)
        payload = {
            "platform": req.platform,
            "score": score_content(features),
            "features": features,
            "recommendations": recommendations_for(features),
        }
    except Exception:
        logger.exception("Unexpected content scoring failure")
        raise HTTPException(status_code=500, detail="Unexpected error while scoring content.")

    cache.set(cache_key, payload)
    return {**payload, "cached": False}


@app.get("/rate-limit/{endpoint}/status", response_model=RateLimitStatus)
def rate_limit_status(endpoint: str, request: Request, guardrails: Guardrails = Depends(get_guardrails)):
    config = guardrails.limiter.config_for(endpoint)
    identifier = config.identify(request) if config else bearer_identifier(request)
    result = guardrails.limiter.get_status(endpoint, identifier)
    return {
        "endpoint": endpoint,
        "allowed": result.allowed,
        "limited": result.limited,
        "remaining": None if math.isinf(result.remaining) else int(result.remaining),
        "reset_time": result.reset_time,
        "burst_remaining": result.burst_remaining,
    }
