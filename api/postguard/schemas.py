from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, Any, Dict, List

Platform = Literal["instagram", "twitter", "facebook", "linkedin", "tiktok"]


class MediaItem(BaseModel):
    type: Literal["image", "video"]
    url: Optional[str] = Field(None, max_length=2048)


class PostContent(BaseModel):
    text: Optional[str] = Field(None, max_length=5000)
    media: List[MediaItem] = Field(default_factory=list)

    @field_validator("text")
    @classmethod
    def text_strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def text_or_media(self):
        if not self.text and not self.media:
            raise ValueError("Content must have text or media.")
        return self


class InsightsRequest(BaseModel):
    content: PostContent
    platform: Platform

    @field_validator("platform", mode="before")
    @classmethod
    def platform_lowercase(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class ContentFeatures(BaseModel):
    text_length: int
    hashtag_count: int
    mention_count: int
    question_count: int
    exclamation_count: int
    link_count: int
    image_count: int
    video_count: int
    platform: Platform


class InsightsResponse(BaseModel):
    platform: Platform
    score: float
    features: ContentFeatures
    recommendations: List[str]
    cached: bool


class RateLimitStatus(BaseModel):
    endpoint: str
    allowed: bool
    limited: bool
    remaining: Optional[int] = None  # None: endpoint has no quota
    reset_time: float
    burst_remaining: Optional[int] = None


class CacheStats(BaseModel):
    hits: int
    misses: int
    evictions: int
    total_requests: int
    hit_rate: float
    size: int
    max_size: int
    utilization: int


class SystemHealth(BaseModel):
    score: int
    status: Literal["healthy", "warning", "critical"]
    issues: List[str]
    recommendations: List[str]


class MonitoringResponse(BaseModel):
    system_health: SystemHealth
    cache_stats: Dict[str, CacheStats]
    rate_limit_stats: Dict[str, Any]
    timestamp: str


class CacheClearResponse(BaseModel):
    cleared_count: int
    cleared_caches: List[str]
    timestamp: str


class RateLimitAction(BaseModel):
    action: str = Field(..., min_length=1, max_length=50)
    endpoint: Optional[str] = Field(None, max_length=100)
    identifier: Optional[str] = Field(None, max_length=500)


class RateLimitActionResponse(BaseModel):
    action: str
    endpoint: Optional[str] = None
    identifier: Optional[str] = None
    reset_count: int
    timestamp: str
