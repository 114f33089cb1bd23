import functools
import inspect
import json
import logging
import math
import re
import string
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .expiring import Clock, ExpiringMap

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


class UnknownOperationError(ValueError):
    pass


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def hash_string(text: str) -> str:
    """
    Non-cryptographic 32-bit string hash (h * 31 + c, wrapped to a signed int32),
    rendered as the base-36 absolute value. Good enough for cache keys only.
    """
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return _to_base36(abs(h))


def _normalise(value: Any) -> Any:
    """Make mapping keys sortable JSON strings; non-str keys are tagged with their type."""
    if isinstance(value, Mapping):
        return {
            (k if isinstance(k, str) else f"{type(k).__name__}:{k!r}"): _normalise(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    return value


def generate_key(prefix: str, content: str, params: Optional[Mapping[str, Any]] = None) -> str:
    # sorted keys: {"a": 1, "b": 2} and {"b": 2, "a": 1} share a key
    params_json = json.dumps(_normalise(params or {}), sort_keys=True, separators=(",", ":"), default=str)
    return f"{prefix}:{hash_string(content)}:{hash_string(params_json)}"


def _round_half_up(value: float, digits: int = 0) -> float:
    # round() sends halves to the even neighbour; stats round .5 up
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


@dataclass
class CacheEntry:
    data: Any
    created_at: float
    ttl: float
    hit_count: int = 0
    last_accessed_at: float = 0.0


@dataclass(frozen=True)
class CacheConfig:
    default_ttl: float
    max_size: int
    prefix: str


def _entry_expired(entry: CacheEntry, now: float) -> bool:
    return now - entry.created_at > entry.ttl


class TTLCache:
    """
    In-memory TTL cache with least-recently-used eviction and hit/miss stats.
    Values can be anything; `None` is indistinguishable from a miss.
    """

    def __init__(self, default_ttl: float = 5 * 60, max_size: int = 1000, name: str = "cache", clock: Clock = time.time):
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl!r}")
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size!r}")
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.name = name
        self._entries: ExpiringMap[str, CacheEntry] = ExpiringMap(_entry_expired, clock)
        self._reset_stats()

    def _reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._total_requests = 0

    generate_key = staticmethod(generate_key)

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        # a missing or non-positive ttl means the cache default
        if ttl is None or ttl <= 0:
            ttl = self.default_ttl
        with self._entries.lock:
            now = self._entries.now()
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()
            self._entries.put(key, CacheEntry(
                data=data,
                created_at=now,
                ttl=ttl,
                last_accessed_at=now,
            ))

    def get(self, key: str) -> Any:
        with self._entries.lock:
            self._total_requests += 1
            entry = self._entries.get_live(key)
            if entry is None:
                self._misses += 1
                return None

            entry.hit_count += 1
            entry.last_accessed_at = self._entries.now()
            self._entries.touch(key)
            self._hits += 1
            return entry.data

    def has(self, key: str) -> bool:
        return self._entries.is_live(key)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key) is not None

    def clear(self) -> None:
        with self._entries.lock:
            self._entries.clear()
            self._reset_stats()

    def get_keys(self, pattern: Optional[str] = None) -> List[str]:
        keys = self._entries.keys()
        if pattern is None:
            return keys
        regex = _glob_to_regex(pattern)
        return [k for k in keys if regex.fullmatch(k)]

    def invalidate_pattern(self, pattern: str) -> int:
        deleted = 0
        with self._entries.lock:
            for key in self.get_keys(pattern):
                if self.delete(key):
                    deleted += 1
        return deleted

    def warmup(self, items: Iterable[Mapping[str, Any]]) -> None:
        """Preload entries given as {"key", "data", optional "ttl"} mappings."""
        for item in items:
            self.set(item["key"], item["data"], item.get("ttl"))

    def get_stats(self) -> Dict[str, Any]:
        with self._entries.lock:
            hit_rate = self._hits * 100 / self._total_requests if self._total_requests else 0
            size = len(self._entries)
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "total_requests": self._total_requests,
                "hit_rate": _round_half_up(hit_rate, 2),
                "size": size,
                "max_size": self.max_size,
                "utilization": int(_round_half_up(size * 100 / self.max_size)),
            }

    def cleanup(self) -> int:
        removed = self._entries.sweep()
        if removed:
            logger.info("Cache cleanup (%s): removed %d expired entries", self.name, removed)
        return removed

    def _evict_oldest(self) -> None:
        oldest = self._entries.oldest_key()
        if oldest is not None:
            self._entries.pop(oldest)
            self._evictions += 1

    def __len__(self) -> int:
        return len(self._entries)


# Per-domain TTLs follow how quickly the underlying data goes stale
AI_CACHE_CONFIGS: Dict[str, CacheConfig] = {
    "contentScoring": CacheConfig(default_ttl=2 * 60, max_size=500, prefix="content_score"),
    "engagementPrediction": CacheConfig(default_ttl=5 * 60, max_size=300, prefix="engagement_pred"),
    "trendAnalysis": CacheConfig(default_ttl=15 * 60, max_size=200, prefix="trend_analysis"),
    "audienceAnalysis": CacheConfig(default_ttl=30 * 60, max_size=100, prefix="audience_analysis"),
    "optimalTiming": CacheConfig(default_ttl=10 * 60, max_size=150, prefix="optimal_timing"),
}

WARMUP_DATA = [
    ("contentScoring", "Hello world! #socialmedia", {"score": 75}),
    ("engagementPrediction", "Check out our new product!", {"engagement": 0.8}),
    ("audienceAnalysis", "tech_audience", {"demographics": {"age_groups": []}}),
    ("optimalTiming", "general", {"best_times": []}),
]


class CacheRegistry:
    """One independent TTLCache per AI domain, so eviction in one never touches another."""

    def __init__(self, configs: Optional[Dict[str, CacheConfig]] = None, clock: Clock = time.time):
        self.configs = dict(configs or AI_CACHE_CONFIGS)
        self._caches: Dict[str, TTLCache] = {
            name: TTLCache(default_ttl=cfg.default_ttl, max_size=cfg.max_size, name=name, clock=clock)
            for name, cfg in self.configs.items()
        }

    def __getitem__(self, name: str) -> TTLCache:
        try:
            return self._caches[name]
        except KeyError:
            raise UnknownOperationError(f"Unknown AI operation: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._caches

    def names(self) -> List[str]:
        return list(self._caches)

    def create_ai_key(self, operation: str, content: str, params: Optional[Mapping[str, Any]] = None) -> str:
        config = self.configs.get(operation)
        if config is None:
            raise UnknownOperationError(f"Unknown AI operation: {operation}")
        return generate_key(config.prefix, content, params)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: cache.get_stats() for name, cache in self._caches.items()}

    def clear(self, name: Optional[str] = None) -> List[str]:
        targets = [name] if name is not None else self.names()
        for target in targets:
            self[target].clear()
        return targets

    def invalidate_pattern(self, pattern: str) -> Dict[str, int]:
        """Per-domain counts, only for domains where something was deleted."""
        counts = {}
        for name, cache in self._caches.items():
            deleted = cache.invalidate_pattern(pattern)
            if deleted:
                counts[name] = deleted
        return counts

    def cleanup(self) -> int:
        return sum(cache.cleanup() for cache in self._caches.values())

    def warmup_defaults(self) -> int:
        loaded = 0
        for operation, content, data in WARMUP_DATA:
            if operation in self._caches:
                self._caches[operation].set(self.create_ai_key(operation, content), data)
                loaded += 1
        return loaded


def cached(cache: TTLCache, key_func: Callable[..., str], ttl: Optional[float] = None):
    """Memoise a function (sync or async) in `cache` under `key_func(*args, **kwargs)`."""

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                key = key_func(*args, **kwargs)
                hit = cache.get(key)
                if hit is not None:
                    return hit
                result = await func(*args, **kwargs)
                cache.set(key, result, ttl)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            key = key_func(*args, **kwargs)
            hit = cache.get(key)
            if hit is not None:
                return hit
            result = func(*args, **kwargs)
            cache.set(key, result, ttl)
            return result

        return wrapper

    return decorator
