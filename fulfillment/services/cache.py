"""
Best-effort cache invalidation after order and stock writes
"""
import logging
from typing import Optional
import redis
from fulfillment.config import settings

logger = logging.getLogger(__name__)

ORDER_KEY = "order:{order_id}"
STOCK_KEY = "stock:variant:{variant_id}"
USER_ORDERS_PATTERN = "orders:user:{user_id}:*"


def _is_pattern(key: str) -> bool:
    return any(ch in key for ch in "*?[")


class RedisCacheInvalidator:
    """Deletes cache keys in Redis. Glob patterns are expanded with SCAN, never KEYS."""

    def __init__(self, client=None, url: Optional[str] = None):
        self.redis = client or redis.from_url(url or settings.redis_url, decode_responses=True, socket_timeout=1.0)

    def invalidate(self, key: str):
        try:
            if _is_pattern(key):
                keys = list(self.redis.scan_iter(match=key, count=100))
                if keys:
                    self.redis.delete(*keys)
                logger.debug(f"Invalidated {len(keys)} cache keys matching {key}")
            else:
                self.redis.delete(key)
                logger.debug(f"Invalidated cache key {key}")
        except Exception as e:
            logger.warning(f"Cache invalidation failed for {key}: {e}")


class NoOpCacheInvalidator:
    """Used when no cache is configured"""
    def invalidate(self, key: str):
        pass


_cache_invalidator = None


def get_cache_invalidator():
    """Get the configured cache invalidator (lazy initialization)"""
    global _cache_invalidator
    if _cache_invalidator is None:
        if settings.redis_url:
            try:
                _cache_invalidator = RedisCacheInvalidator(url=settings.redis_url)
                logger.info("Redis cache invalidation enabled")
            except Exception as e:
                logger.warning(f"Redis not available, cache invalidation disabled: {e}")
                _cache_invalidator = NoOpCacheInvalidator()
        else:
            _cache_invalidator = NoOpCacheInvalidator()
    return _cache_invalidator
