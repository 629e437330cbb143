"""
Cache Manager
Redis-backed cache for inbox threads and send rate limits.
Every operation degrades to a miss when Redis is not connected.
"""
import json
import os
from typing import Any, Optional, List, Dict
from . import core
import logging

logger = logging.getLogger(__name__)

THREADS_CACHE_TTL = int(os.getenv('THREADS_CACHE_TTL', '60'))


class CacheManager:
    """Thin JSON cache over Redis"""

    def __init__(self):
        self.default_ttl = 3600  # 1 hour default TTL

    def _make_key(self, key: str, prefix: str = "") -> str:
        """Generate cache key with prefix"""
        if prefix:
            return f"{prefix}:{key}"
        return key

    async def set(self, key: str, value: Any, ttl: int = None, prefix: str = "") -> bool:
        """Set cache value with TTL"""
        redis_client = await core.get_redis()
        if not redis_client:
            return False

        cache_key = self._make_key(key, prefix)
        ttl = ttl or self.default_ttl

        try:
            if isinstance(value, (dict, list)):
                value = json.dumps(value)
            await redis_client.setex(cache_key, ttl, value)
            return True
        except Exception as e:
            logger.error(f"Cache set failed for key {cache_key}: {str(e)}")
            return False

    async def get(self, key: str, prefix: str = "") -> Optional[Any]:
        """Get cache value"""
        redis_client = await core.get_redis()
        if not redis_client:
            return None

        cache_key = self._make_key(key, prefix)

        try:
            value = await redis_client.get(cache_key)
            if value is None:
                return None

            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value.decode() if isinstance(value, bytes) else value

        except Exception as e:
            logger.error(f"Cache get failed for key {cache_key}: {str(e)}")
            return None

    async def delete(self, key: str, prefix: str = "") -> bool:
        """Delete cache key"""
        redis_client = await core.get_redis()
        if not redis_client:
            return False

        cache_key = self._make_key(key, prefix)

        try:
            result = await redis_client.delete(cache_key)
            return result > 0
        except Exception as e:
            logger.error(f"Cache delete failed for key {cache_key}: {str(e)}")
            return False

    async def increment(self, key: str, amount: int = 1, prefix: str = "") -> Optional[int]:
        """Increment cache value atomically"""
        redis_client = await core.get_redis()
        if not redis_client:
            return None

        cache_key = self._make_key(key, prefix)

        try:
            return await redis_client.incrby(cache_key, amount)
        except Exception as e:
            logger.error(f"Cache increment failed for key {cache_key}: {str(e)}")
            return None

    async def expire(self, key: str, ttl: int, prefix: str = "") -> bool:
        redis_client = await core.get_redis()
        if not redis_client:
            return False

        cache_key = self._make_key(key, prefix)

        try:
            return bool(await redis_client.expire(cache_key, ttl))
        except Exception as e:
            logger.error(f"Cache expire failed for key {cache_key}: {str(e)}")
            return False


# Global cache manager instance
cache = CacheManager()


# Inbox cache functions
# Thread lists are stored under a per-user generation; invalidation bumps the
# generation, so a list built before a write can never be read back after it.
async def threads_generation(user_id: str) -> int:
    value = await cache.get(user_id, "threads_gen")
    return int(value) if value is not None else 0


async def cache_threads(user_id: str, generation: int, threads: List[Dict], ttl: int = None):
    """Cache a user's thread list as of `generation`"""
    return await cache.set(f"{user_id}:{generation}", threads, ttl or THREADS_CACHE_TTL, "threads")


async def get_cached_threads(user_id: str, generation: int) -> Optional[List[Dict]]:
    return await cache.get(f"{user_id}:{generation}", "threads")


async def invalidate_threads(*user_ids: str):
    """Retire cached thread lists, called on message create and mark-read"""
    for user_id in user_ids:
        await cache.increment(user_id, 1, "threads_gen")


# Rate limiting functions
async def check_rate_limit(user_id: str, action: str, limit: int = 100, window: int = 3600) -> bool:
    """Count one attempt and check the user is within the limit for the window"""
    key = f"rate_limit:{user_id}:{action}"

    current = await cache.increment(key, 1, "rate")
    if current is None:
        return True
    if current == 1:
        # first hit opens the window
        await cache.expire(key, window, "rate")
    return current <= limit
