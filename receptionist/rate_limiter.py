"""
Hybrid in-memory + Redis rate limiting for the auth endpoints

Counts live in process memory and are mirrored to Redis every few seconds
when REDIS_URL is configured, so several workers converge on one budget.
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import Request

from . import config
from .deps import get_client_ip
from .errors import RateLimitError

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None
_redis_unavailable = False

# Format: {key: {'count': int, 'reset_time': int, 'last_redis_sync': int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

MEMORY_CACHE_SYNC_INTERVAL = 10  # Sync to Redis every 10 seconds
MEMORY_CACHE_CLEANUP_INTERVAL = 60
last_cleanup_time = 0


def get_redis_client() -> Optional[redis.Redis]:
    """Redis client when REDIS_URL is set and reachable, otherwise None (memory only)"""
    global redis_client, _redis_unavailable

    if redis_client is not None or _redis_unavailable or not config.REDIS_URL:
        return redis_client

    url = config.REDIS_URL
    masked_url = f"{url.split(':')[0]}:****@{url.split('@')[1]}" if "@" in url else "****"
    logger.info(f"📡 Connecting rate limiter to Redis: {masked_url}")
    try:
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        client.ping()
    except redis.RedisError as e:
        logger.error(f"❌ Failed to connect to Redis, rate limiting stays in memory: {e}")
        _redis_unavailable = True
        return None

    redis_client = client
    logger.info("✅ Redis connected for rate limiting")
    return redis_client


def reset_rate_limits() -> None:
    with cache_lock:
        memory_cache.clear()


def cleanup_expired_cache():
    """Remove expired entries from memory cache"""
    global last_cleanup_time
    current_time = int(time.time())

    if current_time - last_cleanup_time < MEMORY_CACHE_CLEANUP_INTERVAL:
        return

    with cache_lock:
        expired_keys = [k for k, v in memory_cache.items() if current_time >= v.get("reset_time", 0)]
        for k in expired_keys:
            del memory_cache[k]

    if expired_keys:
        logger.debug(f"🧹 Cleaned up {len(expired_keys)} expired rate limit entries")
    last_cleanup_time = current_time


def _load_entry(key: str, window_seconds: int, client: Optional[redis.Redis], current_time: int) -> dict:
    if client is not None:
        try:
            redis_count = client.get(key)
            redis_ttl = client.ttl(key)
            if redis_count and redis_ttl > 0:
                return {"count": int(redis_count), "reset_time": current_time + redis_ttl, "last_redis_sync": current_time}
        except redis.RedisError as e:
            logger.warning(f"⚠️ Failed to load from Redis, using memory only: {e}")
    return {"count": 0, "reset_time": current_time + window_seconds, "last_redis_sync": current_time}


def check_rate_limit(
    key: str, limit: int, window_seconds: int, client: Optional[redis.Redis] = None
) -> tuple[bool, int, int]:
    """
    Fixed-window check.

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    current_time = int(time.time())
    cleanup_expired_cache()

    with cache_lock:
        if key not in memory_cache:
            memory_cache[key] = _load_entry(key, window_seconds, client, current_time)
        entry = memory_cache[key]

        if current_time >= entry["reset_time"]:
            entry["count"] = 0
            entry["reset_time"] = current_time + window_seconds
            entry["last_redis_sync"] = 0

        is_allowed = entry["count"] < limit
        if is_allowed:
            entry["count"] += 1

        if client is not None and current_time - entry.get("last_redis_sync", 0) >= MEMORY_CACHE_SYNC_INTERVAL:
            try:
                client.set(key, entry["count"], ex=max(1, entry["reset_time"] - current_time))
                entry["last_redis_sync"] = current_time
            except redis.RedisError as e:
                logger.warning(f"⚠️ Failed to sync to Redis: {e}")

        ttl = max(0, entry["reset_time"] - current_time)
        return is_allowed, entry["count"], ttl


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Per-IP rate limiter dependency

    Example usage:
        auth_limit = create_rate_limiter(limit=20, window_seconds=900, key_prefix="auth_login")

        @router.post("/login", dependencies=[Depends(auth_limit)])
    """

    async def rate_limiter(request: Request):
        if not config.RATE_LIMIT_ENABLED:
            return
        key = f"{key_prefix}:{get_client_ip(request) or 'unknown'}"
        is_allowed, current_count, ttl = check_rate_limit(key, limit, window_seconds, get_redis_client())
        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                retry_after=ttl,
            )
        request.state.rate_limit_remaining = limit - current_count

    return rate_limiter
