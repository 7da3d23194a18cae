"""
Hybrid in-memory + Redis rate limiting utilities
Optimized to minimize Redis commands; falls back to memory-only counting
when Redis is not configured or unreachable.
"""

import hashlib
import logging
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None

# In-memory cache for rate limiting (dramatically reduces Redis usage)
# Format: {key: {'count': int, 'reset_time': int, 'last_redis_sync': int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()

# Configuration
MEMORY_CACHE_SYNC_INTERVAL = 10  # Sync to Redis every 10 seconds
MEMORY_CACHE_CLEANUP_INTERVAL = 60  # Clean up expired entries every 60 seconds
last_cleanup_time = 0
REDIS_RETRY_BACKOFF = 30  # Seconds to stay memory-only after a failed connect
redis_unavailable_until = 0.0

# Per-endpoint-family limits, all over a 60 second window
RATE_LIMITS = {
    "render": {"requests": 50, "window": 60},
    "carousel": {"requests": 20, "window": 60},
    "template": {"requests": 100, "window": 60},
    "booking": {"requests": 30, "window": 60},
    "upload": {"requests": 10, "window": 60},
    "airspace": {"requests": 20, "window": 60},
    "default": {"requests": 100, "window": 60},
}


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: int  # unix seconds when the window resets
    is_distributed: bool
    window: int = 60


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client
    Supports both REDIS_URL and individual host/port settings
    """
    global redis_client

    if redis_client is None:
        logger.info("🔄 Initializing Redis connection...")

        redis_url = os.getenv("REDIS_URL")

        if redis_url:
            # Mask password in URL for logging
            if "@" in redis_url:
                url_parts = redis_url.split("@")
                protocol = url_parts[0].split(":")[0]
                masked_url = f"{protocol}:****@{url_parts[1]}"
            else:
                masked_url = "****"
            logger.info(f"📡 Using Redis URL connection: {masked_url}")

            try:
                client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=15,
                    socket_timeout=30,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
                client.ping()
                redis_client = client
                logger.info("✅ Redis connected successfully via URL")
            except Exception as e:
                logger.error(f"❌ Failed to connect to Redis via URL: {str(e)}")
                raise
        else:
            redis_host = os.getenv("REDIS_HOST", "localhost")
            redis_port = int(os.getenv("REDIS_PORT", "6379"))
            redis_password = os.getenv("REDIS_PASSWORD", None)
            redis_db = int(os.getenv("REDIS_DB", "0"))
            redis_ssl = os.getenv("REDIS_SSL", "false").lower() == "true"

            logger.info(
                f"📡 Using Redis at {redis_host}:{redis_port} db={redis_db} "
                f"ssl={'on' if redis_ssl else 'off'} password={'set' if redis_password else 'not set'}"
            )

            try:
                client = redis.Redis(
                    host=redis_host,
                    port=redis_port,
                    password=redis_password,
                    db=redis_db,
                    ssl=redis_ssl,
                    decode_responses=True,
                    socket_connect_timeout=15,
                    socket_timeout=30,
                    retry_on_timeout=True,
                    health_check_interval=30,
                    max_connections=20,
                )
                client.ping()
                redis_client = client
                logger.info(f"✅ Redis connected successfully at {redis_host}:{redis_port}")
            except Exception as e:
                logger.error(f"❌ Failed to connect to Redis: {str(e)}")
                raise

    return redis_client


def get_optional_redis_client() -> Optional[redis.Redis]:
    """
    Redis client when configured and reachable, otherwise None (memory-only mode).

    A failed connect is not retried for REDIS_RETRY_BACKOFF seconds.
    """
    global redis_unavailable_until

    if not (os.getenv("REDIS_URL") or os.getenv("REDIS_HOST")):
        return None
    if time.time() < redis_unavailable_until:
        return None
    try:
        return get_redis_client()
    except Exception as e:
        redis_unavailable_until = time.time() + REDIS_RETRY_BACKOFF
        logger.warning(f"⚠️ Redis unavailable, rate limiting in memory only for {REDIS_RETRY_BACKOFF}s: {e}")
        return None


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


def reset_rate_limits():
    """Clear all in-memory counters and the Redis reconnect backoff"""
    global redis_unavailable_until

    with cache_lock:
        memory_cache.clear()
    redis_unavailable_until = 0.0


def check_rate_limit(
    key: str, limit: int, window_seconds: int, redis_client: Optional[redis.Redis] = None
) -> tuple[bool, int, int]:
    """Check if rate limit is exceeded using hybrid in-memory + Redis approach

    Counters live in memory and are written through to Redis at most every
    MEMORY_CACHE_SYNC_INTERVAL seconds. Without a Redis client the count is
    local to this process.

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    try:
        current_time = int(time.time())

        cleanup_expired_cache()

        with cache_lock:
            if key not in memory_cache:
                entry = {
                    "count": 0,
                    "reset_time": current_time + window_seconds,
                    "last_redis_sync": current_time,
                }
                if redis_client is not None:
                    try:
                        redis_count = redis_client.get(key)
                        redis_ttl = redis_client.ttl(key)
                        if redis_count and redis_ttl > 0:
                            entry["count"] = int(redis_count)
                            entry["reset_time"] = current_time + redis_ttl
                    except Exception as e:
                        logger.warning(f"⚠️ Failed to load from Redis, using memory only: {e}")
                memory_cache[key] = entry

            cache_entry = memory_cache[key]

            if current_time >= cache_entry["reset_time"]:
                cache_entry["count"] = 0
                cache_entry["reset_time"] = current_time + window_seconds
                cache_entry["last_redis_sync"] = 0

            is_allowed = cache_entry["count"] < limit
            if is_allowed:
                cache_entry["count"] += 1

            time_since_sync = current_time - cache_entry.get("last_redis_sync", 0)
            if redis_client is not None and time_since_sync >= MEMORY_CACHE_SYNC_INTERVAL:
                try:
                    ttl_left = max(1, cache_entry["reset_time"] - current_time)
                    redis_client.set(key, cache_entry["count"], ex=ttl_left)
                    cache_entry["last_redis_sync"] = current_time
                    logger.debug(f"📡 Synced {key} to Redis: {cache_entry['count']}/{limit}")
                except Exception as e:
                    logger.warning(f"⚠️ Failed to sync to Redis: {e}")

            ttl = cache_entry["reset_time"] - current_time
            return is_allowed, cache_entry["count"], max(0, ttl)

    except Exception as e:
        logger.error(f"❌ Rate limit check failed: {str(e)}")
        logger.warning("🔒 Denying request due to rate limiting error (fail-closed mode)")
        return False, limit, 0


def get_identifier(request: Request) -> str:
    """
    Rate limit identity for a request.

    A presented X-ASM-Secret is hashed (never stored raw), otherwise the first
    X-Forwarded-For address is used, falling back to the socket peer address.
    """
    api_key = request.headers.get("x-asm-secret")
    if api_key:
        digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
        return f"apikey:{digest}"

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_api_rate_limit(identifier: str, limit_type: str = "default") -> RateLimitResult:
    """Count one request for identifier against the named limit"""
    config = RATE_LIMITS.get(limit_type, RATE_LIMITS["default"])
    client = get_optional_redis_client()

    is_allowed, count, ttl = check_rate_limit(
        f"rate_limit:{limit_type}:{identifier}", config["requests"], config["window"], client
    )

    if not is_allowed:
        logger.warning(f"🚫 Rate limit EXCEEDED for {limit_type}:{identifier} - {count}/{config['requests']}")

    return RateLimitResult(
        success=is_allowed,
        limit=config["requests"],
        remaining=max(0, config["requests"] - count),
        reset=int(time.time()) + ttl,
        is_distributed=client is not None,
        window=config["window"],
    )


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset),
        "X-RateLimit-Policy": f"{result.limit};w={result.window}",
    }


def create_rate_limiter(limit_type: str = "default"):
    """
    Create a rate limiter dependency for a named limit

    Example usage:
        @router.post("/check", dependencies=[Depends(create_rate_limiter("airspace"))])
        async def check_airspace(...):
            ...
    """

    async def rate_limiter(request: Request):
        result = check_api_rate_limit(get_identifier(request), limit_type)
        request.state.rate_limit = result
        if not result.success:
            retry_after = max(1, result.reset - int(time.time()))
            headers = rate_limit_headers(result)
            headers["Retry-After"] = str(retry_after)
            raise HTTPException(
                status_code=429,
                detail={"error": "Too many requests", "retryAfter": retry_after},
                headers=headers,
            )

    return rate_limiter
