"""SiteStock — Redis client for the KPI cache."""
from typing import Optional

import redis.asyncio as redis

from sitestock.config import get_settings

_redis: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis | None:
    """Get Redis connection (application cache DB). None when caching is disabled."""
    global _redis
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    if _redis is None:
        _redis = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis


def kpi_cache_key(tenant_id: str) -> str:
    """Cache key for tenant KPIs: stock:kpis:{tid}"""
    return f"stock:kpis:{tenant_id}"


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None
