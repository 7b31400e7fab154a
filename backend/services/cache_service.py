import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from config import settings
from services.metrics_service import metrics_service

logger = logging.getLogger(__name__)

RACK_STATE_PREFIX = "rack_state:"


class CacheService:
    """
    Redis-backed latest-known rack state and alert update channel.
    Every call degrades to a no-op when Redis is unreachable.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.redis_url
        self.redis_pool = None
        self._connection = None

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def connect(self):
        """Initialize Redis connection pool"""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=settings.redis_max_connections,
                retry_on_timeout=True,
                socket_keepalive=True,
                health_check_interval=30,
            )
            self._connection = redis.Redis(connection_pool=self.redis_pool)

            # Test connection
            await self._connection.ping()
            logger.info("✅ Redis cache service connected")

        except Exception as e:
            logger.warning(f"⚠️ Redis cache service unavailable: {str(e)}")
            self._connection = None

    async def disconnect(self):
        """Close Redis connections"""
        if self._connection:
            await self._connection.aclose()
        if self.redis_pool:
            await self.redis_pool.disconnect()

    async def ping(self) -> bool:
        if not self._connection:
            return False
        try:
            return bool(await self._connection.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {str(e)}")
            return False

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        if not self._connection:
            return None

        try:
            value = await self._connection.get(key)
            if value:
                metrics_service.record_cache_operation("get", "hit")
                return json.loads(value)
            metrics_service.record_cache_operation("get", "miss")
            return None
        except Exception as e:
            metrics_service.record_cache_operation("get", "error")
            logger.warning(f"Cache get error for key {key}: {str(e)}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        """Set value in cache with TTL"""
        if not self._connection:
            return False

        try:
            await self._connection.setex(key, ttl, json.dumps(value, default=str))
            metrics_service.record_cache_operation("set", "ok")
            return True
        except Exception as e:
            metrics_service.record_cache_operation("set", "error")
            logger.warning(f"Cache set error for key {key}: {str(e)}")
            return False

    async def publish(self, channel: str, message: Any) -> bool:
        """Publish message to Redis channel"""
        if not self._connection:
            return False

        try:
            await self._connection.publish(channel, json.dumps(message, default=str))
            return True
        except Exception as e:
            logger.warning(f"Cache publish error for channel {channel}: {str(e)}")
            return False

    async def set_rack_state(self, pdu_id: str, state: Dict[str, Any]) -> bool:
        """Store the latest evaluation of a PDU, including its warning reasons"""
        return await self.set(
            f"{RACK_STATE_PREFIX}{pdu_id}", state, ttl=settings.rack_state_ttl_seconds
        )

    async def get_rack_states(self) -> List[Dict[str, Any]]:
        """Every cached rack state"""
        if not self._connection:
            return []

        try:
            keys = [key async for key in self._connection.scan_iter(f"{RACK_STATE_PREFIX}*")]
            if not keys:
                return []
            values = await self._connection.mget(keys)
            return [json.loads(v) for v in values if v]
        except Exception as e:
            logger.warning(f"Cache rack state scan error: {str(e)}")
            return []
