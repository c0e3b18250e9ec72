import asyncio
from typing import Optional

import redis.asyncio as redis
import structlog
from redis.asyncio import Redis

from memorix.domain.exceptions import MessagingException

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client manager for connection pooling and operations."""

    def __init__(self, redis_url: str, max_connections: int = 20) -> None:
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.pool: Optional[redis.ConnectionPool] = None
        self.redis_client: Optional[Redis] = None

    async def initialize(self) -> None:
        """Initialize Redis connection pool."""
        try:
            self.pool = redis.ConnectionPool.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=self.max_connections,
                health_check_interval=30,
            )
            self.redis_client = Redis(connection_pool=self.pool)

            await self.redis_client.ping()
            logger.info("Redis connection initialized", url=self.redis_url)
        except Exception as e:
            logger.error("Failed to initialize Redis connection", error=str(e))
            raise MessagingException(f"Redis initialization failed: {e}")

    async def close(self) -> None:
        """Close Redis connections."""
        client = self.redis_client
        if not client:
            return

        res = client.aclose()
        if asyncio.iscoroutine(res):
            await res

        self.redis_client = None
        logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            if not self.redis_client:
                return False
            await self.redis_client.ping()
            return True
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return False

    def get_client(self) -> Redis:
        """Get Redis client instance."""
        if not self.redis_client:
            raise MessagingException("Redis client not initialized")
        return self.redis_client
