from typing import Any, Optional, Type, TypeVar
import json

import redis.asyncio as redis
import structlog
from pydantic import BaseModel, ValidationError

from .errors import NotFoundError

logger = structlog.get_logger()

M = TypeVar('M', bound=BaseModel)


class RedisManager:
    def __init__(self, redis_url: str, default_ttl: int = 300, client: Optional[redis.Redis] = None):
        """Initialize Redis manager with connection URL and default TTL."""
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.redis: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self.redis.ping()
            logger.info("redis_connection_established")
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis:
            await self.redis.aclose()
            logger.info("redis_connection_closed")

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            if not self.redis:
                await self.connect()

            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.error("redis_get_failed", key=key, error=str(e))
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> bool:
        """Set value in cache with optional TTL."""
        try:
            if not self.redis:
                await self.connect()

            ttl = ttl or self.default_ttl
            serialized_value = json.dumps(value)
            await self.redis.set(key, serialized_value, ex=ttl)
            return True
        except Exception as e:
            logger.error("redis_set_failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        try:
            if not self.redis:
                await self.connect()

            await self.redis.delete(key)
            return True
        except Exception as e:
            logger.error("redis_delete_failed", key=key, error=str(e))
            return False

    async def get_model(self, key: str, model: Type[M]) -> M:
        """Get a pydantic model stored under key.

        Raises NotFoundError when the key is absent, expired or unreadable.
        """
        value = await self.get(key)
        if value is None:
            raise NotFoundError(f"{key} is not cached")
        try:
            return model.model_validate(value)
        except ValidationError as e:
            logger.warning("redis_model_invalid", key=key, model=model.__name__, error=str(e))
            raise NotFoundError(f"{key} holds an invalid {model.__name__}") from e

    async def set_model(self, key: str, value: BaseModel, ttl: Optional[int] = None) -> bool:
        """Store a pydantic model under key."""
        return await self.set(key, value.model_dump(mode="json", by_alias=True), ttl)
