"""
Async Redis Reliable - async Redis client with automatic reconnection.

Connection errors trigger a reconnect with exponential backoff and one retry
of the failed operation. Unlike a cache client, the zone store cannot treat a
failed write as a miss, so persistent failures are raised to the caller.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from errors import AsyncConnectionFailureError, StoreError


class AsyncReliableRedis:
    """An async Redis client with automatic reconnection capabilities."""

    def __init__(self, host='localhost', port=6379, password=None, db=0,
                 socket_timeout=5, socket_connect_timeout=5, logger=None,
                 max_retries=5, on_connection_failure=None):
        """Initialize the client. Call connect() before use.

        Args:
            host (str): Redis host address
            port (int): Redis port number
            password (str, optional): Redis password
            db (int): Redis database number
            socket_timeout (int): Socket timeout in seconds
            socket_connect_timeout (int): Connection timeout in seconds
            logger (logging.Logger, optional): Logger instance
            max_retries (int): Maximum number of reconnection attempts
            on_connection_failure (callable, optional): Called (sync or async)
                with (client, context) before AsyncConnectionFailureError is raised
        """
        self.host = host
        self.port = port
        self.password = password
        self.db = db
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.max_retries = max_retries
        self.on_connection_failure = on_connection_failure

        self.consecutive_failures = 0
        self.total_reconnection_attempts = 0

        self.logger = logger or logging.getLogger(__name__)

        # Responses are always decoded; every stored value is text
        self.client: Optional[redis.Redis] = None
        self._lock = asyncio.Lock()

    async def connect(self):
        """Connect to Redis, raising AsyncConnectionFailureError if unreachable."""
        if not await self._initialize_connection():
            await self._handle_persistent_failure("Initial connection failed")

    async def _initialize_connection(self) -> bool:
        try:
            self.client = redis.Redis(
                host=self.host,
                port=self.port,
                password=self.password,
                db=self.db,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_connect_timeout,
                decode_responses=True
            )
            await self.client.ping()
            self.logger.info(f"Redis connection to {self.host}:{self.port}/{self.db} initialized")
            self.consecutive_failures = 0
            return True
        except (RedisError, OSError) as e:
            self.logger.error(f"Failed to initialize Redis connection: {e}")
            return False

    async def _handle_persistent_failure(self, context: str):
        self.logger.critical(f"Redis connection permanently failed: {context}")

        if self.on_connection_failure:
            try:
                if asyncio.iscoroutinefunction(self.on_connection_failure):
                    await self.on_connection_failure(self, context)
                else:
                    self.on_connection_failure(self, context)
            except Exception as e:
                self.logger.error(f"Error in connection failure handler: {e}")

        raise AsyncConnectionFailureError(
            f"Redis connection failed after {self.max_retries} attempts: {context}")

    async def _reconnect(self):
        """Reconnect with exponential backoff (1s doubling, capped at 10s)."""
        async with self._lock:
            retry_delay = 1
            self.total_reconnection_attempts += 1

            for attempt in range(1, self.max_retries + 1):
                self.logger.info(f"Redis reconnection attempt {attempt}/{self.max_retries}")
                if self.client:
                    try:
                        await self.client.aclose()
                    except (RedisError, OSError) as e:
                        self.logger.debug(f"Ignoring error closing stale connection: {e}")

                if await self._initialize_connection():
                    self.logger.info("Successfully reconnected to Redis")
                    return

                if attempt < self.max_retries:
                    await asyncio.sleep(retry_delay)
                    retry_delay = min(retry_delay * 2, 10)

            self.consecutive_failures += 1
            await self._handle_persistent_failure(
                f"Reconnection failed after {self.max_retries} attempts")

    async def execute(self, operation: str, *args, **kwargs):
        """Execute a Redis command by name with reconnection on connection loss.

        Raises:
            AsyncConnectionFailureError: reconnection was exhausted
            StoreError: the command failed for any other reason
        """
        if not self.client:
            raise StoreError("Redis client not initialized. Call connect() first.")

        try:
            result = await getattr(self.client, operation)(*args, **kwargs)
            self.consecutive_failures = 0
            return result
        except RedisConnectionError as e:
            self.logger.warning(f"Redis connection error during {operation}: {e}")
            await self._reconnect()
            try:
                return await getattr(self.client, operation)(*args, **kwargs)
            except RedisError as retry_e:
                raise StoreError(f"Redis {operation} failed after reconnection: {retry_e}") from retry_e
        except RedisError as e:
            self.logger.error(f"Error during Redis operation {operation}: {e}")
            raise StoreError(f"Redis {operation} failed: {e}") from e

    # Hashes

    async def hset(self, key: str, mapping: Dict[str, str]):
        return await self.execute('hset', key, mapping=mapping)

    async def hsetnx(self, key: str, field: str, value: str) -> bool:
        return bool(await self.execute('hsetnx', key, field, value))

    async def hgetall(self, key: str) -> Dict[str, str]:
        return await self.execute('hgetall', key) or {}

    async def hdel(self, key: str, *fields):
        return await self.execute('hdel', key, *fields)

    # Keys

    async def delete(self, *keys) -> int:
        if not keys:
            return 0
        return await self.execute('delete', *keys)

    async def incr(self, key: str) -> int:
        return await self.execute('incr', key)

    # Sets

    async def sadd(self, key: str, *values):
        return await self.execute('sadd', key, *values)

    async def srem(self, key: str, *values):
        return await self.execute('srem', key, *values)

    async def smembers(self, key: str) -> set:
        return await self.execute('smembers', key) or set()

    # Sorted sets

    async def zadd(self, key: str, mapping: Dict[str, float]):
        return await self.execute('zadd', key, mapping)

    async def zrem(self, key: str, *members) -> int:
        return await self.execute('zrem', key, *members)

    async def zrange(self, key: str, start: int, end: int) -> List[str]:
        return await self.execute('zrange', key, start, end)

    async def zcard(self, key: str) -> int:
        return await self.execute('zcard', key)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'consecutive_failures': self.consecutive_failures,
            'total_reconnection_attempts': self.total_reconnection_attempts,
            'connected': self.client is not None
        }

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            self.logger.info("Redis connection closed")
