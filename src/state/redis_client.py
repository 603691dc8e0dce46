# Understood/src/state/redis_client.py
# @ai-rules:
# 1. [Pattern]: One connection per process, opened in main.lifespan() and handed to BrandStore.
# 2. [Constraint]: decode_responses=True. Every value BrandStore reads back is a str (JSON or plain).
# 3. [Gotcha]: REDIS_URL wins over REDIS_HOST/PORT/PASSWORD when both are set.
"""Async Redis connection with startup retry for the Understood store."""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "")
REDIS_RETRY_ATTEMPTS = int(os.getenv("REDIS_RETRY_ATTEMPTS", "10"))
REDIS_RETRY_DELAY = float(os.getenv("REDIS_RETRY_DELAY", "2.0"))


def build_redis_url(host: str, port: int, password: str = "", db: int = 0) -> str:
    auth = f":{password}@" if password else ""
    return f"redis://{auth}{host}:{port}/{db}"


class RedisClient:
    """Owns the process-wide redis.asyncio connection."""

    def __init__(
        self,
        url: Optional[str] = None,
        attempts: int = REDIS_RETRY_ATTEMPTS,
        delay: float = REDIS_RETRY_DELAY,
    ):
        self.url = url or REDIS_URL or build_redis_url(
            os.getenv("REDIS_HOST", "localhost"),
            int(os.getenv("REDIS_PORT", "6379")),
            os.getenv("REDIS_PASSWORD", ""),
        )
        self.attempts = max(1, attempts)
        self.delay = delay
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> redis.Redis:
        """Open and ping the connection. Redis may come up after the API, so failures are retried.

        Raises:
            ConnectionError: Still unreachable after all attempts.
        """
        if self._client is not None:
            return self._client

        for attempt in range(1, self.attempts + 1):
            client = redis.Redis.from_url(self.url, decode_responses=True)
            try:
                await client.ping()
            except (redis.ConnectionError, ConnectionError) as e:
                await client.aclose()
                if attempt == self.attempts:
                    raise ConnectionError(f"Redis unreachable after {self.attempts} attempts: {e}") from e
                logger.warning(f"Redis not ready ({attempt}/{self.attempts}): {e}. Retrying in {self.delay}s")
                await asyncio.sleep(self.delay)
                continue
            self._client = client
            logger.info(f"Redis connected (attempt {attempt})")
            return client

        raise ConnectionError("Redis connect loop exited without a client")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
