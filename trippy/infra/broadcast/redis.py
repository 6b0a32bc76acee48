"""Redis pub/sub broadcaster for multi-process deployments."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

from trippy.core.security import sanitize_for_logging

from .base import Broadcast

logger = logging.getLogger(__name__)


class RedisBroadcaster(Broadcast):
    """Redis Pub/Sub broadcaster; every server process sees every change."""

    def __init__(self, url: str) -> None:
        self._url = url
        self._pool: Optional[aioredis.Redis] = None
        self._closed = False

    async def _ensure(self) -> aioredis.Redis:
        if self._pool is None:
            self._pool = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=10,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            logger.info("Redis broadcaster connected")
        return self._pool

    async def publish(self, channel: str, message: str) -> None:
        if self._closed:
            return
        redis = await self._ensure()
        await redis.publish(channel, message)

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        redis = await self._ensure()
        pubsub = redis.pubsub()
        safe_channel = sanitize_for_logging(channel)

        try:
            await pubsub.subscribe(channel)
            logger.debug("Subscribed to Redis channel: %s", safe_channel)

            while not self._closed:
                try:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=1.0
                    )
                except aioredis.RedisError as e:
                    logger.error("Error receiving from channel %s: %s", safe_channel, e)
                    await asyncio.sleep(0.1)
                    continue
                if message and message.get("type") == "message":
                    data = message.get("data")
                    if data is not None:
                        yield str(data)
                else:
                    await asyncio.sleep(0.01)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
                logger.debug("Unsubscribed from Redis channel: %s", safe_channel)
            except aioredis.RedisError as e:
                logger.error("Error unsubscribing from %s: %s", safe_channel, e)

    async def close(self) -> None:
        self._closed = True
        if self._pool is not None:
            try:
                await self._pool.aclose()
                logger.info("Redis broadcaster closed")
            except aioredis.RedisError as e:
                logger.error("Error closing Redis connection: %s", e)
            self._pool = None
