# relay/infra/redis_store.py
"""
Redis-backed queue store.

Source and target queues are plain Redis lists: producers RPUSH to the
tail, the consumer BLPOPs from the head. One ``redis.asyncio.Redis``
client (with its own connection pool) is shared by the consumer loop and
all HTTP requests; a blocking BLPOP holds one pooled connection while
RPUSHes from other coroutines use the rest.

Redis exceptions never leave this module: they are re-raised as
``QueueStoreError`` so the core stays independent of the client library.
Replies are read as bytes and decoded in ``pop``, so a non-UTF-8 element
reaches the dispatcher as an invalid directive instead of failing the read.
"""
from __future__ import annotations

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from relay.core.ports import QueueStoreError
from relay.infra.logging_config import get_logger

logger = get_logger(__name__)


class RedisQueueStore:
    """AsyncQueueStore implementation over Redis lists."""

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "RedisQueueStore":
        client = redis.Redis.from_url(
            settings.redis_dsn,
            decode_responses=False,
            socket_connect_timeout=settings.redis_connect_timeout,
            max_connections=settings.redis_max_connections,
        )
        # redis_url may embed a password, never log it
        addr = "REDIS_URL" if settings.redis_url else settings.redis_addr
        logger.info(
            f"Redis client created: addr={addr}, "
            f"max_connections={settings.redis_max_connections}"
        )
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    async def push(self, queue: str, payload: str) -> int:
        try:
            return await self._client.rpush(queue, payload)
        except RedisError as exc:
            raise QueueStoreError(f"RPUSH {queue} failed: {exc}") from exc

    async def pop(self, queue: str, timeout: float) -> Optional[str | bytes]:
        try:
            result = await self._client.blpop([queue], timeout=timeout)
        except RedisError as exc:
            raise QueueStoreError(f"BLPOP {queue} failed: {exc}") from exc

        if result is None:
            return None

        # BLPOP replies with (list name, element)
        if len(result) < 2:
            raise QueueStoreError(f"BLPOP {queue} returned an invalid reply: {result!r}")
        return _decode(result[1])

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            raise QueueStoreError(f"PING failed: {exc}") from exc

    async def close(self) -> None:
        logger.info("Closing Redis client")
        await self._client.aclose()
        logger.info("Redis client closed")


def _decode(element: bytes | str) -> str | bytes:
    """UTF-8 element as str; undecodable bytes are passed through for the dispatcher to reject."""
    if isinstance(element, str):
        return element
    try:
        return element.decode("utf-8")
    except UnicodeDecodeError:
        return element
