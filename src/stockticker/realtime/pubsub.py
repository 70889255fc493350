"""Redis pub/sub — fan changes out to other processes.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for a ticker (clients get a full snapshot on connect).

Only one process should own the change source — one LISTEN connection,
one poller. Other processes (more API workers behind a load balancer,
a metrics consumer) SUBSCRIBE to the Redis channel instead. To the
registry, the channel is just one more subscriber.
"""

import json
from typing import Any

import redis.asyncio as aioredis

from stockticker.realtime.registry import Subscriber


async def connect_redis(redis_url: str) -> aioredis.Redis:
    """Open a Redis connection pool and verify it answers."""
    client = aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    return client


class RedisChannelSubscriber(Subscriber):
    """Republishes every message on a Redis channel."""

    kind = "redis"

    def __init__(self, client: aioredis.Redis, channel: str):
        super().__init__(f"redis-{channel}")
        self.client = client
        self.channel = channel

    async def send(self, message: dict[str, Any]) -> None:
        await self.client.publish(self.channel, json.dumps(message))
