"""Live session snapshots over Redis pub/sub.

Mutations publish the committed snapshot on ``session:{id}``; a
SessionSubscription yields the current snapshot first and then every
published one until it is closed. Opening a new subscription restarts the
sequence from the current state.
"""
import json
import logging
import uuid
from collections.abc import Awaitable, Callable

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

POLL_TIMEOUT_SECONDS = 1.0


def channel_for(session_id: uuid.UUID | str) -> str:
    return f"session:{session_id}"


async def publish(redis_client, snapshot: dict) -> None:
    try:
        await redis_client.publish(channel_for(snapshot["id"]), json.dumps(snapshot, default=str))
    except RedisError:
        # The mutation is already committed; subscribers resync on reconnect
        logger.warning("Failed to publish snapshot for session %s", snapshot["id"])


class SessionSubscription:
    def __init__(
        self,
        redis_client,
        session_id: uuid.UUID,
        load_snapshot: Callable[[], Awaitable[dict]],
    ):
        self._redis = redis_client
        self._channel = channel_for(session_id)
        self._load_snapshot = load_snapshot
        self._pubsub = None
        self._initial: dict | None = None
        self._closed = False

    async def open(self) -> "SessionSubscription":
        # Subscribe before reading so no mutation falls between the two
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._initial = await self._load_snapshot()
        return self

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "SessionSubscription":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def __aiter__(self) -> "SessionSubscription":
        return self

    async def __anext__(self) -> dict:
        if self._pubsub is None:
            raise RuntimeError("Subscription is not open")

        if self._closed:
            raise StopAsyncIteration

        if self._initial is not None:
            snapshot, self._initial = self._initial, None
            return snapshot

        while not self._closed:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=POLL_TIMEOUT_SECONDS
            )
            if message is None:
                continue
            return json.loads(message["data"])

        raise StopAsyncIteration
