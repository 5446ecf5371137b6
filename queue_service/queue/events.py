"""
Queue Event Bus

Broadcasts committed queue mutations (added, updated, removed,
expired, normalized) to in-process subscribers and, when Redis is
configured, to a pub/sub channel for other listeners.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Dict, List, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from .models import QueueEntry

logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class QueueEventBus:
    """
    Fan-out of queue events.

    Publishing never raises: subscriber and Redis failures are logged
    so a broken listener cannot fail a committed mutation.
    """

    EVENTS_CHANNEL = "queues:events"

    def __init__(self, redis_url: Optional[str] = None, redis: Optional[Redis] = None):
        """
        Initialize event bus.

        Args:
            redis_url: Redis connection URL (None = local subscribers only)
            redis: Pre-built client (tests inject a fake here)
        """
        self.redis_url = redis_url
        self._redis: Optional[Redis] = redis
        self._subscribers: List[Subscriber] = []

    async def connect(self) -> None:
        """Establish Redis connection if a URL is configured."""
        if not self.redis_url or self._redis is not None:
            return
        try:
            self._redis = await aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await self._redis.ping()
            logger.info("Queue event bus connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect event bus to Redis: {e}")
            self._redis = None

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Queue event bus disconnected from Redis")

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    def subscribe(self, callback: Subscriber) -> None:
        """
        Subscribe to queue events.

        Args:
            callback: Async function to call on events
        """
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        """
        Unsubscribe from queue events.

        Args:
            callback: Previously registered callback
        """
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def publish(self, action: str, entry: Optional[QueueEntry] = None, **extra: Any) -> Dict[str, Any]:
        """
        Publish a queue event to Redis and all subscribers.

        Args:
            action: Event action (added, updated, removed, expired, normalized)
            entry: Queue entry involved, if any
            **extra: Additional payload fields

        Returns:
            The event that was published
        """
        event: Dict[str, Any] = {
            "action": action,
            "item": entry.to_dict() if entry else None,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        event.update(extra)

        if self._redis:
            try:
                await self._redis.publish(self.EVENTS_CHANNEL, json.dumps(event))
            except Exception as e:
                logger.warning(f"Failed to publish to Redis pub/sub: {e}")

        for callback in list(self._subscribers):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"Subscriber callback error: {e}")

        return event
