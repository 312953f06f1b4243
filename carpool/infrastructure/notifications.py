"""
Notification adapters.

``RedisNotifier`` publishes one JSON message per event on the
``notifications:<user_id>`` channel; a push gateway or websocket relay
subscribes there.  Publishing is fire-and-forget: nobody waits for a
subscriber, and errors surface to the ledger which logs them.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import redis.asyncio as aioredis

from carpool.domain.enums import NotificationKind
from carpool.domain.ports import Notifier

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "notifications"


def channel_for(user_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{user_id}"


class RedisNotifier(Notifier):
    def __init__(
        self,
        client_factory: Callable[[], Awaitable[aioredis.Redis]],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client_factory = client_factory
        self.clock = clock

    async def notify(
        self, user_id: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> None:
        message = json.dumps(
            {
                "user_id": user_id,
                "kind": kind.value,
                "payload": payload,
                "sent_at": self.clock().isoformat(),
            },
            default=str,
        )
        client = await self.client_factory()
        receivers = await client.publish(channel_for(user_id), message)
        logger.debug(
            "Published %s for user %s (%d subscriber(s))", kind.value, user_id, receivers
        )


class LoggingNotifier(Notifier):
    """Writes events to the log only.  Handy when Redis is not configured."""

    async def notify(
        self, user_id: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> None:
        logger.info("Notify %s: %s %s", user_id, kind.value, payload)
