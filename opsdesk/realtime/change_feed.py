"""
In-process change feed for row-level insert/update/delete events.

Repositories publish a ChangeEvent after each successful write on the
tables they own; views subscribe per table and refetch. A feed belongs to
one application context and is closed with it. When Redis is configured,
RedisChangeRelay forwards every event as JSON so other processes can react.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

ALL_TABLES = "*"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A single row change on a table."""

    table: str
    event_type: ChangeType
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: datetime = field(default_factory=datetime.now)

    @property
    def row_id(self) -> Optional[str]:
        return self.record.get("id") or self.old_record.get("id")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON publish."""
        return {
            "table": self.table,
            "event_type": self.event_type.value,
            "record": self.record,
            "old_record": self.old_record,
            "commit_timestamp": self.commit_timestamp.isoformat(),
        }


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    """Handle returned by ChangeFeed.subscribe()."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: ChangeCallback):
        self.feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.feed._remove(self)
            self.active = False


class ChangeFeed:
    """Publish/subscribe channel for table change events."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._relays: List["RedisChangeRelay"] = []
        self._closed = False

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        """Register an async callback for one table, or "*" for every table."""
        if self._closed:
            raise RuntimeError("Change feed is closed")
        subscription = Subscription(self, table, callback)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to changes on {table}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_relay(self, relay: "RedisChangeRelay") -> None:
        self._relays.append(relay)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> int:
        """
        Deliver an event to every matching subscriber.

        A failing subscriber is logged and skipped; the others still run.

        Returns:
            Number of subscribers that handled the event without error
        """
        if self._closed:
            return 0

        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.table not in (event.table, ALL_TABLES):
                continue
            try:
                await subscription.callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change subscriber failed for {event.table} {event.event_type.value}: {e}",
                    exc_info=True
                )

        for relay in self._relays:
            await relay.publish(event)

        return delivered

    async def close(self) -> None:
        """Drop all subscriptions and close relays."""
        for subscription in list(self._subscriptions):
            subscription.active = False
        self._subscriptions.clear()
        for relay in self._relays:
            await relay.close()
        self._relays.clear()
        self._closed = True
        logger.info("Change feed closed")


class RedisChangeRelay:
    """Forwards change events to Redis channels opsdesk:changes:<table>."""

    CHANNEL_PREFIX = "opsdesk:changes"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.client = client

    async def connect(self) -> bool:
        if self.client is not None:
            return True
        try:
            self.client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
            )
            await self.client.ping()
            logger.info("Redis change relay connected")
            return True
        except Exception as e:
            logger.warning(f"Redis change relay unavailable: {e}")
            self.client = None
            return False

    def channel_for(self, table: str) -> str:
        return f"{self.CHANNEL_PREFIX}:{table}"

    async def publish(self, event: ChangeEvent) -> bool:
        """Publish one event; Redis failures are logged, never raised."""
        if self.client is None:
            return False
        try:
            await self.client.publish(
                self.channel_for(event.table),
                json.dumps(event.to_dict(), default=str),
            )
            return True
        except Exception as e:
            logger.warning(f"Failed to relay change on {event.table}: {e}")
            return False

    async def close(self) -> None:
        if self.client is not None:
            try:
                await self.client.close()
            except Exception as e:
                logger.error(f"Error closing Redis change relay: {e}")
            finally:
                self.client = None


async def publish_change(
    feed: Optional[ChangeFeed],
    table: str,
    event_type: ChangeType,
    record: Optional[Dict[str, Any]] = None,
    old_record: Optional[Dict[str, Any]] = None,
) -> int:
    """Publish a row change if a feed is attached; repositories call this after commit."""
    if feed is None:
        return 0
    return await feed.publish(
        ChangeEvent(
            table=table,
            event_type=event_type,
            record=record or {},
            old_record=old_record or {},
        )
    )
