"""
Change feed.

In-process publish/subscribe broker behind the WebSocket endpoints. Store
dashboards subscribe to ``company:<id>``, the driver app to
``driver:<id>``. Each subscriber owns a bounded queue; when a consumer falls
behind, the oldest pending event is dropped.
"""

import asyncio
import enum
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Optional

from sqlalchemy import inspect

from orderdesk.core.config import get_settings

logger = logging.getLogger(__name__)


def row_to_dict(row: Any) -> dict:
    """Column values of an ORM row, JSON-ready."""
    data = {}
    for attr in inspect(row).mapper.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, enum.Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        data[attr.key] = value
    return data


def company_channel(company_id: str) -> str:
    return f"company:{company_id}"


def driver_channel(driver_id: str) -> str:
    return f"driver:{driver_id}"


class ChangeFeed:
    """Fan-out of change events to per-channel subscriber queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(channel, set()).add(queue)
        logger.debug(f"Subscriber added to {channel} ({len(self._subscribers[channel])} total)")
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(channel)
        if not queues:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, ()))

    def publish(self, channel: str, event: dict) -> int:
        """Deliver ``event`` to every subscriber of ``channel``; returns the count."""
        queues = self._subscribers.get(channel, ())
        for queue in queues:
            if queue.full():
                queue.get_nowait()
                logger.warning(f"Change feed {channel}: slow consumer, dropped oldest event")
            queue.put_nowait(event)
        return len(queues)

    def publish_change(
        self,
        company_id: str,
        table: str,
        event: str,
        new: Optional[Any] = None,
        old: Optional[dict] = None,
        driver_id: Optional[str] = None,
    ) -> None:
        """
        Publish an INSERT / UPDATE / DELETE of ``table``.

        ``new`` may be an ORM row or a dict. Events concerning a driver are also
        delivered on that driver's channel.
        """
        payload = {
            "table": table,
            "event": event,
            "new": row_to_dict(new) if new is not None and not isinstance(new, dict) else new,
            "old": old,
        }
        self.publish(company_channel(company_id), payload)
        if driver_id:
            self.publish(driver_channel(driver_id), payload)


@lru_cache()
def get_change_feed() -> ChangeFeed:
    return ChangeFeed(queue_size=get_settings().realtime_queue_size)
