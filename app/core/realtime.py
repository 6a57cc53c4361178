"""
In-process realtime hub for conversation channels.

Publishers push events onto every subscriber queue of a channel; the chat
websocket drains its queue to the client. Delivery is at-least-once with
best-effort ordering, so clients treat an event as "append or refetch" and
rely on the persisted history for order.
"""
import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any
from uuid import UUID

from app.schemas.chat import RealtimeEvent

log = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100


def conversation_channel(conversation_id: UUID) -> str:
    return f"conversation-{conversation_id}"


class RealtimeHub:
    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._queue_size = queue_size
        self._subscribers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers[channel].append(queue)
        log.debug("Subscribed to %s", channel)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        with self._lock:
            queues = self._subscribers.get(channel, [])
            if queue in queues:
                queues.remove(queue)
            if not queues:
                self._subscribers.pop(channel, None)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, []))

    async def publish(self, channel: str, event: RealtimeEvent, payload: dict[str, Any]) -> int:
        """Returns the number of subscribers the event was queued for."""
        message = {"event": event.value, "channel": channel, "payload": payload}
        with self._lock:
            queues = list(self._subscribers.get(channel, []))

        delivered = 0
        for queue in queues:
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                log.warning("Realtime queue full on %s, dropping event", channel)
        return delivered

    async def publish_message_created(self, conversation_id: UUID, payload: dict[str, Any]) -> None:
        """Publish without ever raising; a failed publish never fails a send."""
        try:
            await self.publish(
                conversation_channel(conversation_id),
                RealtimeEvent.MESSAGE_CREATED,
                payload,
            )
        except Exception:
            log.exception("Realtime publish failed for conversation %s", conversation_id)


hub = RealtimeHub()
