"""Live feeds over WebSocket.

/ws/tokens  new tokens as the realtime monitor creates them
/ws/blocks  block numbers as new heads arrive

Each subscriber has its own bounded outbox drained by a sender task, so a
slow client drops its own messages instead of stalling the monitor. Clients
may send {"type": "filter", "platforms": [...]} to narrow the tokens feed,
and are expected to answer server pings.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/ws",
    tags=["WebSocket"]
)

CHANNELS = ('tokens', 'blocks')

PING_INTERVAL = 30  # seconds
PONG_TIMEOUT = 10   # seconds
OUTBOX_SIZE = 100

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()

@dataclass(eq=False)
class Subscriber:
    """One connected client on one channel."""
    websocket: WebSocket
    channel: str
    platforms: Optional[Set[str]] = None
    last_seen: float = field(default_factory=time.monotonic)
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE))
    tasks: List[asyncio.Task] = field(default_factory=list)

    def wants(self, data: Dict[str, Any]) -> bool:
        if not self.platforms or 'platform' not in data:
            return True
        return data['platform'] in self.platforms

class FeedManager:
    """Fans monitor events out to subscribers."""

    def __init__(self):
        self.subscribers: Dict[str, Set[Subscriber]] = {channel: set() for channel in CHANNELS}

    def count(self, channel: str) -> int:
        return len(self.subscribers.get(channel, ()))

    async def connect(self, websocket: WebSocket, channel: str, keepalive: bool = True) -> Subscriber:
        await websocket.accept()
        subscriber = Subscriber(websocket, channel)
        subscriber.tasks.append(asyncio.create_task(self._sender(subscriber)))
        if keepalive:
            subscriber.tasks.append(asyncio.create_task(self._keepalive(subscriber)))
        self.subscribers[channel].add(subscriber)
        logger.info(f"Subscriber joined {channel} ({self.count(channel)} connected)")
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        if subscriber not in self.subscribers[subscriber.channel]:
            return
        self.subscribers[subscriber.channel].discard(subscriber)
        current = asyncio.current_task()
        for task in subscriber.tasks:
            if task is not current:
                task.cancel()
        logger.info(f"Subscriber left {subscriber.channel} ({self.count(subscriber.channel)} connected)")

    async def _sender(self, subscriber: Subscriber) -> None:
        try:
            while True:
                message = await subscriber.outbox.get()
                await subscriber.websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Send to {subscriber.channel} subscriber failed: {e}")
            self.disconnect(subscriber)

    async def _keepalive(self, subscriber: Subscriber) -> None:
        """Ping periodically; drop the client if it stays silent past the timeout."""
        try:
            while True:
                await asyncio.sleep(PING_INTERVAL)
                self._enqueue(subscriber, {"type": "ping", "timestamp": _timestamp()})
                await asyncio.sleep(PONG_TIMEOUT)
                if time.monotonic() - subscriber.last_seen > PING_INTERVAL + PONG_TIMEOUT:
                    logger.warning(f"No pong from {subscriber.channel} subscriber, closing")
                    self.disconnect(subscriber)
                    try:
                        await subscriber.websocket.close(code=1001, reason="Heartbeat timeout")
                    except RuntimeError:
                        pass
                    return
        except asyncio.CancelledError:
            pass

    def _enqueue(self, subscriber: Subscriber, message: Dict[str, Any]) -> bool:
        try:
            subscriber.outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            logger.warning(f"Outbox full for a {subscriber.channel} subscriber, dropping message")
            return False

    async def handle_message(self, subscriber: Subscriber, message: Dict[str, Any]) -> None:
        subscriber.last_seen = time.monotonic()
        kind = message.get("type")
        if kind == "ping":
            self._enqueue(subscriber, {"type": "pong", "timestamp": _timestamp()})
        elif kind == "filter":
            platforms = message.get("platforms") or []
            subscriber.platforms = set(platforms) if platforms else None
            self._enqueue(subscriber, {"type": "filter", "platforms": sorted(subscriber.platforms or [])})

    async def publish(self, channel: str, data: Dict[str, Any]) -> int:
        """Queue an update for every matching subscriber.

        Returns:
            Number of subscribers the update was queued for

        Raises:
            ValueError: If the channel does not exist
        """
        if channel not in self.subscribers:
            raise ValueError(f"Invalid channel: {channel}")
        message = {"type": "update", "channel": channel, "data": data, "timestamp": _timestamp()}
        return sum(
            self._enqueue(subscriber, message)
            for subscriber in list(self.subscribers[channel])
            if subscriber.wants(data)
        )

manager = FeedManager()

async def serve(websocket: WebSocket, channel: str) -> None:
    subscriber = await manager.connect(websocket, channel)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug(f"Ignoring non-JSON message on {channel}")
                continue
            if isinstance(message, dict):
                await manager.handle_message(subscriber, message)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error on {channel}: {e}")
    finally:
        manager.disconnect(subscriber)

@router.websocket("/tokens")
async def tokens_feed(websocket: WebSocket):
    """New tokens as they are discovered."""
    await serve(websocket, "tokens")

@router.websocket("/blocks")
async def blocks_feed(websocket: WebSocket):
    """New block numbers seen by the realtime monitor."""
    await serve(websocket, "blocks")

async def broadcast_update(channel: str, data: Dict[str, Any]) -> None:
    """Publish a monitor event to a channel's subscribers."""
    delivered = await manager.publish(channel, data)
    logger.debug(f"Queued {channel} update for {delivered} subscribers")

__all__ = ['router', 'manager', 'broadcast_update', 'FeedManager', 'Subscriber']
