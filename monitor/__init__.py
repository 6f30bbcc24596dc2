"""Monitor module for realtime token discovery.

This module listens to the factory's CoinCreated logs and new block headers:
- Every log is recorded as a detection, decodable or not
- Decoded logs are reconciled into the token registry
- New tokens get an immediate stats refresh
- Listeners (the API websocket feed) are told about new tokens and blocks

Missed logs during a disconnect are not replayed here; the backfill and
bytecode scan workers pick them up.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from detections import (
    Detection, DetectionIntake, DecodeFailure, decode_coin_created, SOURCE_REALTIME
)
from rpc.subscription import LogSubscription
from tokens import TokenRegistry, classify_platform

logger = logging.getLogger(__name__)

Broadcast = Callable[[str, Dict[str, Any]], Awaitable[None]]

class TokenMonitor:
    """Realtime factory log monitor."""

    def __init__(self, registry: Optional[TokenRegistry] = None,
                 subscription: Optional[LogSubscription] = None,
                 stats_engine=None,
                 broadcast: Optional[Broadcast] = None):
        """Initialize the token monitor.

        Args:
            registry: Token registry to reconcile into
            subscription: Log subscription, defaults to the provider websocket
            stats_engine: Optional StatsEngine for refreshing new tokens
            broadcast: Optional async callable(channel, data) for live updates
        """
        self.registry = registry or TokenRegistry()
        self.intake = DetectionIntake(self.registry.store)
        self.subscription = subscription or LogSubscription()
        self.stats_engine = stats_engine
        self.broadcast = broadcast
        self.running = True
        self.notification_queue = asyncio.Queue()
        self.latest_block: Optional[int] = None
        self._refresh_tasks: Set[asyncio.Task] = set()

    async def handle_notification(self, kind: str, payload: Dict[str, Any]) -> None:
        """Queue a subscription notification instead of processing it inline."""
        await self.notification_queue.put((kind, payload))

    async def process_new_log(self, log: Dict[str, Any]) -> Optional[str]:
        """Record and reconcile one factory log.

        Returns:
            The token address if a new token was created
        """
        if log.get('removed'):
            logger.info(f"Ignoring removed log in tx {log.get('transactionHash')}")
            return None

        try:
            event = decode_coin_created(log)
        except DecodeFailure as e:
            logger.warning(f"Undecodable factory log in tx {log.get('transactionHash')}: {e}")
            await self.intake.record(Detection(
                source=SOURCE_REALTIME,
                tx_hash=log.get('transactionHash'),
                factory_address=(log.get('address') or '').lower() or None,
                raw_data=log
            ))
            return None

        detection = Detection.from_event(event, SOURCE_REALTIME, raw_data=log)
        detection.metadata['launch_timestamp'] = datetime.now(timezone.utc)
        await self.intake.record(detection)
        result = await self.registry.ingest(detection)

        if not result.created:
            logger.debug(f"Token {event.token_address} already known, provenance added")
            return None

        logger.info(f"New coin {event.symbol} ({event.token_address}) by {event.creator_address}")
        if self.broadcast:
            await self._notify('tokens', {
                'event': 'new_token',
                'address': event.token_address,
                'name': event.name,
                'symbol': event.symbol,
                'creator_address': event.creator_address,
                'platform': classify_platform(detection, detection.metadata),
                'stage': result.stage,
            })
        if self.stats_engine:
            task = asyncio.create_task(self.stats_engine.refresh([event.token_address]))
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)
        return event.token_address

    async def process_new_block(self, header: Dict[str, Any]) -> None:
        number = header.get('number')
        if number is None:
            return
        self.latest_block = int(number, 16) if isinstance(number, str) else number
        logger.debug(f"New block {self.latest_block}")
        if self.broadcast:
            await self._notify('blocks', {'event': 'new_block', 'number': self.latest_block})

    async def _notify(self, channel: str, data: Dict[str, Any]) -> None:
        try:
            await self.broadcast(channel, data)
        except Exception as e:
            logger.error(f"Failed to broadcast to {channel}: {e}")

    async def process_notifications(self):
        """Process notifications from the queue"""
        while self.running:
            try:
                kind, payload = await self.notification_queue.get()

                if kind == 'logs':
                    await self.process_new_log(payload)
                elif kind == 'newHeads':
                    await self.process_new_block(payload)

                self.notification_queue.task_done()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing notification: {e}")
                self.notification_queue.task_done()
                await asyncio.sleep(1)

    async def start(self) -> None:
        """Start the realtime monitor."""
        try:
            logger.info("Starting factory log subscription and notification processor...")
            subscription_task = asyncio.create_task(self.subscription.listen(self.handle_notification))
            notification_task = asyncio.create_task(self.process_notifications())
            await asyncio.gather(subscription_task, notification_task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Fatal error in monitoring: {e}")
            await self.subscription.stop()
            raise

    async def stop(self):
        """Stop the realtime monitor."""
        logger.info("Stopping token monitoring...")
        self.running = False
        await self.subscription.stop()
        for task in list(self._refresh_tasks):
            task.cancel()

def monitor_tokens(registry: Optional[TokenRegistry] = None, **kwargs) -> TokenMonitor:
    """Create and return a new token monitor."""
    return TokenMonitor(registry, **kwargs)

# Export public interface
__all__ = [
    'monitor_tokens',
    'TokenMonitor'
]
