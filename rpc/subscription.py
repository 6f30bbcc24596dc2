"""Realtime log subscription over the provider's websocket endpoint.

Subscribes to factory logs and new block headers with eth_subscribe and hands
every notification to an async handler. Dropped connections are retried with
exponential backoff. Nothing is replayed after a reconnect; the backfill and
scan workers recover anything missed while disconnected.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import backoff
import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from config import settings_conf
from . import ALCHEMY_WS_URL, COIN_CREATED_TOPIC

logger = logging.getLogger(__name__)

RECONNECT_ERRORS = (ConnectionClosed, OSError, TimeoutError)

Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class SubscriptionError(Exception):
    """Raised when the provider rejects an eth_subscribe request."""
    pass


class LogSubscription:
    """eth_subscribe stream for factory logs and new heads."""

    def __init__(self, url: Optional[str] = None, factory_address: Optional[str] = None,
                 topics: Optional[List[str]] = None, max_backoff: int = 60):
        """Initialize the subscription.

        Args:
            url: Websocket URL, defaults to the Alchemy endpoint for the configured key
            factory_address: Address filter for the logs subscription
            topics: Topic filter, defaults to CoinCreated
            max_backoff: Upper bound in seconds between reconnect attempts
        """
        self.url = url or ALCHEMY_WS_URL.format(key=settings_conf['alchemy_api_key'])
        self.factory_address = factory_address or settings_conf['factory_address']
        self.topics = topics or [COIN_CREATED_TOPIC]
        self.max_backoff = max_backoff
        self.running = False
        self._websocket = None
        self._subscriptions: Dict[str, str] = {}
        self._backlog: List[Dict[str, Any]] = []

    def _log_reconnect(self, details):
        logger.warning(
            f"Subscription dropped, reconnecting in {details['wait']:.1f}s "
            f"(attempt {details['tries']})"
        )

    async def listen(self, handler: Handler) -> None:
        """Stream notifications to handler until stop() is called.

        Args:
            handler: Called with ('logs' | 'newHeads', payload) for every notification
        """
        self.running = True
        retrying = backoff.on_exception(
            backoff.expo,
            RECONNECT_ERRORS,
            max_tries=None,
            max_value=self.max_backoff,
            giveup=lambda e: not self.running,
            on_backoff=self._log_reconnect
        )(self._listen_once)
        try:
            await retrying(handler)
        except RECONNECT_ERRORS:
            if self.running:
                raise
            logger.info("Subscription closed")

    async def _subscribe(self, websocket, request_id: int, kind: str, params: List[Any]) -> str:
        """Send eth_subscribe and wait for its ack.

        Notifications for subscriptions already open can arrive before the ack;
        they are held in the backlog and dispatched once subscribing is done.
        """
        await websocket.send(json.dumps({
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "eth_subscribe",
            "params": params
        }))
        while True:
            message = await websocket.recv()
            try:
                reply = json.loads(message)
            except ValueError:
                logger.warning(f"Ignoring non-JSON message: {message[:100]!r}")
                continue
            if reply.get('id') != request_id:
                self._backlog.append(reply)
                continue
            if reply.get('error'):
                raise SubscriptionError(f"eth_subscribe {kind} failed: {reply['error']}")
            self._subscriptions[reply['result']] = kind
            logger.info(f"Subscribed to {kind} ({reply['result']})")
            return reply['result']

    async def _dispatch(self, handler: Handler, data: Dict[str, Any]) -> None:
        if data.get('method') != 'eth_subscription':
            return
        params = data.get('params') or {}
        kind = self._subscriptions.get(params.get('subscription'))
        if kind is None:
            return
        try:
            await handler(kind, params.get('result') or {})
        except Exception as e:
            logger.error(f"Error handling {kind} notification: {e}")

    async def _listen_once(self, handler: Handler) -> None:
        async with websockets.connect(self.url, ping_interval=30) as websocket:
            self._websocket = websocket
            self._subscriptions = {}
            self._backlog = []
            await self._subscribe(websocket, 1, 'logs', [
                'logs', {'address': self.factory_address, 'topics': self.topics}
            ])
            await self._subscribe(websocket, 2, 'newHeads', ['newHeads'])

            backlog, self._backlog = self._backlog, []
            for data in backlog:
                await self._dispatch(handler, data)

            async for message in websocket:
                if not self.running:
                    break
                try:
                    data = json.loads(message)
                except ValueError:
                    logger.warning(f"Ignoring non-JSON message: {message[:100]!r}")
                    continue
                await self._dispatch(handler, data)

            if self.running:
                # Server ended the stream cleanly; treat as a drop and reconnect
                raise ConnectionClosedOK(None, None)

    async def stop(self) -> None:
        """Stop listening and close the socket."""
        self.running = False
        if self._websocket is not None:
            await self._websocket.close()
            self._websocket = None
