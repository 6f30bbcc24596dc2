"""Tests for the realtime log subscription against a scripted websocket."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from rpc import subscription as subscription_module
from rpc.subscription import LogSubscription, SubscriptionError

class FakeSocket:
    """Replays scripted server messages; the final socket stops the listener when drained."""

    def __init__(self, owner, messages, last=True):
        self.owner = owner
        self.incoming = [json.dumps(m) for m in messages]
        self.sent = []
        self.last = last

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def recv(self):
        return self.incoming.pop(0)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.incoming:
            if self.last:
                self.owner.running = False
            raise StopAsyncIteration
        return self.incoming.pop(0)

    async def close(self):
        pass

class FakeConnect:
    def __init__(self, socket):
        self.socket = socket

    async def __aenter__(self):
        return self.socket

    async def __aexit__(self, *exc):
        return False

def ack(request_id, subscription):
    return {'jsonrpc': '2.0', 'id': request_id, 'result': subscription}

def notification(subscription, result):
    return {'jsonrpc': '2.0', 'method': 'eth_subscription',
            'params': {'subscription': subscription, 'result': result}}

def connect_to(*sockets):
    queue = list(sockets)
    return lambda *args, **kwargs: FakeConnect(queue.pop(0))

@pytest.fixture
def subscription():
    return LogSubscription(url='wss://node.invalid', factory_address='0xfactory')

@pytest.mark.asyncio
async def test_log_arriving_before_heads_ack_is_dispatched(subscription):
    received = []

    async def handler(kind, payload):
        received.append((kind, payload))

    socket = FakeSocket(subscription, [
        ack(1, '0xlogs'),
        notification('0xlogs', {'transactionHash': '0x01'}),
        ack(2, '0xheads'),
        notification('0xheads', {'number': '0x10'}),
    ])

    with patch.object(subscription_module.websockets, 'connect', connect_to(socket)):
        await subscription.listen(handler)

    assert received == [('logs', {'transactionHash': '0x01'}), ('newHeads', {'number': '0x10'})]
    assert [m['params'][0] for m in socket.sent] == ['logs', 'newHeads']
    assert socket.sent[0]['params'][1]['address'] == '0xfactory'

@pytest.mark.asyncio
async def test_clean_server_close_reconnects(subscription):
    received = []

    async def handler(kind, payload):
        received.append(kind)

    first = FakeSocket(subscription, [ack(1, '0xa'), ack(2, '0xb')], last=False)
    second = FakeSocket(subscription, [
        ack(1, '0xc'), ack(2, '0xd'), notification('0xc', {'transactionHash': '0x02'}),
    ])

    with patch.object(subscription_module.websockets, 'connect', connect_to(first, second)), \
            patch('asyncio.sleep', new=AsyncMock()):
        await subscription.listen(handler)

    assert received == ['logs']
    assert second.incoming == []

@pytest.mark.asyncio
async def test_rejected_subscribe_raises(subscription):
    socket = FakeSocket(subscription, [
        {'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32602, 'message': 'invalid params'}},
    ])

    with patch.object(subscription_module.websockets, 'connect', connect_to(socket)):
        with pytest.raises(SubscriptionError):
            await subscription.listen(AsyncMock())
