"""Tests for the backfill, bytecode scan and price fetch workers."""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from builders import FOO, coin_created_log, zora_payload
from detections import Detection, FingerprintMatcher, SOURCE_BACKFILL
from stats.providers import ZoraCoinsProvider
from workers import price_fetch
from workers.backfill import run_backfill
from workers.bytecode_scan import run_scan

ERC20_CODE = '0x6080' + ''.join(f"63{s}14" for s in ['06fdde03', '95d89b41', '70a08231', 'a9059cbb'])
PLAIN_CODE = '0x6080604052348015600f57600080fd5b'
SCANNED = '0x' + '5c' * 20
CONTRACT = '0x' + 'c0' * 20
BAR = '0x' + 'ba' * 20

class FakeChain:
    def __init__(self, logs=None, creations=None, code=None, metadata=None):
        self.logs = logs or []
        self.creations = creations or []
        self.code = code or {}
        self.metadata = metadata or {}

    def get_block_number(self):
        return 2000

    def get_logs(self, address, topics, from_block, to_block):
        assert (from_block, to_block) == (1991, 2000)
        return self.logs

    def get_contract_creations(self, from_block, to_block, max_count=20):
        return self.creations[:max_count]

    def get_code(self, address):
        return self.code.get(address, '0x')

    def get_token_metadata(self, address):
        if address not in self.metadata:
            raise ConnectionError("metadata endpoint down")
        return self.metadata[address]

    def get_block_timestamp(self, block_number):
        return 1714564800

@pytest.mark.asyncio
async def test_scan_reconciles_missed_factory_logs(registry, store, foo_token):
    other = '0x' + 'e1' * 20
    chain = FakeChain(logs=[coin_created_log(), coin_created_log(coin=other, tx_hash='0x' + 'cd' * 32)])

    summary = await run_scan(registry, chain, FingerprintMatcher(store), block_range=10)

    assert summary['logs'] == 2
    assert summary['created'] == 1
    assert {p['source'] for p in await store.get_provenance(FOO)} == {'zora_ws', 'bytecode_scan'}
    assert store.tokens[other]['source'] == 'bytecode_scan'

@pytest.mark.asyncio
async def test_scan_fingerprints_contract_creations(registry, store):
    chain = FakeChain(
        creations=[
            {'address': SCANNED, 'tx_hash': '0x01', 'block_number': 1995},
            {'address': CONTRACT, 'tx_hash': '0x02', 'block_number': 1996},
        ],
        code={SCANNED: ERC20_CODE, CONTRACT: PLAIN_CODE},
        metadata={SCANNED: {'name': 'Scanned', 'symbol': 'SCN', 'decimals': 18, 'logo': None}}
    )

    summary = await run_scan(registry, chain, FingerprintMatcher(store), block_range=10)

    assert summary['contracts'] == 2
    assert summary['matched'] == 1
    token = store.tokens[SCANNED]
    assert token['platform'] == 'Custom'
    assert token['token_stage'] == 'discovered'
    assert token['launch_timestamp'].year == 2024
    [detection] = store.detections.values()
    assert detection['matched_fingerprint'] == 'erc20_fallback'
    assert detection['code_hash'].startswith('6080')

@pytest.mark.asyncio
async def test_scan_without_metadata_leaves_detection_pending(registry, store):
    chain = FakeChain(
        creations=[{'address': SCANNED, 'tx_hash': '0x01', 'block_number': 1995}],
        code={SCANNED: ERC20_CODE}
    )

    await run_scan(registry, chain, FingerprintMatcher(store), block_range=10)

    assert store.tokens == {}
    assert len(await store.unprocessed_detections()) == 1

@pytest.mark.asyncio
async def test_backfill_page_survives_malformed_coin(registry, store):
    provider = ZoraCoinsProvider(api_key='', chain_id=8453, max_retries=1, timeout=1)
    response = Mock(status_code=200)
    response.json.return_value = {'coins': [
        {'node': zora_payload(FOO)},
        {'node': zora_payload(BAR, name=12345, symbol=['BAR'], image={'url': 'x'})},
    ]}
    provider.session.get = Mock(return_value=response)

    summary = await run_backfill(registry, provider=provider, count=10)

    assert summary == {'seen': 2, 'created': 2, 'failed': 0}
    assert store.tokens[FOO]['name'] == 'Foo'
    assert store.tokens[BAR]['name'] == '12345'
    assert store.tokens[BAR]['symbol'] is None
    assert store.tokens[BAR].get('logo_url') is None

@pytest.mark.asyncio
async def test_backfill_refreshes_stats_for_new_tokens(registry, store, zora, engine):
    zora.set(FOO, marketCap='1000', tokenPrice={'priceInUsdc': '0.5'})
    zora.set(BAR, name='Bar', symbol='BAR')
    zora.pages = [zora.coins[FOO], zora.coins[BAR]]

    await run_backfill(registry, stats_engine=engine, provider=zora, count=10)

    assert store.stats[FOO]['data_source'] == 'zora'
    assert store.stats[BAR]['price'] == 0
    assert store.tokens[FOO]['token_stage'] == 'liquid'

@pytest.mark.asyncio
async def test_price_fetch_worker_single_pass(registry, store, zora, engine, foo_token):
    zora.set(foo_token, volume24h='90', tokenPrice={'priceInUsdc': '0.02'})
    await registry.intake.record(Detection(
        source=SOURCE_BACKFILL, address=BAR, metadata={'name': 'Bar', 'symbol': 'BAR'}
    ))

    with patch.object(price_fetch.asyncio, 'sleep', new=AsyncMock(side_effect=asyncio.CancelledError)):
        with pytest.raises(asyncio.CancelledError):
            await price_fetch.run_worker(interval=5, stats_engine=engine)

    assert store.stats[foo_token]['price'] == 0.02
    assert store.tokens[foo_token]['token_stage'] == 'traded'
    assert BAR in store.tokens
    assert await store.unprocessed_detections() == []
