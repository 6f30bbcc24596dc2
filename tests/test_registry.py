"""Tests for reconciling detections into canonical tokens."""

import asyncio

import pytest

from builders import FOO, coin_created_log
from detections import (
    Detection, SOURCE_BACKFILL, SOURCE_MANUAL, SOURCE_REALTIME, SOURCE_SCAN, decode_coin_created
)
from tokens import InvalidAddressError, TokenNotFoundError, TokenRegistry
from tokens.stages import CREATED, DISCOVERED
from workers.backfill import run_backfill

BAR = '0x' + 'ba' * 20

@pytest.mark.asyncio
async def test_realtime_token_is_discovered(store, foo_token):
    token = store.tokens[foo_token]

    assert token['name'] == 'Foo'
    assert token['platform'] == 'Zora'
    assert token['token_stage'] == DISCOVERED
    assert [h['to_stage'] for h in store.stage_history] == [CREATED, DISCOVERED]
    assert all(d['processed'] for d in store.detections.values())

@pytest.mark.asyncio
async def test_second_source_adds_provenance_only(registry, store, foo_token):
    detection = Detection(source=SOURCE_BACKFILL, address=FOO.upper().replace('0X', '0x'),
                          metadata={'name': 'Renamed'})
    await registry.intake.record(detection)

    result = await registry.ingest(detection)

    assert not result.created
    assert len(store.tokens) == 1
    assert store.tokens[FOO]['name'] == 'Foo'
    provenance = await store.get_provenance(FOO)
    assert {p['source'] for p in provenance} == {SOURCE_REALTIME, SOURCE_BACKFILL}
    assert [p['source'] for p in provenance if p['is_primary']] == [SOURCE_REALTIME]

@pytest.mark.asyncio
async def test_racing_sources_create_one_token(registry, store):
    log = coin_created_log()
    realtime = Detection.from_event(decode_coin_created(log), SOURCE_REALTIME, raw_data=log)
    scan = Detection.from_event(decode_coin_created(log), SOURCE_SCAN, raw_data=log)

    results = await asyncio.gather(registry.ingest(realtime), registry.ingest(scan))

    assert sum(r.created for r in results) == 1
    assert len(store.tokens) == 1
    assert sum(p['is_primary'] for p in store.provenance) == 1

@pytest.mark.asyncio
async def test_pending_token_is_enriched(registry, store):
    await registry.ingest(Detection(source=SOURCE_SCAN, address=FOO))
    assert store.tokens[FOO]['name'] is None
    assert store.tokens[FOO]['token_stage'] == CREATED

    log = coin_created_log()
    await registry.ingest(Detection.from_event(decode_coin_created(log), SOURCE_REALTIME, raw_data=log))

    assert store.tokens[FOO]['name'] == 'Foo'
    assert store.tokens[FOO]['symbol'] == 'FOO'
    assert store.tokens[FOO]['token_stage'] == DISCOVERED

@pytest.mark.asyncio
async def test_backfill_is_idempotent(registry, store, zora):
    zora.set(FOO)
    zora.set(BAR, name='Bar', symbol='BAR')
    zora.pages = [zora.coins[FOO], zora.coins[BAR]]

    first = await run_backfill(registry, provider=zora, count=10)
    second = await run_backfill(registry, provider=zora, count=10)

    assert first == {'seen': 2, 'created': 2, 'failed': 0}
    assert second == {'seen': 2, 'created': 0, 'failed': 0}
    assert len(store.tokens) == 2
    assert len([p for p in store.provenance if p['token_address'] == FOO]) == 1

@pytest.mark.asyncio
async def test_resolve_unknown_token_creates_nothing(registry, store):
    with pytest.raises(TokenNotFoundError):
        await registry.resolve_token(BAR)

    assert store.tokens == {}
    assert store.detections == {}

@pytest.mark.asyncio
async def test_resolve_indexes_provider_token(registry, store, zora):
    zora.set(BAR, name='Bar', symbol='BAR')

    token = await registry.resolve_token(BAR.upper().replace('0X', '0x'))

    assert token['address'] == BAR
    assert token['symbol'] == 'BAR'
    assert token['token_stage'] == DISCOVERED
    provenance = await store.get_provenance(BAR)
    assert [(p['source'], p['is_primary']) for p in provenance] == [(SOURCE_MANUAL, True)]

@pytest.mark.asyncio
async def test_resolve_known_token_skips_lookup(registry, zora, foo_token):
    token = await registry.resolve_token(foo_token)

    assert token['name'] == 'Foo'
    assert zora.calls == []

@pytest.mark.asyncio
@pytest.mark.parametrize('address', ['', '0x123', 'f0' * 20, '0x' + 'g' * 40])
async def test_resolve_rejects_malformed_address(registry, address):
    with pytest.raises(InvalidAddressError):
        await registry.resolve_token(address)

@pytest.mark.asyncio
async def test_pending_detection_is_replayed(registry, store):
    log = coin_created_log()
    detection_id = await registry.intake.record(Detection(source=SOURCE_REALTIME, raw_data=log))

    assert await registry.process_pending() == 1

    assert store.tokens[FOO]['symbol'] == 'FOO'
    assert store.detections[detection_id]['processed']

@pytest.mark.asyncio
async def test_failed_lookup_leaves_detection_unprocessed(store):
    async def failing_lookup(address):
        raise ConnectionError("provider down")

    registry = TokenRegistry(store, metadata_lookup=failing_lookup)
    detection = Detection(source=SOURCE_SCAN, address=FOO)
    await registry.intake.record(detection)

    result = await registry.ingest(detection, resolve_metadata=True)

    assert result.created
    assert not result.processed
    assert len(await store.unprocessed_detections()) == 1
