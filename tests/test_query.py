"""Tests for the dashboard read modes."""

import pytest

from database.store import like_pattern
from detections import Detection, SOURCE_BACKFILL
from tokens.stages import DISCOVERED, PRICED, TRADED

def addr(i):
    return '0x' + f"{i:040x}"

async def seed(registry, store, index, stage, price_change=0.0, volume=0.0, name=None):
    address = addr(index)
    await registry.ingest(Detection(source=SOURCE_BACKFILL, address=address,
                                    metadata={'name': name or f"Coin {index}", 'symbol': f"C{index}"}))
    if stage != DISCOVERED:
        await registry.advance_stage(address, stage, 'test')
    await store.upsert_stats(address, {
        'price': 1.0, 'price_change_24h': price_change, 'volume_24h': volume,
    })
    return address

@pytest.mark.asyncio
async def test_gainers_are_strictly_positive_and_sorted(registry, store, query):
    for i, change in enumerate([5, -3, 12, 0, 1], start=1):
        await seed(registry, store, i, PRICED, price_change=change)

    gainers = await query.list_tokens(filter='gainers')
    losers = await query.list_tokens(filter='losers')

    assert [t['price_change_24h'] for t in gainers] == [12, 5, 1]
    assert [t['price_change_24h'] for t in losers] == [-3]

@pytest.mark.asyncio
async def test_movers_exclude_pending_tokens(registry, store, query):
    await seed(registry, store, 1, DISCOVERED, price_change=80)
    await seed(registry, store, 2, TRADED, price_change=4)

    gainers = await query.list_tokens(filter='gainers')

    assert [t['address'] for t in gainers] == [addr(2)]

@pytest.mark.asyncio
async def test_trending_sorts_by_volume(registry, store, query):
    await seed(registry, store, 1, TRADED, volume=10)
    await seed(registry, store, 2, TRADED, volume=300)
    await seed(registry, store, 3, DISCOVERED, volume=0)

    trending = await query.list_tokens(filter='trending', data_quality='active')
    pending = await query.list_tokens(filter='pending')

    assert [t['address'] for t in trending] == [addr(2), addr(1)]
    assert [t['address'] for t in pending] == [addr(3)]
    assert pending[0]['stage'] == DISCOVERED

@pytest.mark.asyncio
async def test_search_by_text(registry, store, query):
    await seed(registry, store, 1, PRICED, name='Moon Dog')
    await seed(registry, store, 2, PRICED, name='Sun Cat')

    results = await query.list_tokens(search='moon')

    assert [t['name'] for t in results] == ['Moon Dog']

@pytest.mark.asyncio
async def test_search_wildcards_match_literally(registry, store, query):
    await seed(registry, store, 1, PRICED, name='100% Moon')
    await seed(registry, store, 2, PRICED, name='Moon_Dog')
    await seed(registry, store, 3, PRICED, name='MoonXDog')

    assert [t['name'] for t in await query.list_tokens(search='%')] == ['100% Moon']
    assert [t['name'] for t in await query.list_tokens(search='n_d')] == ['Moon_Dog']

def test_like_pattern_escapes_wildcards():
    assert like_pattern("50%_off") == "%50\\%\\_off%"
    assert like_pattern("a\\b") == "%a\\\\b%"

@pytest.mark.asyncio
async def test_address_search_resolves_upstream(query, store, zora):
    zora.set(addr(9), name='Nine', symbol='NINE')

    found = await query.list_tokens(search=addr(9))
    missing = await query.list_tokens(search=addr(10))

    assert [t['symbol'] for t in found] == ['NINE']
    assert missing == []
    assert addr(10) not in store.tokens

@pytest.mark.asyncio
async def test_unknown_filter_is_rejected(query):
    with pytest.raises(ValueError):
        await query.list_tokens(filter='hot')
    with pytest.raises(ValueError):
        await query.list_tokens(data_quality='best')

@pytest.mark.asyncio
async def test_unpriced_token_reads_as_zero(query, foo_token):
    token = await query.get_token(foo_token)

    assert token['price'] == 0
    assert token['volume_24h'] == 0
    assert token['stage'] == DISCOVERED
    assert [s['source'] for s in token['sources']] == ['zora_ws']
    assert token['sources'][0]['is_primary']

@pytest.mark.asyncio
async def test_global_stats(registry, store, query):
    await seed(registry, store, 1, PRICED, price_change=7, volume=10)
    await seed(registry, store, 2, TRADED, price_change=20, volume=5)
    await seed(registry, store, 3, DISCOVERED, price_change=90, volume=1)

    totals = await query.global_stats()

    assert totals['total_tokens'] == 3
    assert totals['new_tokens_24h'] == 3
    assert totals['total_volume_24h'] == 16
    assert totals['top_gainer']['address'] == addr(2)
