"""TokenStore against a real Postgres. Set TEST_DB_URL to run."""

import os
import uuid

import pytest
import pytest_asyncio

from database import close, get_pool, init_db, TokenStore
from tokens.stages import STAGE_ORDER

pytestmark = pytest.mark.skipif(not os.environ.get('TEST_DB_URL'), reason="TEST_DB_URL not set")

@pytest_asyncio.fixture
async def pg_store():
    """Create a fresh schema and a store on a throwaway chain key."""
    await init_db(os.environ['TEST_DB_URL'], force_recreate=True)
    pool = await get_pool()
    yield TokenStore(pool, chain=f"test-{uuid.uuid4().hex[:8]}")
    await close()

@pytest.mark.asyncio
async def test_first_insert_wins_primary(pg_store):
    address = '0x' + 'f0' * 20

    assert await pg_store.create_token(address, {'name': 'Foo', 'source': 'zora_ws'}, 'created', 'zora_ws', '0xaa')
    assert not await pg_store.create_token(address, {'name': 'Bar', 'source': 'zora_backfill'}, 'created', 'zora_backfill')

    token = await pg_store.get_token(address)
    provenance = await pg_store.get_provenance(address)
    assert token['name'] == 'Foo'
    assert token['decimals'] == 18
    assert [p['source'] for p in provenance if p['is_primary']] == ['zora_ws']
    assert len(provenance) == 2

@pytest.mark.asyncio
async def test_conditional_stage_update(pg_store):
    address = '0x' + 'f1' * 20
    await pg_store.create_token(address, {'source': 'manual'}, 'created', 'manual')

    assert await pg_store.advance_stage(address, 'liquid', STAGE_ORDER, 'zora') == 'created'
    assert await pg_store.advance_stage(address, 'priced', STAGE_ORDER, 'zora') is None

    history = await pg_store.get_stage_history(address)
    assert [h['to_stage'] for h in history] == ['created', 'liquid']

@pytest.mark.asyncio
async def test_active_fingerprints_are_seeded(pg_store):
    ids = [f['id'] for f in await pg_store.active_fingerprints()]

    assert ids == ['erc20_metadata', 'erc20']

@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(pg_store):
    await pg_store.create_token('0x' + 'a1' * 20, {'name': 'Moon_Dog', 'source': 'manual'}, 'created', 'manual')
    await pg_store.create_token('0x' + 'a2' * 20, {'name': 'MoonXDog', 'source': 'manual'}, 'created', 'manual')

    rows = await pg_store.list_tokens(search='n_d')

    assert [r['name'] for r in rows] == ['Moon_Dog']
