"""Shared fixtures: an in-memory store and fakes for the market data providers."""
import pytest
import pytest_asyncio

from builders import coin_created_log, zora_payload
from detections import Detection, SOURCE_REALTIME, decode_coin_created
from memory_store import MemoryTokenStore
from stats import StatsEngine
from stats.schemas import ZoraCoin
from tokens import TokenRegistry
from tokens.search import TokenQuery

class FakeZora:
    """Primary provider double keyed by address."""

    def __init__(self):
        self.coins = {}
        self.pages = []
        self.calls = []

    def set(self, address, **payload):
        self.coins[address] = ZoraCoin.from_api(zora_payload(address, **payload))

    def get_coin(self, address):
        self.calls.append(address)
        return self.coins.get(address)

    def list_coins(self, count=100, after=None, sort_direction='DESC'):
        return list(self.pages), None

class FakeDex:
    """Secondary provider double keyed by address."""

    def __init__(self):
        self.pairs = {}
        self.calls = []

    def get_pairs(self, addresses):
        self.calls.append(list(addresses))
        return {a: self.pairs[a] for a in addresses if a in self.pairs}

@pytest.fixture
def store():
    """Create an empty in-memory token store."""
    return MemoryTokenStore()

@pytest.fixture
def zora():
    return FakeZora()

@pytest.fixture
def dex():
    return FakeDex()

@pytest.fixture
def registry(store, zora):
    """Create a registry whose metadata lookups hit the fake Zora provider."""
    async def lookup(address):
        coin = zora.get_coin(address)
        return coin.token_fields() if coin else None
    return TokenRegistry(store, metadata_lookup=lookup)

@pytest.fixture
def engine(registry, zora, dex):
    """Create a stats engine with no delay between chunks."""
    return StatsEngine(registry, primary=zora, secondary=dex, batch_size=50,
                       primary_batch_size=5, primary_batch_delay=0)

@pytest.fixture
def query(registry):
    return TokenQuery(registry)

@pytest_asyncio.fixture
async def foo_token(registry):
    """Index the Foo coin from a realtime factory log."""
    log = coin_created_log()
    detection = Detection.from_event(decode_coin_created(log), SOURCE_REALTIME, raw_data=log)
    await registry.intake.record(detection)
    result = await registry.ingest(detection)
    return result.address
