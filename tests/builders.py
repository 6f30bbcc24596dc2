"""Builders for raw chain logs and provider payloads used across tests."""
from rpc import COIN_CREATED_TOPIC

FACTORY = '0x777777751622c0d3258f214f9df38e35bf45baf3'
CREATOR = '0x' + '1a' * 20
FOO = '0x' + 'f0' * 20
WETH = '0x4200000000000000000000000000000000000006'

def _word(value: int) -> str:
    return f"{value:064x}"

def _address_word(address: str) -> str:
    return address[2:].lower().rjust(64, '0')

def _abi_string(value: str) -> str:
    raw = value.encode('utf-8')
    words = (len(raw) + 31) // 32
    return _word(len(raw)) + raw.hex().ljust(words * 64, '0')

def coin_created_log(coin: str = FOO, name: str = 'Foo', symbol: str = 'FOO',
                     uri: str = 'ipfs://foo', creator: str = CREATOR,
                     tx_hash: str = '0x' + 'ab' * 32, block_number: int = 1000) -> dict:
    """A CoinCreated log laid out the way the factory emits it."""
    tails = [_abi_string(uri), _abi_string(name), _abi_string(symbol)]
    offset = 5 * 32
    offsets = []
    for tail in tails:
        offsets.append(offset)
        offset += len(tail) // 2
    data = (
        _address_word(WETH)
        + ''.join(_word(o) for o in offsets)
        + _address_word(coin)
        + ''.join(tails)
    )
    return {
        'address': FACTORY,
        'topics': [
            COIN_CREATED_TOPIC,
            '0x' + _address_word(creator),
            '0x' + _address_word(creator),
            '0x' + '0' * 64,
        ],
        'data': '0x' + data,
        'transactionHash': tx_hash,
        'blockNumber': hex(block_number),
        'logIndex': '0x0',
        'removed': False,
    }

def zora_payload(address: str = FOO, **overrides) -> dict:
    """A zora20Token payload."""
    payload = {
        'address': address,
        'name': 'Foo',
        'symbol': 'FOO',
        'creatorAddress': CREATOR,
        'uniqueHolders': 3,
        'createdAt': '2024-05-01T12:00:00Z',
    }
    payload.update(overrides)
    return payload
