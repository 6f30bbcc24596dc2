"""Decoder for the factory's CoinCreated event.

Topics:
    0: event signature
    1: caller (the creator), left-padded to 32 bytes

Data words (32 bytes each):
    0: currency address
    1: offset of uri
    2: offset of name
    3: offset of symbol
    4: coin address
    5+: pool key and version, ignored here
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

WORD = 64  # hex chars per 32-byte word
MIN_WORDS = 5
ZERO_ADDRESS = '0x' + '0' * 40


class DecodeFailure(Exception):
    """Raised when a log cannot be turned into a creation event."""
    pass


class MalformedLog(DecodeFailure):
    """Raised when the log data is too short or an offset is out of bounds."""
    pass


@dataclass
class CoinCreatedEvent:
    """Decoded creation event."""
    creator_address: str
    token_address: str
    name: Optional[str]
    symbol: Optional[str]
    metadata_uri: Optional[str] = None
    currency_address: Optional[str] = None
    factory_address: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _strip_hex(value: str) -> str:
    return value[2:] if value.startswith('0x') else value


def _word(data: str, index: int) -> str:
    start = index * WORD
    if start + WORD > len(data):
        raise MalformedLog(f"Word {index} is past the end of the data")
    return data[start:start + WORD]


def _address_from_word(word: str) -> str:
    return '0x' + word[-40:].lower()


def _read_string(data: str, offset_word: int) -> str:
    """Read a length-prefixed ABI string whose offset is stored in offset_word."""
    try:
        offset = int(_word(data, offset_word), 16)
    except ValueError:
        raise MalformedLog(f"Word {offset_word} is not hex")
    if offset % 32:
        raise MalformedLog(f"String offset {offset} is not word aligned")
    start = offset * 2
    if start + WORD > len(data):
        raise MalformedLog(f"String offset {offset} is out of bounds")
    length = int(data[start:start + WORD], 16)
    body_start = start + WORD
    body_end = body_start + length * 2
    if body_end > len(data):
        raise MalformedLog(f"String length {length} at offset {offset} is out of bounds")
    try:
        raw = bytes.fromhex(data[body_start:body_end])
    except ValueError:
        raise MalformedLog(f"String at offset {offset} is not valid hex")
    return raw.decode('utf-8', errors='replace')


def _hex_int(value) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith('0x') else int(value)


def decode_coin_created(log: Dict[str, Any]) -> CoinCreatedEvent:
    """Decode a raw CoinCreated log.

    Args:
        log: Log object as returned by eth_getLogs or a logs subscription

    Returns:
        The decoded event

    Raises:
        MalformedLog: If topics are missing, the data is shorter than the
            minimum encoding, or an offset resolves out of bounds
        DecodeFailure: For any other undecodable input
    """
    try:
        topics = log.get('topics') or []
        if len(topics) < 2:
            raise MalformedLog("Missing creator topic")

        data = _strip_hex(log.get('data') or '')
        if len(data) < MIN_WORDS * WORD:
            raise MalformedLog(
                f"Data has {len(data) // WORD} words, expected at least {MIN_WORDS}"
            )

        creator = _address_from_word(_strip_hex(topics[1]).rjust(WORD, '0'))
        token = _address_from_word(_word(data, 4))
        if token == ZERO_ADDRESS:
            raise MalformedLog("Coin address is zero")

        name = _read_string(data, 2) or None
        symbol = _read_string(data, 3) or None
        uri = _read_string(data, 1) or None

        return CoinCreatedEvent(
            creator_address=creator,
            token_address=token,
            name=name,
            symbol=symbol,
            metadata_uri=uri,
            currency_address=_address_from_word(_word(data, 0)),
            factory_address=(log.get('address') or '').lower() or None,
            tx_hash=log.get('transactionHash'),
            block_number=_hex_int(log.get('blockNumber')),
            log_index=_hex_int(log.get('logIndex'))
        )
    except DecodeFailure:
        raise
    except Exception as e:
        raise DecodeFailure(f"Failed to decode log: {e}") from e
