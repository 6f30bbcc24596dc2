"""Tests for CoinCreated log decoding."""

import pytest

from builders import CREATOR, FACTORY, FOO, WETH, coin_created_log
from detections import DecodeFailure, MalformedLog, decode_coin_created

def test_decodes_factory_log():
    """A well-formed log yields the coin, its creator and its strings."""
    event = decode_coin_created(coin_created_log())

    assert event.token_address == FOO
    assert event.creator_address == CREATOR
    assert event.name == 'Foo'
    assert event.symbol == 'FOO'
    assert event.metadata_uri == 'ipfs://foo'
    assert event.currency_address == WETH
    assert event.factory_address == FACTORY
    assert event.block_number == 1000
    assert event.log_index == 0

def test_decodes_long_and_unicode_strings():
    name = 'A creator coin with a name longer than one word 🚀'
    event = decode_coin_created(coin_created_log(name=name, symbol='ÜBER'))

    assert event.name == name
    assert event.symbol == 'ÜBER'

def test_empty_strings_decode_as_none():
    event = decode_coin_created(coin_created_log(uri=''))

    assert event.metadata_uri is None
    assert event.name == 'Foo'

def test_short_data_is_malformed():
    log = coin_created_log()
    log['data'] = log['data'][:2 + 64 * 4]

    with pytest.raises(MalformedLog):
        decode_coin_created(log)

def test_offset_past_end_is_malformed():
    log = coin_created_log()
    data = log['data'][2:]
    # Point the name offset far beyond the data
    data = data[:64 * 2] + f"{32 * 1000:064x}" + data[64 * 3:]
    log['data'] = '0x' + data

    with pytest.raises(MalformedLog):
        decode_coin_created(log)

def test_unaligned_offset_is_malformed():
    log = coin_created_log()
    data = log['data'][2:]
    data = data[:64 * 3] + f"{161:064x}" + data[64 * 4:]
    log['data'] = '0x' + data

    with pytest.raises(MalformedLog):
        decode_coin_created(log)

def test_missing_creator_topic_is_malformed():
    log = coin_created_log()
    log['topics'] = log['topics'][:1]

    with pytest.raises(MalformedLog):
        decode_coin_created(log)

def test_zero_coin_address_is_rejected():
    with pytest.raises(DecodeFailure):
        decode_coin_created(coin_created_log(coin='0x' + '0' * 40))

def test_non_hex_data_is_a_decode_failure():
    log = coin_created_log()
    log['data'] = '0x' + 'zz' * 200

    with pytest.raises(DecodeFailure):
        decode_coin_created(log)
