import struct

import pytest

from ckblight.chain import CellOutput, Script, ScriptHashType, Transaction
from ckblight.keys import (
    CellType,
    KeyPrefix,
    block_hash_key,
    block_number_key,
    cell_lock_script_key,
    cell_type_script_key,
    decode_transaction_value,
    encode_transaction_value,
    extract_raw_data,
    meta_key,
    tx_hash_key,
    tx_lock_script_key,
    tx_type_script_key,
)


@pytest.fixture
def script():
    return Script(code_hash=bytes(range(32)), hash_type=ScriptHashType.TYPE, args=b"lock_script1")


def test_key_builders_use_layout_prefixes(script):
    h = bytes([1]) * 32
    keys = [
        tx_hash_key(h),
        cell_lock_script_key(script, 0, 0, 0),
        cell_type_script_key(script, 0, 0, 0),
        tx_lock_script_key(script, 0, 0, 0, CellType.INPUT),
        tx_type_script_key(script, 0, 0, 0, CellType.INPUT),
        block_hash_key(h),
        block_number_key(0),
        meta_key("GENESIS_BLOCK"),
    ]
    assert [k[0] for k in keys] == [0, 32, 64, 96, 128, 160, 192, 224]


def test_extract_raw_data(script):
    raw = extract_raw_data(script)
    assert raw[:32] == script.code_hash
    assert raw[32] == ScriptHashType.TYPE
    assert raw[33:] == b"lock_script1"


def test_hash_keys():
    h = bytes([7]) * 32
    assert tx_hash_key(h) == bytes([KeyPrefix.TX_HASH]) + h
    assert block_hash_key(h) == bytes([KeyPrefix.BLOCK_HASH]) + h


def test_block_number_key_is_big_endian():
    assert block_number_key(7) == bytes([KeyPrefix.BLOCK_NUMBER]) + struct.pack(">Q", 7)


def test_meta_key():
    assert meta_key("LAST_STATE") == bytes([KeyPrefix.META]) + b"LAST_STATE"


def test_cell_keys_layout(script):
    key = cell_lock_script_key(script, 5, 2, 3)
    raw = extract_raw_data(script)
    assert key[0] == KeyPrefix.CELL_LOCK_SCRIPT
    assert key[1 : 1 + len(raw)] == raw
    assert struct.unpack(">QII", key[-16:]) == (5, 2, 3)
    other = cell_type_script_key(script, 5, 2, 3)
    assert other[0] == KeyPrefix.CELL_TYPE_SCRIPT
    assert other[1:] == key[1:]


def test_tx_keys_end_with_io_type(script):
    key_in = tx_lock_script_key(script, 9, 1, 4, CellType.INPUT)
    key_out = tx_lock_script_key(script, 9, 1, 4, CellType.OUTPUT)
    assert key_in[-1] == 0
    assert key_out[-1] == 1
    assert key_in[:-1] == key_out[:-1]
    assert struct.unpack(">QII", key_in[-17:-1]) == (9, 1, 4)
    type_key = tx_type_script_key(script, 9, 1, 4, CellType.OUTPUT)
    assert type_key[0] == KeyPrefix.TX_TYPE_SCRIPT
    assert type_key[1:] == key_out[1:]


def test_keys_sort_by_block_number(script):
    keys = [cell_lock_script_key(script, n, 0, 0) for n in (300, 1, 256, 2)]
    assert sorted(keys) == [cell_lock_script_key(script, n, 0, 0) for n in (1, 2, 256, 300)]


def test_transaction_value_round_trip(script):
    tx = Transaction(outputs=(CellOutput(capacity=1000, lock=script),), outputs_data=(b"",))
    value = encode_transaction_value(12, 3, tx)
    assert value[12:] == tx.to_bytes()
    assert decode_transaction_value(value) == (12, 3, tx)


def test_decode_transaction_value_too_short():
    with pytest.raises(ValueError):
        decode_transaction_value(b"\x00" * 5)


def test_decode_transaction_value_bad_body():
    with pytest.raises(ValueError):
        decode_transaction_value(b"\x00" * 12 + b"\x01\x02\x03")