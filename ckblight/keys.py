"""Key and value layout of the local index.

+--------------+--------------------+--------------------------+
| KeyPrefix    | Key                | Value                    |
+--------------+--------------------+--------------------------+
| 0            | TxHash             | Transaction              |
| 32           | CellLockScript     | TxHash                   |
| 64           | CellTypeScript     | TxHash                   |
| 96           | TxLockScript       | TxHash                   |
| 128          | TxTypeScript       | TxHash                   |
| 160          | BlockHash          | Header                   |
| 192          | BlockNumber        | BlockHash                |
| 224          | Meta               | Meta                     |
+--------------+--------------------+--------------------------+
"""

from __future__ import annotations

import struct
from enum import IntEnum

from ckblight.chain import Script, Transaction

_TX_VALUE_HEADER = struct.Struct(">QI")


class KeyPrefix(IntEnum):
    TX_HASH = 0
    CELL_LOCK_SCRIPT = 32
    CELL_TYPE_SCRIPT = 64
    TX_LOCK_SCRIPT = 96
    TX_TYPE_SCRIPT = 128
    BLOCK_HASH = 160
    BLOCK_NUMBER = 192
    META = 224


class CellType(IntEnum):
    """Whether a transaction history entry refers to an input or an output."""

    INPUT = 0
    OUTPUT = 1


def extract_raw_data(script: Script) -> bytes:
    """Concatenate the script's code hash, hash type byte and raw args."""
    return script.code_hash + bytes([script.hash_type]) + script.args


def _script_position(script: Script, block_number: int, tx_index: int, io_index: int) -> bytes:
    return extract_raw_data(script) + struct.pack(">QII", block_number, tx_index, io_index)


def tx_hash_key(tx_hash: bytes) -> bytes:
    return bytes([KeyPrefix.TX_HASH]) + bytes(tx_hash)


def cell_lock_script_key(
    script: Script, block_number: int, tx_index: int, output_index: int
) -> bytes:
    return bytes([KeyPrefix.CELL_LOCK_SCRIPT]) + _script_position(
        script, block_number, tx_index, output_index
    )


def cell_type_script_key(
    script: Script, block_number: int, tx_index: int, output_index: int
) -> bytes:
    return bytes([KeyPrefix.CELL_TYPE_SCRIPT]) + _script_position(
        script, block_number, tx_index, output_index
    )


def tx_lock_script_key(
    script: Script, block_number: int, tx_index: int, io_index: int, io_type: CellType
) -> bytes:
    return (
        bytes([KeyPrefix.TX_LOCK_SCRIPT])
        + _script_position(script, block_number, tx_index, io_index)
        + bytes([CellType(io_type)])
    )


def tx_type_script_key(
    script: Script, block_number: int, tx_index: int, io_index: int, io_type: CellType
) -> bytes:
    return (
        bytes([KeyPrefix.TX_TYPE_SCRIPT])
        + _script_position(script, block_number, tx_index, io_index)
        + bytes([CellType(io_type)])
    )


def block_hash_key(block_hash: bytes) -> bytes:
    return bytes([KeyPrefix.BLOCK_HASH]) + bytes(block_hash)


def block_number_key(block_number: int) -> bytes:
    return bytes([KeyPrefix.BLOCK_NUMBER]) + struct.pack(">Q", block_number)


def meta_key(name: str) -> bytes:
    return bytes([KeyPrefix.META]) + name.encode()


def encode_transaction_value(block_number: int, tx_index: int, transaction: Transaction) -> bytes:
    """Stored form of a transaction: block number, index in block, then the transaction."""
    return _TX_VALUE_HEADER.pack(block_number, tx_index) + transaction.to_bytes()


def decode_transaction_value(data: bytes) -> tuple[int, int, Transaction]:
    """Inverse of encode_transaction_value."""
    data = bytes(data)
    if len(data) < _TX_VALUE_HEADER.size:
        raise ValueError(f"stored transaction value too short: {len(data)} bytes")
    block_number, tx_index = _TX_VALUE_HEADER.unpack_from(data, 0)
    return block_number, tx_index, Transaction.from_bytes(data[_TX_VALUE_HEADER.size :])