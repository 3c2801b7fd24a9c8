"""Persistent index of the blocks, transactions and cells that match the filter scripts."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ckblight.chain import (
    ZERO_HASH,
    Block,
    CellOutput,
    Header,
    OutPoint,
    Script,
    Transaction,
    blake2b_256,
)
from ckblight.keys import (
    CellType,
    KeyPrefix,
    block_hash_key,
    block_number_key,
    cell_lock_script_key,
    decode_transaction_value,
    encode_transaction_value,
    extract_raw_data,
    meta_key,
    tx_hash_key,
    tx_lock_script_key,
)
from ckblight.kvdb import Database, Direction, WriteBatch

LAST_STATE_KEY = "LAST_STATE"
GENESIS_BLOCK_KEY = "GENESIS_BLOCK"
FILTER_SCRIPTS_KEY = "FILTER_SCRIPTS"

_MAX_BLOCK_NUMBER = 2**64 - 1
_DIFFICULTY_SIZE = 32


class GenesisMismatchError(Exception):
    """The stored genesis block differs from the one being initialised."""


@dataclass(frozen=True)
class TransactionInfo:
    """Where a transaction was committed."""

    block_hash: bytes
    block_epoch: int
    block_number: int
    index: int


@dataclass(frozen=True)
class CellMeta:
    """A resolved live cell with its data loaded."""

    out_point: OutPoint
    cell_output: CellOutput
    transaction_info: TransactionInfo | None
    data_bytes: int
    mem_cell_data: bytes | None
    mem_cell_data_hash: bytes | None


def _data_hash(data: bytes) -> bytes:
    return blake2b_256(data) if data else ZERO_HASH


def _block_number_value(value: bytes) -> int:
    if len(value) != 8:
        raise ValueError(f"stored block number must be 8 bytes, got {len(value)}")
    return int.from_bytes(value, "big")


class Storage:
    """Key-value backed store of filtered chain data."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.db = Database(path)

    def __enter__(self) -> Storage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.db.close()

    def _require(self, key: bytes, what: str) -> bytes:
        value = self.db.get(key)
        if value is None:
            raise LookupError(f"missing stored {what}")
        return value

    def _header_at(self, block_number: int) -> tuple[bytes, Header]:
        block_hash = self._require(block_number_key(block_number), "block number / hash mapping")
        header = Header.from_bytes(
            self._require(block_hash_key(block_hash), "block hash / header mapping")
        )
        return block_hash, header

    def init_genesis_block(self, block: Block) -> None:
        """Store the genesis block, or check it against the one already stored."""
        genesis_hash = block.hash()
        genesis_key = meta_key(GENESIS_BLOCK_KEY)
        stored = self.db.get(genesis_key)
        if stored is not None:
            if stored[:32] != genesis_hash:
                raise GenesisMismatchError(
                    f"genesis hash mismatch: stored={stored[:32].hex()}, new={genesis_hash.hex()}"
                )
            return

        header_bytes = block.header.to_bytes()
        batch = WriteBatch()
        batch.put(meta_key(LAST_STATE_KEY), header_bytes)
        batch.put(block_hash_key(genesis_hash), header_bytes)
        batch.put(block_number_key(0), genesis_hash)
        hashes = [genesis_hash]
        for tx_index, tx in enumerate(block.transactions):
            tx_hash = tx.hash()
            hashes.append(tx_hash)
            batch.put(tx_hash_key(tx_hash), encode_transaction_value(0, tx_index, tx))
        batch.put(genesis_key, b"".join(hashes))
        self.db.write(batch)
        self.update_last_state(0, block.header)

    def get_genesis_block(self) -> Block:
        stored = self._require(meta_key(GENESIS_BLOCK_KEY), "genesis block")
        genesis_hash = stored[:32]
        header = Header.from_bytes(
            self._require(block_hash_key(genesis_hash), "block hash / header mapping")
        )
        tx_hashes = [stored[i : i + 32] for i in range(32, len(stored) - len(stored) % 32, 32)]
        transactions = []
        for tx_hash in tx_hashes:
            _, _, tx = decode_transaction_value(
                self._require(tx_hash_key(tx_hash), "genesis block transaction")
            )
            transactions.append(tx)
        return Block(header=header, transactions=tuple(transactions))

    def _iter_filter_scripts(self):
        prefix = meta_key(FILTER_SCRIPTS_KEY)
        for key, value in self.db.iterate_prefix(prefix):
            yield key, Script.from_bytes(key[len(prefix) :]), _block_number_value(value)

    def get_filter_scripts(self) -> dict[Script, int]:
        """Map of each filter script to the block number it is filtered up to."""
        return {script: number for _, script, number in self._iter_filter_scripts()}

    def update_filter_scripts(self, scripts: Mapping[Script, int]) -> None:
        """Replace all filter scripts with the given ones and their block numbers."""
        scripts = dict(scripts)
        should_filter_genesis = any(number == 0 for number in scripts.values())
        batch = WriteBatch()
        for key, _, _ in list(self._iter_filter_scripts()):
            batch.delete(key)
        prefix = meta_key(FILTER_SCRIPTS_KEY)
        for script, number in scripts.items():
            batch.put(prefix + script.to_bytes(), number.to_bytes(8, "big"))
        self.db.write(batch)

        if should_filter_genesis:
            self.filter_block(self.get_genesis_block())

    def get_scripts_hash(self, block_number: int) -> list[bytes]:
        """Hashes of the scripts that are filtered below the given block number."""
        return [
            script.calc_script_hash()
            for _, script, stored in self._iter_filter_scripts()
            if stored < block_number
        ]

    def update_last_state(self, total_difficulty: int, tip_header: Header) -> None:
        value = total_difficulty.to_bytes(_DIFFICULTY_SIZE, "little") + tip_header.to_bytes()
        self.db.put(meta_key(LAST_STATE_KEY), value)

    def get_last_state(self) -> tuple[int, Header]:
        data = self.db.get(meta_key(LAST_STATE_KEY))
        if data is None:
            raise LookupError("tip header should be inited")
        total_difficulty = int.from_bytes(data[:_DIFFICULTY_SIZE], "little")
        return total_difficulty, Header.from_bytes(data[_DIFFICULTY_SIZE:])

    def get_tip_header(self) -> Header:
        return self.get_last_state()[1]

    def update_block_number(self, block_number: int) -> None:
        """Raise every filter script below block_number up to it."""
        batch = WriteBatch()
        for key, _, stored in list(self._iter_filter_scripts()):
            if stored < block_number:
                batch.put(key, block_number.to_bytes(8, "big"))
        self.db.write(batch)

    def filter_block(self, block: Block) -> None:
        """Index the cells and transactions of block that touch a filter script."""
        scripts = self.get_filter_scripts()
        block_number = block.header.number
        matched = False
        batch = WriteBatch()

        for tx_index, tx in enumerate(block.transactions):
            tx_hash = tx.hash()
            tx_value = encode_transaction_value(block_number, tx_index, tx)

            for input_index, cell_input in enumerate(tx.inputs):
                previous = cell_input.previous_output
                found = self.get_transaction(previous.tx_hash)
                if found is None:
                    continue
                generated_number, generated_index, previous_tx = found
                if previous.index >= len(previous_tx.outputs):
                    continue
                script = previous_tx.outputs[previous.index].lock
                if script not in scripts:
                    continue
                matched = True
                batch.delete(
                    cell_lock_script_key(script, generated_number, generated_index, previous.index)
                )
                batch.put(
                    tx_lock_script_key(script, block_number, tx_index, input_index, CellType.INPUT),
                    tx_hash,
                )
                batch.put(tx_hash_key(tx_hash), tx_value)

            for output_index, output in enumerate(tx.outputs):
                script = output.lock
                if script not in scripts:
                    continue
                matched = True
                batch.put(
                    cell_lock_script_key(script, block_number, tx_index, output_index), tx_hash
                )
                batch.put(
                    tx_lock_script_key(
                        script, block_number, tx_index, output_index, CellType.OUTPUT
                    ),
                    tx_hash,
                )
                batch.put(tx_hash_key(tx_hash), tx_value)

        if matched:
            block_hash = block.hash()
            batch.put(block_hash_key(block_hash), block.header.to_bytes())
            batch.put(block_number_key(block_number), block_hash)
        self.db.write(batch)

    def rollback_to_block(self, to_number: int) -> None:
        """Undo the filtered data of blocks numbered to_number and above."""
        batch = WriteBatch()
        filter_prefix = meta_key(FILTER_SCRIPTS_KEY)

        for script, filtered_number in self.get_filter_scripts().items():
            if filtered_number < to_number:
                continue
            key_prefix = bytes([KeyPrefix.TX_LOCK_SCRIPT]) + extract_raw_data(script)
            plen = len(key_prefix)
            start_key = key_prefix + _MAX_BLOCK_NUMBER.to_bytes(8, "big")

            for key, value in self.db.iterate(start_key, Direction.REVERSE):
                if not key.startswith(key_prefix):
                    break
                block_number = int.from_bytes(key[plen : plen + 8], "big")
                if block_number < to_number:
                    break
                tx_index = int.from_bytes(key[plen + 8 : plen + 12], "big")
                cell_index = int.from_bytes(key[plen + 12 : plen + 16], "big")

                if key[plen + 16] == CellType.INPUT:
                    found = self.get_transaction(value)
                    if found is None:
                        raise LookupError("missing stored transaction history")
                    cell_input = found[2].inputs[cell_index]
                    previous = cell_input.previous_output
                    generated = self.get_transaction(previous.tx_hash)
                    if generated is not None:
                        batch.put(
                            cell_lock_script_key(
                                script, generated[0], generated[1], previous.index
                            ),
                            previous.tx_hash,
                        )
                    batch.delete(
                        tx_lock_script_key(
                            script, block_number, tx_index, cell_index, CellType.INPUT
                        )
                    )
                else:
                    batch.delete(cell_lock_script_key(script, block_number, tx_index, cell_index))
                    batch.delete(
                        tx_lock_script_key(
                            script, block_number, tx_index, cell_index, CellType.OUTPUT
                        )
                    )

            batch.put(filter_prefix + script.to_bytes(), to_number.to_bytes(8, "big"))

        self.db.write(batch)

    def get_transaction(self, tx_hash: bytes) -> tuple[int, int, Transaction] | None:
        """Block number, index in block and the transaction, or None if unknown."""
        value = self.db.get(tx_hash_key(tx_hash))
        if value is None:
            return None
        return decode_transaction_value(value)

    def get_transaction_with_header(self, tx_hash: bytes) -> tuple[Transaction, Header] | None:
        found = self.get_transaction(tx_hash)
        if found is None:
            return None
        block_number, _, tx = found
        _, header = self._header_at(block_number)
        return tx, header

    def get_header(self, block_hash: bytes) -> Header | None:
        value = self.db.get(block_hash_key(block_hash))
        return None if value is None else Header.from_bytes(value)

    def cell(self, out_point: OutPoint) -> CellMeta | None:
        """Resolve an out point to a live cell; every stored cell is assumed live."""
        found = self.get_transaction(out_point.tx_hash)
        if found is None:
            return None
        block_number, tx_index, tx = found
        block_hash, header = self._header_at(block_number)
        if out_point.index >= len(tx.outputs):
            return None
        if out_point.index >= len(tx.outputs_data):
            raise ValueError("output_data's index should be same as output")
        data = tx.outputs_data[out_point.index]
        return CellMeta(
            out_point=out_point,
            cell_output=tx.outputs[out_point.index],
            transaction_info=TransactionInfo(
                block_hash=block_hash,
                block_epoch=header.epoch,
                block_number=block_number,
                index=tx_index,
            ),
            data_bytes=len(data),
            mem_cell_data=data,
            mem_cell_data_hash=_data_hash(data),
        )


class StorageWithLastHeaders:
    """Storage that also knows the most recent headers kept in memory."""

    def __init__(self, storage: Storage, last_headers: Sequence[Header]) -> None:
        self.storage = storage
        self.last_headers = last_headers

    def get_header(self, block_hash: bytes) -> Header | None:
        header = self.storage.get_header(block_hash)
        if header is not None:
            return header
        return next((h for h in list(self.last_headers) if h.hash() == block_hash), None)

    def cell(self, out_point: OutPoint) -> CellMeta | None:
        return self.storage.cell(out_point)