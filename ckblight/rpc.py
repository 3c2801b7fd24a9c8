"""Client-facing query and chain methods over the local index."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from itertools import islice, takewhile
from typing import Generic, TypeVar

from ckblight.chain import CellOutput, Header, OutPoint, Script, Transaction
from ckblight.keys import CellType, KeyPrefix, tx_lock_script_key, tx_type_script_key
from ckblight.query import (
    InvalidParamsError,
    Order,
    QueryOptions,
    ScriptType,
    SearchKey,
    build_filter_options,
    build_query_options,
)
from ckblight.storage import Storage, StorageWithLastHeaders

T = TypeVar("T")

_MAX_LIMIT = 0xFFFFFFFF


@dataclass(frozen=True)
class ScriptStatus:
    """A filter script and the block number it has been filtered up to."""

    script: Script
    block_number: int


@dataclass(frozen=True)
class Cell:
    output: CellOutput
    output_data: bytes
    out_point: OutPoint
    block_number: int
    tx_index: int


class IoType(Enum):
    INPUT = "input"
    OUTPUT = "output"

    @property
    def cell_type(self) -> CellType:
        return CellType.INPUT if self is IoType.INPUT else CellType.OUTPUT


@dataclass(frozen=True)
class TxWithCell:
    """A transaction together with the one input or output that matched."""

    transaction: Transaction
    block_number: int
    tx_index: int
    io_index: int
    io_type: IoType


@dataclass
class TxWithCells:
    """A transaction together with all of its matching inputs and outputs."""

    transaction: Transaction
    block_number: int
    tx_index: int
    cells: list[tuple[IoType, int]] = field(default_factory=list)


Tx = TxWithCell | TxWithCells


@dataclass
class Pagination(Generic[T]):
    """One page of results and the cursor to continue after it."""

    objects: list[T]
    last_cursor: bytes


@dataclass(frozen=True)
class TransactionWithHeader:
    transaction: Transaction
    header: Header


@dataclass(frozen=True)
class _CellEntry:
    key: bytes
    tx_hash: bytes
    output_index: int
    tx_index: int
    block_number: int
    output: CellOutput
    output_data: bytes


@dataclass(frozen=True)
class _TxEntry:
    key: bytes
    tx_hash: bytes
    block_number: int
    tx_index: int
    io_index: int
    io_type: IoType


def _opposite(script_type: ScriptType) -> ScriptType:
    return ScriptType.TYPE if script_type is ScriptType.LOCK else ScriptType.LOCK


def _check_limit(limit: int) -> int:
    limit = int(limit)
    if not 0 <= limit <= _MAX_LIMIT:
        raise InvalidParamsError(f"limit should be between 0 and {_MAX_LIMIT}")
    return limit


class BlockFilterRpc:
    """Methods for managing filter scripts and searching the filtered cells."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def set_scripts(self, scripts: Iterable[ScriptStatus]) -> None:
        """Replace the filter scripts with the given ones."""
        self.storage.update_filter_scripts(
            {status.script: int(status.block_number) for status in scripts}
        )

    def get_scripts(self) -> list[ScriptStatus]:
        return [
            ScriptStatus(script=script, block_number=number)
            for script, number in self.storage.get_filter_scripts().items()
        ]

    def _scan(self, opts: QueryOptions) -> Iterator[tuple[bytes, bytes]]:
        pairs = self.storage.db.iterate(opts.from_key, opts.direction)
        pairs = islice(pairs, opts.skip, None)
        return takewhile(lambda pair: pair[0].startswith(opts.prefix), pairs)

    def _load_transaction(self, tx_hash: bytes) -> Transaction:
        found = self.storage.get_transaction(tx_hash)
        if found is None:
            raise LookupError(f"missing stored transaction {tx_hash.hex()}")
        return found[2]

    def _iter_cells(self, opts: QueryOptions) -> Iterator[_CellEntry]:
        for key, tx_hash in self._scan(opts):
            output_index = int.from_bytes(key[-4:], "big")
            tx_index = int.from_bytes(key[-8:-4], "big")
            block_number = int.from_bytes(key[-16:-8], "big")
            tx = self._load_transaction(tx_hash)
            if output_index >= len(tx.outputs) or output_index >= len(tx.outputs_data):
                raise LookupError(f"stored transaction has no output {output_index}")
            yield _CellEntry(
                key=key,
                tx_hash=tx_hash,
                output_index=output_index,
                tx_index=tx_index,
                block_number=block_number,
                output=tx.outputs[output_index],
                output_data=tx.outputs_data[output_index],
            )

    def _matching_cells(self, search_key: SearchKey, opts: QueryOptions) -> Iterator[_CellEntry]:
        filter_script_type = _opposite(search_key.script_type)
        filters = build_filter_options(search_key)
        return (
            entry
            for entry in self._iter_cells(opts)
            if filters.matches(
                entry.output, entry.output_data, entry.block_number, filter_script_type
            )
        )

    def get_cells(
        self,
        search_key: SearchKey,
        order: Order,
        limit: int,
        after: bytes | None = None,
    ) -> Pagination[Cell]:
        """Live cells found by the search key, one page at a time."""
        opts = build_query_options(
            search_key, KeyPrefix.CELL_LOCK_SCRIPT, KeyPrefix.CELL_TYPE_SCRIPT, order, after
        )
        limit = _check_limit(limit)
        cells = []
        last_key = b""
        for entry in islice(self._matching_cells(search_key, opts), limit):
            last_key = entry.key
            cells.append(
                Cell(
                    output=entry.output,
                    output_data=entry.output_data,
                    out_point=OutPoint(entry.tx_hash, entry.output_index),
                    block_number=entry.block_number,
                    tx_index=entry.tx_index,
                )
            )
        return Pagination(objects=cells, last_cursor=last_key)

    def _iter_tx_entries(self, opts: QueryOptions) -> Iterator[_TxEntry]:
        for key, tx_hash in self._scan(opts):
            yield _TxEntry(
                key=key,
                tx_hash=tx_hash,
                block_number=int.from_bytes(key[-17:-9], "big"),
                tx_index=int.from_bytes(key[-9:-5], "big"),
                io_index=int.from_bytes(key[-5:-1], "big"),
                io_type=IoType.INPUT if key[-1] == 0 else IoType.OUTPUT,
            )

    def get_transactions(
        self,
        search_key: SearchKey,
        order: Order,
        limit: int,
        after: bytes | None = None,
    ) -> Pagination[Tx]:
        """Transaction history of the search key, optionally grouped by transaction."""
        opts = build_query_options(
            search_key, KeyPrefix.TX_LOCK_SCRIPT, KeyPrefix.TX_TYPE_SCRIPT, order, after
        )
        limit = _check_limit(limit)

        filter_script = None
        block_range = None
        if search_key.filter is not None:
            if search_key.filter.output_data_len_range is not None:
                raise InvalidParamsError(
                    "doesn't support search_key.filter.output_data_len_range parameter"
                )
            if search_key.filter.output_capacity_range is not None:
                raise InvalidParamsError(
                    "doesn't support search_key.filter.output_capacity_range parameter"
                )
            filter_script = search_key.filter.script
            if search_key.filter.block_range is not None:
                low, high = search_key.filter.block_range
                block_range = (int(low), int(high))

        key_of = (
            tx_lock_script_key
            if _opposite(search_key.script_type) is ScriptType.LOCK
            else tx_type_script_key
        )

        def passes(entry: _TxEntry) -> bool:
            if filter_script is not None:
                other_key = key_of(
                    filter_script,
                    entry.block_number,
                    entry.tx_index,
                    entry.io_index,
                    entry.io_type.cell_type,
                )
                if self.storage.db.get(other_key) is None:
                    return False
            if block_range is not None:
                low, high = block_range
                if not low <= entry.block_number < high:
                    return False
            return True

        entries = self._iter_tx_entries(opts)
        last_key = b""

        if search_key.group_by_transaction:
            groups: list[TxWithCells] = []
            last_hash: bytes | None = None
            for entry in entries:
                if len(groups) == limit and last_hash != entry.tx_hash:
                    break
                last_key = entry.key
                if not passes(entry):
                    continue
                if groups and last_hash == entry.tx_hash:
                    groups[-1].cells.append((entry.io_type, entry.io_index))
                else:
                    groups.append(
                        TxWithCells(
                            transaction=self._load_transaction(entry.tx_hash),
                            block_number=entry.block_number,
                            tx_index=entry.tx_index,
                            cells=[(entry.io_type, entry.io_index)],
                        )
                    )
                    last_hash = entry.tx_hash
            return Pagination(objects=list(groups), last_cursor=last_key)

        txs: list[Tx] = []
        for entry in islice((e for e in entries if passes(e)), limit):
            last_key = entry.key
            txs.append(
                TxWithCell(
                    transaction=self._load_transaction(entry.tx_hash),
                    block_number=entry.block_number,
                    tx_index=entry.tx_index,
                    io_index=entry.io_index,
                    io_type=entry.io_type,
                )
            )
        return Pagination(objects=txs, last_cursor=last_key)

    def get_cells_capacity(self, search_key: SearchKey) -> int:
        """Total capacity, in shannons, of the live cells found by the search key."""
        opts = build_query_options(
            search_key, KeyPrefix.CELL_LOCK_SCRIPT, KeyPrefix.CELL_TYPE_SCRIPT, Order.ASC, None
        )
        return sum(entry.output.capacity for entry in self._matching_cells(search_key, opts))


class ChainRpc:
    """Methods for reading headers and transactions known to the client."""

    def __init__(self, swl: StorageWithLastHeaders) -> None:
        self.swl = swl

    def get_tip_header(self) -> Header:
        return self.swl.storage.get_tip_header()

    def get_header(self, block_hash: bytes) -> Header | None:
        return self.swl.get_header(bytes(block_hash))

    def get_transaction(self, tx_hash: bytes) -> TransactionWithHeader | None:
        found = self.swl.storage.get_transaction_with_header(bytes(tx_hash))
        if found is None:
            return None
        transaction, header = found
        return TransactionWithHeader(transaction=transaction, header=header)