"""Chain data types with their canonical binary serialization and hashes."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import pairwise

ZERO_HASH = bytes(32)
_PERSONAL = b"ckb-default-hash"
_OUT_POINT_SIZE = 36
_CELL_INPUT_SIZE = 44
_CELL_DEP_SIZE = 37
_HEADER_SIZE = 208


def blake2b_256(data: bytes) -> bytes:
    """Blake2b digest of 32 bytes with the chain's default personalization."""
    return hashlib.blake2b(bytes(data), digest_size=32, person=_PERSONAL).digest()


def _u32(value: int) -> bytes:
    return struct.pack("<I", value)


def _read_u32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def _byte32(value: bytes, name: str) -> bytes:
    value = bytes(value)
    if len(value) != 32:
        raise ValueError(f"{name} must be 32 bytes, got {len(value)}")
    return value


def _pack_dynamic(items: list[bytes]) -> bytes:
    """Encode a table or a vector of variable-size items."""
    offsets = []
    position = 4 * (len(items) + 1)
    for item in items:
        offsets.append(position)
        position += len(item)
    return struct.pack(f"<{len(items) + 1}I", position, *offsets) + b"".join(items)


def _unpack_dynamic(data: bytes, what: str) -> list[bytes]:
    data = bytes(data)
    if len(data) < 4:
        raise ValueError(f"{what}: header too short")
    total = _read_u32(data, 0)
    if total != len(data):
        raise ValueError(f"{what}: total size {total} does not match {len(data)}")
    if total == 4:
        return []
    if total < 8:
        raise ValueError(f"{what}: header too short")
    first = _read_u32(data, 4)
    if first % 4 or first < 8 or first > total:
        raise ValueError(f"{what}: invalid first offset {first}")
    count = first // 4 - 1
    offsets = [*struct.unpack_from(f"<{count}I", data, 4), total]
    parts = []
    for start, end in pairwise(offsets):
        if start > end or start < first:
            raise ValueError(f"{what}: offsets out of order")
        parts.append(data[start:end])
    return parts


def _unpack_table(data: bytes, fields: int, what: str) -> list[bytes]:
    parts = _unpack_dynamic(data, what)
    if len(parts) != fields:
        raise ValueError(f"{what}: expected {fields} fields, got {len(parts)}")
    return parts


def _pack_fixvec(items: list[bytes]) -> bytes:
    return _u32(len(items)) + b"".join(items)


def _unpack_fixvec(data: bytes, item_size: int, what: str) -> list[bytes]:
    data = bytes(data)
    if len(data) < 4:
        raise ValueError(f"{what}: header too short")
    count = _read_u32(data, 0)
    if len(data) != 4 + count * item_size:
        raise ValueError(f"{what}: size does not match item count {count}")
    return [data[4 + i * item_size : 4 + (i + 1) * item_size] for i in range(count)]


def _pack_bytes(value: bytes) -> bytes:
    return _u32(len(value)) + bytes(value)


def _unpack_bytes(data: bytes, what: str) -> bytes:
    return b"".join(_unpack_fixvec(data, 1, what))


def _fixed(data: bytes, size: int, what: str) -> bytes:
    data = bytes(data)
    if len(data) != size:
        raise ValueError(f"{what}: expected {size} bytes, got {len(data)}")
    return data


class ScriptHashType(IntEnum):
    DATA = 0
    TYPE = 1
    DATA1 = 2
    DATA2 = 4


@dataclass(frozen=True)
class Script:
    code_hash: bytes = ZERO_HASH
    hash_type: ScriptHashType = ScriptHashType.DATA
    args: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "code_hash", _byte32(self.code_hash, "code_hash"))
        object.__setattr__(self, "hash_type", ScriptHashType(self.hash_type))
        object.__setattr__(self, "args", bytes(self.args))

    def to_bytes(self) -> bytes:
        return _pack_dynamic([self.code_hash, bytes([self.hash_type]), _pack_bytes(self.args)])

    @classmethod
    def from_bytes(cls, data: bytes) -> Script:
        code_hash, hash_type, args = _unpack_table(data, 3, "Script")
        hash_type = _fixed(hash_type, 1, "Script.hash_type")
        try:
            kind = ScriptHashType(hash_type[0])
        except ValueError as err:
            raise ValueError(f"Script: unknown hash type {hash_type[0]}") from err
        return cls(
            code_hash=_fixed(code_hash, 32, "Script.code_hash"),
            hash_type=kind,
            args=_unpack_bytes(args, "Script.args"),
        )

    def calc_script_hash(self) -> bytes:
        return blake2b_256(self.to_bytes())


@dataclass(frozen=True)
class OutPoint:
    tx_hash: bytes = ZERO_HASH
    index: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "tx_hash", _byte32(self.tx_hash, "tx_hash"))

    def to_bytes(self) -> bytes:
        return self.tx_hash + _u32(self.index)

    @classmethod
    def from_bytes(cls, data: bytes) -> OutPoint:
        data = _fixed(data, _OUT_POINT_SIZE, "OutPoint")
        return cls(tx_hash=data[:32], index=_read_u32(data, 32))


@dataclass(frozen=True)
class CellInput:
    previous_output: OutPoint = field(default_factory=OutPoint)
    since: int = 0

    @classmethod
    def cellbase(cls, block_number: int) -> CellInput:
        """The input of a cellbase transaction for the given block."""
        return cls(previous_output=OutPoint(ZERO_HASH, 0xFFFFFFFF), since=block_number)


def _encode_input(cell_input: CellInput) -> bytes:
    return struct.pack("<Q", cell_input.since) + cell_input.previous_output.to_bytes()


def _decode_input(data: bytes) -> CellInput:
    data = _fixed(data, _CELL_INPUT_SIZE, "CellInput")
    return CellInput(
        previous_output=OutPoint.from_bytes(data[8:]),
        since=struct.unpack_from("<Q", data, 0)[0],
    )


@dataclass(frozen=True)
class CellOutput:
    capacity: int = 0
    lock: Script = field(default_factory=Script)
    type_: Script | None = None

    def to_bytes(self) -> bytes:
        type_bytes = self.type_.to_bytes() if self.type_ is not None else b""
        return _pack_dynamic([struct.pack("<Q", self.capacity), self.lock.to_bytes(), type_bytes])

    @classmethod
    def from_bytes(cls, data: bytes) -> CellOutput:
        capacity, lock, type_ = _unpack_table(data, 3, "CellOutput")
        return cls(
            capacity=struct.unpack("<Q", _fixed(capacity, 8, "CellOutput.capacity"))[0],
            lock=Script.from_bytes(lock),
            type_=Script.from_bytes(type_) if type_ else None,
        )


@dataclass(frozen=True)
class CellDep:
    out_point: OutPoint = field(default_factory=OutPoint)
    dep_type: int = 0  # 0 = code, 1 = dep group


def _encode_cell_dep(dep: CellDep) -> bytes:
    return dep.out_point.to_bytes() + bytes([dep.dep_type])


def _decode_cell_dep(data: bytes) -> CellDep:
    data = _fixed(data, _CELL_DEP_SIZE, "CellDep")
    return CellDep(out_point=OutPoint.from_bytes(data[:36]), dep_type=data[36])


@dataclass(frozen=True)
class Transaction:
    version: int = 0
    cell_deps: tuple[CellDep, ...] = ()
    header_deps: tuple[bytes, ...] = ()
    inputs: tuple[CellInput, ...] = ()
    outputs: tuple[CellOutput, ...] = ()
    outputs_data: tuple[bytes, ...] = ()
    witnesses: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "cell_deps", tuple(self.cell_deps))
        object.__setattr__(
            self, "header_deps", tuple(_byte32(h, "header_dep") for h in self.header_deps)
        )
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))
        object.__setattr__(self, "outputs_data", tuple(bytes(d) for d in self.outputs_data))
        object.__setattr__(self, "witnesses", tuple(bytes(w) for w in self.witnesses))

    def _raw_bytes(self) -> bytes:
        return _pack_dynamic(
            [
                _u32(self.version),
                _pack_fixvec([_encode_cell_dep(d) for d in self.cell_deps]),
                _pack_fixvec(list(self.header_deps)),
                _pack_fixvec([_encode_input(i) for i in self.inputs]),
                _pack_dynamic([o.to_bytes() for o in self.outputs]),
                _pack_dynamic([_pack_bytes(d) for d in self.outputs_data]),
            ]
        )

    def to_bytes(self) -> bytes:
        witnesses = _pack_dynamic([_pack_bytes(w) for w in self.witnesses])
        return _pack_dynamic([self._raw_bytes(), witnesses])

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        raw, witnesses = _unpack_table(data, 2, "Transaction")
        version, cell_deps, header_deps, inputs, outputs, outputs_data = _unpack_table(
            raw, 6, "RawTransaction"
        )
        return cls(
            version=_read_u32(_fixed(version, 4, "RawTransaction.version"), 0),
            cell_deps=tuple(
                _decode_cell_dep(d) for d in _unpack_fixvec(cell_deps, _CELL_DEP_SIZE, "CellDepVec")
            ),
            header_deps=tuple(_unpack_fixvec(header_deps, 32, "Byte32Vec")),
            inputs=tuple(
                _decode_input(i) for i in _unpack_fixvec(inputs, _CELL_INPUT_SIZE, "CellInputVec")
            ),
            outputs=tuple(
                CellOutput.from_bytes(o) for o in _unpack_dynamic(outputs, "CellOutputVec")
            ),
            outputs_data=tuple(
                _unpack_bytes(d, "Bytes") for d in _unpack_dynamic(outputs_data, "BytesVec")
            ),
            witnesses=tuple(
                _unpack_bytes(w, "Bytes") for w in _unpack_dynamic(witnesses, "BytesVec")
            ),
        )

    def hash(self) -> bytes:
        """Transaction hash; witnesses are not part of it."""
        return blake2b_256(self._raw_bytes())


@dataclass(frozen=True)
class Header:
    version: int = 0
    compact_target: int = 0
    timestamp: int = 0
    number: int = 0
    epoch: int = 0
    parent_hash: bytes = ZERO_HASH
    transactions_root: bytes = ZERO_HASH
    proposals_hash: bytes = ZERO_HASH
    extra_hash: bytes = ZERO_HASH
    dao: bytes = ZERO_HASH
    nonce: int = 0

    def __post_init__(self) -> None:
        for name in ("parent_hash", "transactions_root", "proposals_hash", "extra_hash", "dao"):
            object.__setattr__(self, name, _byte32(getattr(self, name), name))

    def to_bytes(self) -> bytes:
        return (
            struct.pack(
                "<IIQQQ",
                self.version,
                self.compact_target,
                self.timestamp,
                self.number,
                self.epoch,
            )
            + self.parent_hash
            + self.transactions_root
            + self.proposals_hash
            + self.extra_hash
            + self.dao
            + self.nonce.to_bytes(16, "little")
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Header:
        data = _fixed(data, _HEADER_SIZE, "Header")
        version, compact_target, timestamp, number, epoch = struct.unpack_from("<IIQQQ", data, 0)
        hashes = [data[32 + i * 32 : 64 + i * 32] for i in range(5)]
        return cls(
            version=version,
            compact_target=compact_target,
            timestamp=timestamp,
            number=number,
            epoch=epoch,
            parent_hash=hashes[0],
            transactions_root=hashes[1],
            proposals_hash=hashes[2],
            extra_hash=hashes[3],
            dao=hashes[4],
            nonce=int.from_bytes(data[192:], "little"),
        )

    def hash(self) -> bytes:
        return blake2b_256(self.to_bytes())


@dataclass(frozen=True)
class Block:
    header: Header = field(default_factory=Header)
    transactions: tuple[Transaction, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "transactions", tuple(self.transactions))

    def hash(self) -> bytes:
        return self.header.hash()