"""Search keys and the key-range and filter options derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ckblight.chain import CellOutput, Script
from ckblight.keys import KeyPrefix, extract_raw_data
from ckblight.kvdb import Direction

MAX_PREFIX_SEARCH_SIZE = 0xFFFF


class InvalidParamsError(ValueError):
    """The parameters of a query are not acceptable."""


class ScriptType(Enum):
    LOCK = "lock"
    TYPE = "type"


class Order(Enum):
    DESC = "desc"
    ASC = "asc"


@dataclass(frozen=True)
class SearchKeyFilter:
    """Extra conditions on the cells found by a search key; ranges are half-open."""

    script: Script | None = None
    output_data_len_range: tuple[int, int] | None = None
    output_capacity_range: tuple[int, int] | None = None
    block_range: tuple[int, int] | None = None


@dataclass(frozen=True)
class SearchKey:
    """What to search for: a script, the role it plays and optional filters."""

    script: Script = field(default_factory=Script)
    script_type: ScriptType = ScriptType.LOCK
    filter: SearchKeyFilter | None = None
    group_by_transaction: bool | None = None


@dataclass(frozen=True)
class QueryOptions:
    """Where to start iterating the index and how far the matching keys extend."""

    prefix: bytes
    from_key: bytes
    direction: Direction
    skip: int


@dataclass(frozen=True)
class FilterOptions:
    """Filter conditions prepared for matching against stored cells."""

    script_prefix: bytes | None = None
    output_data_len_range: tuple[int, int] | None = None
    output_capacity_range: tuple[int, int] | None = None
    block_range: tuple[int, int] | None = None

    def matches(
        self,
        output: CellOutput,
        output_data: bytes,
        block_number: int,
        filter_script_type: ScriptType,
    ) -> bool:
        """Whether a cell passes every condition.

        filter_script_type names which script of the output the filter
        script prefix is checked against.
        """
        if self.script_prefix is not None:
            if filter_script_type is ScriptType.LOCK:
                script = output.lock
            else:
                script = output.type_
            if script is None or not extract_raw_data(script).startswith(self.script_prefix):
                return False
        if not _in_range(len(output_data), self.output_data_len_range):
            return False
        if not _in_range(output.capacity, self.output_capacity_range):
            return False
        return _in_range(block_number, self.block_range)


def _in_range(value: int, bounds: tuple[int, int] | None) -> bool:
    if bounds is None:
        return True
    low, high = bounds
    return low <= value < high


def build_query_options(
    search_key: SearchKey,
    lock_prefix: KeyPrefix,
    type_prefix: KeyPrefix,
    order: Order,
    after_cursor: bytes | None,
) -> QueryOptions:
    """Key prefix, start key, direction and skip count for a search."""
    key_prefix = lock_prefix if search_key.script_type is ScriptType.LOCK else type_prefix
    script = search_key.script
    args_len = len(script.args)
    if args_len > MAX_PREFIX_SEARCH_SIZE:
        raise InvalidParamsError(
            f"search_key.script.args len should be less than {MAX_PREFIX_SEARCH_SIZE}"
        )
    prefix = bytes([key_prefix]) + extract_raw_data(script)

    if order is Order.ASC:
        if after_cursor is None:
            return QueryOptions(prefix, prefix, Direction.FORWARD, 0)
        return QueryOptions(prefix, bytes(after_cursor), Direction.FORWARD, 1)
    if after_cursor is None:
        from_key = prefix + b"\xff" * (MAX_PREFIX_SEARCH_SIZE - args_len)
        return QueryOptions(prefix, from_key, Direction.REVERSE, 0)
    return QueryOptions(prefix, bytes(after_cursor), Direction.REVERSE, 1)


def build_filter_options(search_key: SearchKey) -> FilterOptions:
    """Prepare the filter of a search key for matching."""
    search_filter = search_key.filter or SearchKeyFilter()
    script_prefix = None
    if search_filter.script is not None:
        if len(search_filter.script.args) > MAX_PREFIX_SEARCH_SIZE:
            raise InvalidParamsError(
                "search_key.filter.script.args len should be less than "
                f"{MAX_PREFIX_SEARCH_SIZE}"
            )
        script_prefix = extract_raw_data(search_filter.script)

    def _pair(bounds: tuple[int, int] | None) -> tuple[int, int] | None:
        return None if bounds is None else (int(bounds[0]), int(bounds[1]))

    return FilterOptions(
        script_prefix=script_prefix,
        output_data_len_range=_pair(search_filter.output_data_len_range),
        output_capacity_range=_pair(search_filter.output_capacity_range),
        block_range=_pair(search_filter.block_range),
    )