"""JSON-RPC 2.0 front end for the query and chain methods, served over HTTP."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from ckblight.chain import (
    CellDep,
    CellInput,
    CellOutput,
    Header,
    OutPoint,
    Script,
    ScriptHashType,
    Transaction,
)
from ckblight.query import InvalidParamsError, Order, ScriptType, SearchKey, SearchKeyFilter
from ckblight.rpc import (
    BlockFilterRpc,
    Cell,
    ChainRpc,
    Pagination,
    ScriptStatus,
    TxWithCell,
    TxWithCells,
)

logger = logging.getLogger(__name__)

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

_U32 = 32
_U64 = 64


class _RpcError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _parse_uint(value: Any, bits: int, what: str) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise InvalidParamsError(f"{what}: expected a 0x-prefixed hex string")
    digits = value[2:]
    if not digits:
        raise InvalidParamsError(f"{what}: empty hex number")
    if len(digits) > 1 and digits[0] == "0":
        raise InvalidParamsError(f"{what}: redundant leading zeros")
    try:
        number = int(digits, 16)
    except ValueError as err:
        raise InvalidParamsError(f"{what}: invalid hex number") from err
    if number >= 1 << bits:
        raise InvalidParamsError(f"{what}: number out of range")
    return number


def _parse_bytes(value: Any, what: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise InvalidParamsError(f"{what}: expected a 0x-prefixed hex string")
    digits = value[2:]
    if len(digits) % 2:
        raise InvalidParamsError(f"{what}: odd number of hex digits")
    try:
        return bytes.fromhex(digits)
    except ValueError as err:
        raise InvalidParamsError(f"{what}: invalid hex bytes") from err


def _parse_h256(value: Any, what: str) -> bytes:
    data = _parse_bytes(value, what)
    if len(data) != 32:
        raise InvalidParamsError(f"{what}: expected 32 bytes, got {len(data)}")
    return data


def _require(obj: Any, name: str, what: str) -> Any:
    if not isinstance(obj, dict):
        raise InvalidParamsError(f"{what}: expected an object")
    if name not in obj:
        raise InvalidParamsError(f"{what}: missing field `{name}`")
    return obj[name]


def _parse_range(value: Any, what: str) -> tuple[int, int] | None:
    if value is None:
        return None
    if not isinstance(value, list) or len(value) != 2:
        raise InvalidParamsError(f"{what}: expected an array of two numbers")
    return _parse_uint(value[0], _U64, what), _parse_uint(value[1], _U64, what)


def parse_script(obj: Any) -> Script:
    """Build a Script from its JSON form."""
    code_hash = _parse_h256(_require(obj, "code_hash", "script"), "script.code_hash")
    hash_type = _require(obj, "hash_type", "script")
    if not isinstance(hash_type, str) or hash_type.upper() not in ScriptHashType.__members__:
        raise InvalidParamsError(f"script.hash_type: unknown variant {hash_type!r}")
    if hash_type != hash_type.lower():
        raise InvalidParamsError(f"script.hash_type: unknown variant {hash_type!r}")
    args = _parse_bytes(_require(obj, "args", "script"), "script.args")
    return Script(code_hash=code_hash, hash_type=ScriptHashType[hash_type.upper()], args=args)


def _parse_filter(obj: Any) -> SearchKeyFilter | None:
    if obj is None:
        return None
    if not isinstance(obj, dict):
        raise InvalidParamsError("search_key.filter: expected an object")
    script = obj.get("script")
    return SearchKeyFilter(
        script=None if script is None else parse_script(script),
        output_data_len_range=_parse_range(
            obj.get("output_data_len_range"), "search_key.filter.output_data_len_range"
        ),
        output_capacity_range=_parse_range(
            obj.get("output_capacity_range"), "search_key.filter.output_capacity_range"
        ),
        block_range=_parse_range(obj.get("block_range"), "search_key.filter.block_range"),
    )


def parse_search_key(obj: Any) -> SearchKey:
    """Build a SearchKey from its JSON form."""
    script = parse_script(_require(obj, "script", "search_key"))
    script_type = _require(obj, "script_type", "search_key")
    try:
        kind = ScriptType(script_type)
    except ValueError as err:
        raise InvalidParamsError(
            f"search_key.script_type: unknown variant {script_type!r}"
        ) from err
    group = obj.get("group_by_transaction")
    if group is not None and not isinstance(group, bool):
        raise InvalidParamsError("search_key.group_by_transaction: expected a boolean")
    return SearchKey(
        script=script,
        script_type=kind,
        filter=_parse_filter(obj.get("filter")),
        group_by_transaction=group,
    )


def _parse_order(value: Any) -> Order:
    try:
        return Order(value)
    except ValueError as err:
        raise InvalidParamsError(f"order: unknown variant {value!r}") from err


def _parse_cursor(value: Any) -> bytes | None:
    return None if value is None else _parse_bytes(value, "after")


def _hex(number: int) -> str:
    return hex(number)


def _hex_bytes(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def _script_json(script: Script) -> dict[str, str]:
    return {
        "code_hash": _hex_bytes(script.code_hash),
        "hash_type": script.hash_type.name.lower(),
        "args": _hex_bytes(script.args),
    }


def _out_point_json(out_point: OutPoint) -> dict[str, str]:
    return {"tx_hash": _hex_bytes(out_point.tx_hash), "index": _hex(out_point.index)}


def _output_json(output: CellOutput) -> dict[str, Any]:
    return {
        "capacity": _hex(output.capacity),
        "lock": _script_json(output.lock),
        "type": None if output.type_ is None else _script_json(output.type_),
    }


def _input_json(cell_input: CellInput) -> dict[str, Any]:
    return {
        "since": _hex(cell_input.since),
        "previous_output": _out_point_json(cell_input.previous_output),
    }


def _cell_dep_json(dep: CellDep) -> dict[str, Any]:
    return {
        "out_point": _out_point_json(dep.out_point),
        "dep_type": "dep_group" if dep.dep_type == 1 else "code",
    }


def _transaction_json(tx: Transaction) -> dict[str, Any]:
    return {
        "version": _hex(tx.version),
        "cell_deps": [_cell_dep_json(d) for d in tx.cell_deps],
        "header_deps": [_hex_bytes(h) for h in tx.header_deps],
        "inputs": [_input_json(i) for i in tx.inputs],
        "outputs": [_output_json(o) for o in tx.outputs],
        "outputs_data": [_hex_bytes(d) for d in tx.outputs_data],
        "witnesses": [_hex_bytes(w) for w in tx.witnesses],
        "hash": _hex_bytes(tx.hash()),
    }


def _header_json(header: Header) -> dict[str, str]:
    return {
        "version": _hex(header.version),
        "compact_target": _hex(header.compact_target),
        "timestamp": _hex(header.timestamp),
        "number": _hex(header.number),
        "epoch": _hex(header.epoch),
        "parent_hash": _hex_bytes(header.parent_hash),
        "transactions_root": _hex_bytes(header.transactions_root),
        "proposals_hash": _hex_bytes(header.proposals_hash),
        "extra_hash": _hex_bytes(header.extra_hash),
        "dao": _hex_bytes(header.dao),
        "nonce": _hex(header.nonce),
        "hash": _hex_bytes(header.hash()),
    }


def _cell_json(cell: Cell) -> dict[str, Any]:
    return {
        "output": _output_json(cell.output),
        "output_data": _hex_bytes(cell.output_data),
        "out_point": _out_point_json(cell.out_point),
        "block_number": _hex(cell.block_number),
        "tx_index": _hex(cell.tx_index),
    }


def _tx_json(tx: TxWithCell | TxWithCells) -> dict[str, Any]:
    common = {
        "transaction": _transaction_json(tx.transaction),
        "block_number": _hex(tx.block_number),
        "tx_index": _hex(tx.tx_index),
    }
    if isinstance(tx, TxWithCells):
        common["cells"] = [[io_type.value, _hex(index)] for io_type, index in tx.cells]
    else:
        common["io_index"] = _hex(tx.io_index)
        common["io_type"] = tx.io_type.value
    return common


def _pagination_json(page: Pagination[Any], render: Callable[[Any], Any]) -> dict[str, Any]:
    return {
        "objects": [render(obj) for obj in page.objects],
        "last_cursor": _hex_bytes(page.last_cursor),
    }


def _positional(params: Any, required: int, optional: int = 0) -> list[Any]:
    if params is None:
        params = []
    if not isinstance(params, list):
        raise InvalidParamsError("expected an array of parameters")
    if not required <= len(params) <= required + optional:
        raise InvalidParamsError(
            f"expected {required} to {required + optional} parameters, got {len(params)}"
        )
    return params + [None] * (required + optional - len(params))


def _error(code: int, message: str, request_id: Any = None) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": request_id}


class JsonRpcHandler:
    """Dispatches JSON-RPC requests to the block filter and chain methods."""

    def __init__(self, block_filter_rpc: BlockFilterRpc, chain_rpc: ChainRpc) -> None:
        self.block_filter_rpc = block_filter_rpc
        self.chain_rpc = chain_rpc
        self._methods: dict[str, Callable[[Any], Any]] = {
            "set_scripts": self._set_scripts,
            "get_scripts": self._get_scripts,
            "get_cells": self._get_cells,
            "get_transactions": self._get_transactions,
            "get_cells_capacity": self._get_cells_capacity,
            "get_tip_header": self._get_tip_header,
            "get_header": self._get_header,
            "get_transaction": self._get_transaction,
        }

    def _set_scripts(self, params: Any) -> None:
        (scripts,) = _positional(params, 1)
        if not isinstance(scripts, list):
            raise InvalidParamsError("scripts: expected an array")
        self.block_filter_rpc.set_scripts(
            ScriptStatus(
                script=parse_script(_require(item, "script", "script status")),
                block_number=_parse_uint(
                    _require(item, "block_number", "script status"), _U64, "block_number"
                ),
            )
            for item in scripts
        )
        return None

    def _get_scripts(self, params: Any) -> list[dict[str, Any]]:
        _positional(params, 0)
        return [
            {"script": _script_json(status.script), "block_number": _hex(status.block_number)}
            for status in self.block_filter_rpc.get_scripts()
        ]

    def _paged_args(self, params: Any) -> tuple[SearchKey, Order, int, bytes | None]:
        search_key, order, limit, after = _positional(params, 3, 1)
        return (
            parse_search_key(search_key),
            _parse_order(order),
            _parse_uint(limit, _U32, "limit"),
            _parse_cursor(after),
        )

    def _get_cells(self, params: Any) -> dict[str, Any]:
        page = self.block_filter_rpc.get_cells(*self._paged_args(params))
        return _pagination_json(page, _cell_json)

    def _get_transactions(self, params: Any) -> dict[str, Any]:
        page = self.block_filter_rpc.get_transactions(*self._paged_args(params))
        return _pagination_json(page, _tx_json)

    def _get_cells_capacity(self, params: Any) -> str:
        (search_key,) = _positional(params, 1)
        return _hex(self.block_filter_rpc.get_cells_capacity(parse_search_key(search_key)))

    def _get_tip_header(self, params: Any) -> dict[str, str]:
        _positional(params, 0)
        return _header_json(self.chain_rpc.get_tip_header())

    def _get_header(self, params: Any) -> dict[str, str] | None:
        (block_hash,) = _positional(params, 1)
        header = self.chain_rpc.get_header(_parse_h256(block_hash, "block_hash"))
        return None if header is None else _header_json(header)

    def _get_transaction(self, params: Any) -> dict[str, Any] | None:
        (tx_hash,) = _positional(params, 1)
        found = self.chain_rpc.get_transaction(_parse_h256(tx_hash, "tx_hash"))
        if found is None:
            return None
        return {
            "transaction": _transaction_json(found.transaction),
            "header": _header_json(found.header),
        }

    def _handle_one(self, request: Any) -> dict[str, Any] | None:
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            return _error(INVALID_REQUEST, "Invalid request")
        is_notification = "id" not in request
        request_id = request.get("id")
        try:
            method = self._methods.get(request["method"])
            if method is None:
                raise _RpcError(METHOD_NOT_FOUND, "Method not found")
            try:
                result = method(request.get("params"))
            except InvalidParamsError as err:
                raise _RpcError(INVALID_PARAMS, str(err)) from err
        except _RpcError as err:
            response = _error(err.code, err.message, request_id)
        except Exception:
            logger.exception("rpc method %s failed", request["method"])
            response = _error(INTERNAL_ERROR, "Internal error", request_id)
        else:
            response = {"jsonrpc": "2.0", "result": result, "id": request_id}
        return None if is_notification else response

    def handle(self, request: Any) -> dict[str, Any] | list[dict[str, Any]] | None:
        """Answer a decoded request or batch; notifications get no answer."""
        if isinstance(request, list):
            if not request:
                return _error(INVALID_REQUEST, "Invalid request")
            responses = [r for r in map(self._handle_one, request) if r is not None]
            return responses or None
        return self._handle_one(request)

    def _handle_body(self, body: bytes) -> bytes | None:
        try:
            request = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            response: Any = _error(PARSE_ERROR, "Parse error")
        else:
            response = self.handle(request)
        return None if response is None else json.dumps(response).encode()

    def make_server(self, host: str, port: int) -> ThreadingHTTPServer:
        """An HTTP server answering JSON-RPC POST requests; call serve_forever to run it."""
        rpc = self

        class _Handler(BaseHTTPRequestHandler):
            def _cors(self) -> None:
                self.send_header("Access-Control-Allow-Origin", "*")
                self.send_header("Access-Control-Allow-Methods", "POST, OPTIONS")
                self.send_header("Access-Control-Allow-Headers", "Content-Type")

            def do_OPTIONS(self) -> None:  # noqa: N802
                self.send_response(200)
                self._cors()
                self.send_header("Content-Length", "0")
                self.end_headers()

            def do_POST(self) -> None:  # noqa: N802
                length = int(self.headers.get("Content-Length") or 0)
                payload = rpc._handle_body(self.rfile.read(length)) or b""
                self.send_response(200)
                self._cors()
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                logger.debug(format, *args)

        return ThreadingHTTPServer((host, port), _Handler)