# ckblight

`ckblight` is the storage and query layer of a light blockchain client.
It keeps a key-value store of the blocks, transactions and cells that
belong to a set of watched lock scripts. On top of that store it answers
paginated queries for live cells, transaction history and total capacity.
A small JSON-RPC 2.0 front end serves the same queries over HTTP.

## Modules

- `ckblight.chain` holds the chain data types: `Script`, `OutPoint`,
  `CellInput`, `CellOutput`, `CellDep`, `Transaction`, `Header` and
  `Block`. Each has a binary encoding (`to_bytes` / `from_bytes`) where one
  applies. `Script.calc_script_hash`, `Transaction.hash` and `Header.hash`
  use `blake2b_256`. A transaction hash does not cover the witnesses.
  `CellInput.cellbase(n)` builds the input of a cellbase transaction.
- `ckblight.keys` defines the key layout of the store. Every record kind
  has a one-byte `KeyPrefix`. Cell keys and transaction-history keys start
  with the raw script data (`extract_raw_data`: code hash, hash-type byte,
  args), followed by the big-endian block number, transaction index and
  cell index. Iterating over a prefix therefore returns results in chain
  order. History keys end with a `CellType` byte (input or output).
- `ckblight.kvdb` provides `Database`, an ordered byte-keyed store kept as
  an SQLite file inside a directory. Commits through `WriteBatch` are
  atomic. It iterates forward or in reverse from a start key (`Direction`)
  and can iterate over a key prefix.
- `ckblight.storage` provides `Storage`, which holds:
  - the genesis block (`init_genesis_block`, which raises
    `GenesisMismatchError` if a different genesis block is already stored);
  - the last state, that is the total difficulty and tip header;
  - the watched ("filter") scripts, each with the block number it has been
    scanned up to.

  `filter_block` records the cells and transactions of a block that touch
  a watched lock script. It removes cells that the block spends.
  `rollback_to_block` undoes that work for a block and everything above
  it. `cell` resolves an out point to a `CellMeta` with its data loaded.
  `StorageWithLastHeaders` also finds headers in an in-memory list when
  they are not in the store.
- `ckblight.query` defines the search parameters: `SearchKey`,
  `SearchKeyFilter`, `ScriptType` and `Order`. It also turns them into a
  key range (`build_query_options`) and into cell filters
  (`build_filter_options`). A bad parameter raises `InvalidParamsError`.
- `ckblight.rpc` is the query API:
  - `BlockFilterRpc` has `set_scripts`, `get_scripts`, `get_cells`,
    `get_transactions` and `get_cells_capacity`.
  - `ChainRpc` has `get_tip_header`, `get_header` and `get_transaction`.
- `ckblight.server` provides `JsonRpcHandler`, which dispatches JSON-RPC
  2.0 requests to the two APIs. It also builds an HTTP server for them
  with `make_server`.
- `ckblight.relayer` provides `PendingTxs`, a bounded first-in first-out
  pool of transactions waiting to be relayed. It records which peers have
  already been offered each transaction.
- `ckblight.config` provides `RunEnv` and `StoreConfig`. They are read from
  TOML with `RunEnv.from_toml`, which rejects unknown fields, and written
  back with `RunEnv.to_toml`.
- `ckblight.status` provides `StatusCode` and `Status`, the outcome of
  handling a peer message. A 4xx status should lead to a five-minute ban
  (`should_ban`). A 5xx status should be logged as a warning
  (`should_warn`).
- `ckblight.fsutil` provides `need_directory` and `create_directory`. They
  raise `ConfigError` when a path cannot serve as a directory.

## Example

```python
from ckblight.chain import Block, CellOutput, Header, Script, Transaction
from ckblight.query import Order, SearchKey
from ckblight.rpc import BlockFilterRpc, ScriptStatus
from ckblight.storage import Storage

lock = Script(code_hash=bytes(32), args=b"owner")
genesis = Block(
    header=Header(number=0),
    transactions=[
        Transaction(outputs=[CellOutput(capacity=100, lock=lock)], outputs_data=[b""])
    ],
)

with Storage("store") as storage:
    storage.init_genesis_block(genesis)
    rpc = BlockFilterRpc(storage)
    # Block number 0 makes the genesis block get filtered right away.
    rpc.set_scripts([ScriptStatus(script=lock, block_number=0)])

    page = rpc.get_cells(SearchKey(script=lock), Order.ASC, 10)
    print(len(page.objects))                          # 1
    print(rpc.get_cells_capacity(SearchKey(script=lock)))  # 100
```

After this, pass each new `Block` to `storage.filter_block`.

Queries return a `Pagination` with `objects` and `last_cursor`. To get the
next page, pass `last_cursor` back as `after`. This works in either
`Order`.

`get_transactions` returns one `TxWithCell` per matching input or output.
With `group_by_transaction=True` in the search key, it returns one
`TxWithCells` per transaction instead.

`SearchKeyFilter` narrows the results by:
- the other script of the output;
- output data length;
- capacity;
- block range.

Every range is half-open: it includes the lower bound and excludes the
upper one. `get_transactions` accepts only the script and block-range
filters.

## Serving JSON-RPC

```python
from ckblight.rpc import BlockFilterRpc, ChainRpc
from ckblight.server import JsonRpcHandler
from ckblight.storage import Storage, StorageWithLastHeaders

storage = Storage("store")
handler = JsonRpcHandler(BlockFilterRpc(storage), ChainRpc(StorageWithLastHeaders(storage, [])))
server = handler.make_server("127.0.0.1", 9000)
server.serve_forever()
```

The methods are `set_scripts`, `get_scripts`, `get_cells`,
`get_transactions`, `get_cells_capacity`, `get_tip_header`, `get_header`
and `get_transaction`.

Parameters are positional:
- Numbers are `0x`-prefixed hex strings.
- Byte strings are `0x`-prefixed hex.
- `script_type` is `"lock"` or `"type"`.
- `order` is `"asc"` or `"desc"`.

A request can also be handled without HTTP:

```python
handler.handle({
    "jsonrpc": "2.0", "id": 1, "method": "get_cells_capacity",
    "params": [{"script": {"code_hash": "0x" + "00" * 32, "hash_type": "data",
                           "args": "0x6f776e6572"}, "script_type": "lock"}],
})
```

Batches are supported. Notifications (requests without an `id`) get no
answer. Invalid parameters give error `-32602`, and unknown methods give
`-32601`. The HTTP server answers `POST` and `OPTIONS` and allows any
origin.

## What it does not do

- The package does not talk to the peer-to-peer network. There is no
  header sync, no block-filter download and no proof verification. Blocks
  reach the store only when your code passes them to `filter_block`.
- It does not verify or submit transactions, so there is no
  `send_transaction` method. `PendingTxs` only holds transactions; nothing
  in the package sends them to peers.
- It has no method for listing connected peers.
- It has no command-line program that starts a node.
- The store indexes cells and history by lock script only. A search with
  `ScriptType.TYPE` finds nothing.