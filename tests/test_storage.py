import pytest

from ckblight.chain import (
    ZERO_HASH,
    Block,
    CellInput,
    CellOutput,
    Header,
    OutPoint,
    Script,
    ScriptHashType,
    Transaction,
    blake2b_256,
)
from ckblight.keys import KeyPrefix, extract_raw_data
from ckblight.storage import (
    GenesisMismatchError,
    Storage,
    StorageWithLastHeaders,
)

SHANNONS = 100_000_000


def make_script(seed, args):
    return Script(code_hash=bytes([seed]) * 32, hash_type=ScriptHashType.DATA, args=args)


LOCK1 = make_script(1, b"lock_script1")
LOCK2 = make_script(2, b"lock_script2")
LOCK3 = make_script(3, b"lock_script3")


def make_tx(*outputs, inputs=()):
    return Transaction(
        inputs=tuple(inputs),
        outputs=tuple(CellOutput(capacity=c * SHANNONS, lock=lock) for c, lock in outputs),
        outputs_data=tuple(b"" for _ in outputs),
    )


def make_block(number, *txs):
    return Block(header=Header(number=number, epoch=number), transactions=txs)


def live_outputs(storage, script):
    prefix = bytes([KeyPrefix.CELL_LOCK_SCRIPT]) + extract_raw_data(script)
    outputs = []
    for key, value in storage.db.iterate_prefix(prefix):
        index = int.from_bytes(key[-4:], "big")
        _, _, tx = storage.get_transaction(value)
        outputs.append(tx.outputs[index])
    return outputs


def history(storage, script):
    prefix = bytes([KeyPrefix.TX_LOCK_SCRIPT]) + extract_raw_data(script)
    return list(storage.db.iterate_prefix(prefix))


@pytest.fixture
def storage(tmp_path):
    with Storage(tmp_path / "db") as store:
        yield store


def build_chain(storage, filtered, update_numbers=False):
    tx00 = make_tx((222, LOCK1), (333, LOCK1))
    storage.init_genesis_block(make_block(0, tx00))
    storage.update_filter_scripts({s: 0 for s in filtered})

    tx10 = make_tx((100, LOCK2), (1000, LOCK1))
    storage.filter_block(make_block(1, tx10))
    if update_numbers:
        storage.update_block_number(1)

    tx20 = make_tx(
        (5000, LOCK2),
        (3000, LOCK1),
        inputs=[CellInput(OutPoint(tx00.hash(), 1)), CellInput(OutPoint(tx10.hash(), 1))],
    )
    block2 = make_block(2, tx20)
    storage.filter_block(block2)
    if update_numbers:
        storage.update_block_number(2)
    return tx00, tx10, tx20, block2


def test_genesis_round_trip(storage):
    block = make_block(0, make_tx((1000, LOCK1)), make_tx((2000, LOCK2)))
    storage.init_genesis_block(block)
    assert storage.get_genesis_block() == block
    assert storage.get_last_state() == (0, block.header)
    assert storage.get_tip_header() == block.header


def test_genesis_reinit_same_is_accepted_and_mismatch_raises(storage):
    block = make_block(0, make_tx((1000, LOCK1)))
    storage.init_genesis_block(block)
    storage.init_genesis_block(block)
    assert storage.get_genesis_block() == block
    with pytest.raises(GenesisMismatchError):
        storage.init_genesis_block(make_block(7, make_tx((1000, LOCK1))))


def test_last_state_round_trip(storage):
    header = Header(number=50, epoch=3)
    storage.update_last_state(500, header)
    assert storage.get_last_state() == (500, header)


def test_last_state_missing_raises(storage):
    with pytest.raises(LookupError):
        storage.get_last_state()


def test_update_filter_scripts_overrides(storage):
    storage.update_filter_scripts({LOCK1: 5, LOCK3: 9})
    assert storage.get_filter_scripts() == {LOCK1: 5, LOCK3: 9}
    storage.update_filter_scripts({LOCK1: 5})
    assert storage.get_filter_scripts() == {LOCK1: 5}


def test_scripts_hash_and_update_block_number(storage):
    storage.update_filter_scripts({LOCK1: 5, LOCK2: 10})
    assert storage.get_scripts_hash(8) == [LOCK1.calc_script_hash()]
    storage.update_block_number(7)
    assert storage.get_filter_scripts() == {LOCK1: 7, LOCK2: 10}


def test_filter_genesis_on_zero_block_number(storage):
    tx = make_tx((1000, LOCK1))
    storage.init_genesis_block(make_block(0, tx))
    storage.update_filter_scripts({LOCK1: 0})
    assert [o.capacity for o in live_outputs(storage, LOCK1)] == [1000 * SHANNONS]
    assert len(history(storage, LOCK1)) == 1


def test_unmatched_block_is_not_stored(storage):
    storage.init_genesis_block(make_block(0, make_tx((1, LOCK1))))
    storage.update_filter_scripts({LOCK1: 0})
    block = make_block(1, make_tx((1, LOCK2)))
    storage.filter_block(block)
    assert storage.get_header(block.hash()) is None
    assert live_outputs(storage, LOCK2) == []


def test_spent_cells_are_removed(storage):
    build_chain(storage, [LOCK1])
    capacity = sum(o.capacity for o in live_outputs(storage, LOCK1))
    assert capacity == (222 + 3000) * SHANNONS


def test_transaction_with_header(storage):
    _, _, tx20, block2 = build_chain(storage, [LOCK1])
    assert storage.get_transaction(tx20.hash()) == (2, 0, tx20)
    assert storage.get_transaction_with_header(tx20.hash()) == (tx20, block2.header)
    assert storage.get_header(block2.hash()) == block2.header
    assert storage.get_transaction_with_header(b"\x09" * 32) is None


def test_rollback_restores_spent_cells(storage):
    build_chain(storage, [LOCK1, LOCK2], update_numbers=True)
    storage.rollback_to_block(2)

    lock2_outputs = live_outputs(storage, LOCK2)
    assert sum(o.capacity for o in lock2_outputs) == 100 * SHANNONS
    assert len(lock2_outputs) == 1
    assert len(history(storage, LOCK2)) == 1

    lock1_outputs = live_outputs(storage, LOCK1)
    assert sum(o.capacity for o in lock1_outputs) == (1000 + 222 + 333) * SHANNONS
    assert len(lock1_outputs) == 3
    assert len(history(storage, LOCK1)) == 3

    assert storage.get_filter_scripts() == {LOCK1: 2, LOCK2: 2}


def test_cell_resolution(storage):
    data = b"hello"
    tx = Transaction(
        outputs=(CellOutput(capacity=10, lock=LOCK1), CellOutput(capacity=20, lock=LOCK1)),
        outputs_data=(b"", data),
    )
    block = make_block(0, make_tx((1, LOCK2)), tx)
    storage.init_genesis_block(block)

    empty = storage.cell(OutPoint(tx.hash(), 0))
    assert empty.mem_cell_data_hash == ZERO_HASH
    assert empty.data_bytes == 0

    meta = storage.cell(OutPoint(tx.hash(), 1))
    assert meta.cell_output == tx.outputs[1]
    assert meta.mem_cell_data == data
    assert meta.mem_cell_data_hash == blake2b_256(data)
    assert meta.transaction_info.block_hash == block.hash()
    assert meta.transaction_info.block_number == 0
    assert meta.transaction_info.index == 1

    assert storage.cell(OutPoint(tx.hash(), 2)) is None
    assert storage.cell(OutPoint(b"\x07" * 32, 0)) is None


def test_storage_with_last_headers(storage):
    block = make_block(0, make_tx((1, LOCK1)))
    storage.init_genesis_block(block)
    extra = Header(number=500, epoch=500)
    swl = StorageWithLastHeaders(storage, [extra])
    assert swl.get_header(block.hash()) == block.header
    assert swl.get_header(extra.hash()) == extra
    assert swl.get_header(b"\x05" * 32) is None
    out_point = OutPoint(block.transactions[0].hash(), 0)
    assert swl.cell(out_point) == storage.cell(out_point)


def test_data_persists_across_reopen(tmp_path):
    block = make_block(0, make_tx((1, LOCK1)))
    with Storage(tmp_path / "db") as first:
        first.init_genesis_block(block)
        first.update_filter_scripts({LOCK1: 4})
    with Storage(tmp_path / "db") as second:
        assert second.get_genesis_block() == block
        assert second.get_filter_scripts() == {LOCK1: 4}