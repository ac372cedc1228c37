import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from blockchain.database import DatabaseManager
from blockchain.node_client import NodeClient
from blockchain.pagination import Pagination
from blockchain.types import Receipt, Validators
from cache.errors import BadRequestError, EmptyError, NotFoundError
from cache.redis_manager import RedisManager
from explorer.fallback import FallbackReader
from explorer.service import ExplorerService, parse_block_id


@pytest.fixture
def db():
    db = Mock(spec=DatabaseManager)
    db.latest_block_height.side_effect = EmptyError("no block is stored")
    return db


@pytest.fixture
def node():
    return AsyncMock(spec=NodeClient)


@pytest.fixture
def service(window, db, node, queues):
    return ExplorerService(window, db, node, queues, FallbackReader(timeout=1.0))


def run(coro):
    return asyncio.run(coro)


def test_parse_block_id():
    assert parse_block_id("0xabc") == "0xabc"
    assert parse_block_id("42") == 42
    for raw in ("0", "-1", "abc", ""):
        with pytest.raises(BadRequestError):
            parse_block_id(raw)


def test_block_served_from_window(service, window, db, node, make_block):
    window.insert_block(make_block(7, block_hash="0x7"))

    assert run(service.block("7")).hash == "0x7"
    assert run(service.block("0x7")).height == 7
    db.block_by_height.assert_not_called()
    db.block_by_hash.assert_not_called()
    node.block_by_height.assert_not_awaited()


def test_block_falls_back_to_database_then_node(service, window, db, node, make_block):
    db.block_by_height.return_value = make_block(3)
    assert run(service.block("3")).height == 3

    db.block_by_hash.side_effect = NotFoundError("not stored")
    node.block_by_hash.return_value = make_block(4, block_hash="0x4")
    assert run(service.block("0x4")).height == 4
    node.block_by_hash.assert_awaited_once_with("0x4")

    # Nothing is copied into the window
    with pytest.raises(EmptyError):
        window.latest_block_height()


def test_block_not_found_anywhere(service, db, node):
    db.block_by_height.side_effect = NotFoundError("not stored")
    node.block_by_height.side_effect = NotFoundError("no result")
    with pytest.raises(NotFoundError):
        run(service.block("5"))


def test_block_bad_id(service, db):
    with pytest.raises(BadRequestError):
        run(service.block("zero"))
    db.block_by_height.assert_not_called()


def test_blocks_from_window(service, filled_window, db):
    blocks, total = run(service.blocks(Pagination(page=1, limit=3)))
    assert [b.height for b in blocks] == [10, 9, 8]
    assert total == 10
    db.blocks.assert_not_called()


def test_blocks_past_window_from_database(service, filled_window, db, make_block):
    """Test an empty window page falls through to the database."""
    db.blocks.return_value = [make_block(2), make_block(1)]
    blocks, total = run(service.blocks(Pagination(page=6, limit=2)))
    assert [b.height for b in blocks] == [2, 1]
    assert total == 10


def test_blocks_total_without_window(service, db, make_block):
    db.blocks.return_value = [make_block(20), make_block(19)]
    db.latest_block_height.side_effect = None
    db.latest_block_height.return_value = 20
    _, total = run(service.blocks(Pagination(page=1, limit=2)))
    assert total == 20


def test_block_txs_from_window(service, window, db, make_block):
    block = make_block(3, num_txs=10)
    window.insert_block(block)
    window.insert_transactions_of_block(block)

    txs, total = run(service.block_txs("3", Pagination(page=2, limit=4)))
    assert [tx.transaction_index for tx in txs] == [4, 5, 6, 7]
    assert total == 10
    db.txs_by_block_height.assert_not_called()


def test_block_txs_sliced_from_node(service, db, node, make_block):
    """Test node-sourced transactions get the same pagination."""
    db.txs_by_block_hash.side_effect = NotFoundError("not stored")
    node.block_by_hash.return_value = make_block(8, block_hash="0x8", num_txs=7)

    txs, total = run(service.block_txs("0x8", Pagination(page=2, limit=5)))
    assert [tx.transaction_index for tx in txs] == [5, 6]
    assert total == 7

    txs, total = run(service.block_txs("0x8", Pagination(page=3, limit=5)))
    assert txs == []


def test_txs_full_page_from_window(service, window, db, make_block):
    block = make_block(1, num_txs=5)
    window.insert_block(block)
    window.insert_transactions_of_block(block)
    db.txs_count.return_value = 500

    txs, total = run(service.txs(Pagination(page=1, limit=5)))
    assert len(txs) == 5
    assert total == 500
    db.latest_txs.assert_not_called()


def test_txs_out_of_window_from_database(service, window, db, make_block):
    block = make_block(1, num_txs=5)
    window.insert_block(block)
    window.insert_transactions_of_block(block)
    db.latest_txs.return_value = make_block(0, num_txs=2).txs
    db.txs_count.side_effect = RuntimeError("count failed")

    txs, total = run(service.txs(Pagination(page=2, limit=5)))
    assert len(txs) == 2
    # Count failure falls back to an estimate
    assert total == 7


def test_tx_merges_node_receipt(service, db, node, make_block):
    db.tx_by_hash.side_effect = NotFoundError("not stored")
    tx = make_block(9, num_txs=1).txs[0]
    node.get_transaction.return_value = tx
    node.get_transaction_receipt.return_value = Receipt(
        transaction_hash=tx.hash, gas_used=21000, status=1
    )

    result = run(service.tx(tx.hash))
    assert result.gas_used == 21000
    assert result.status == 1


def test_tx_without_receipt(service, db, node, make_block):
    db.tx_by_hash.side_effect = NotFoundError("not stored")
    tx = make_block(9, num_txs=1).txs[0]
    node.get_transaction.return_value = tx
    node.get_transaction_receipt.side_effect = ConnectionError("node went away")

    assert run(service.tx(tx.hash)).hash == tx.hash


def test_tx_from_window(service, window, db, make_block):
    block = make_block(2, num_txs=2)
    window.insert_block(block)
    window.insert_transactions_of_block(block)

    assert run(service.tx("0xtx2_1")).nonce == 1
    db.tx_by_hash.assert_not_called()


def test_database_only_reads(service, db, make_block):
    db.txs_by_address.return_value = ([], 0)
    db.blocks_by_proposer.return_value = ([make_block(1)], 1)

    assert run(service.address_txs("0xabc", Pagination())) == ([], 0)
    blocks, total = run(service.blocks_by_proposer("0xproposer", Pagination()))
    assert total == 1
    db.txs_by_address.assert_called_once_with("0xabc", Pagination())


def test_persistent_error_blocks(service, queues):
    queues.push_persistent_error(12)
    assert service.persistent_error_blocks() == [12]


def test_validators_from_redis_then_node(window, db, node, queues):
    redis = AsyncMock(spec=RedisManager)
    snapshot = Validators(total_validators=2)
    redis.get_model.return_value = snapshot
    service = ExplorerService(window, db, node, queues, FallbackReader(timeout=1.0), redis=redis)

    assert run(service.validators()) == snapshot
    node.validators.assert_not_awaited()

    redis.get_model.side_effect = NotFoundError("expired")
    node.validators.return_value = Validators(total_validators=3)
    assert run(service.validators()).total_validators == 3
    redis.set_model.assert_not_awaited()


def test_validators_without_redis(service, node):
    node.validators.return_value = Validators(total_validators=1)
    assert run(service.validators()).total_validators == 1
