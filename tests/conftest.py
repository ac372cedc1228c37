import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from blockchain.types import Block, Transaction
from cache.block_window import BlockWindow
from cache.error_queues import ErrorHeightQueues


def build_block(height, block_hash=None, num_txs=0, proposer="0xproposer"):
    """Block whose hash defaults to str(height), with num_txs transactions."""
    block_hash = block_hash or str(height)
    txs = [
        Transaction(
            hash=f"0xtx{height}_{i}",
            block_number=height,
            block_hash=block_hash,
            transaction_index=i,
            nonce=i,
            from_address=f"0xsender{i % 3}",
            to_address="0xreceiver",
            value=str(i),
        )
        for i in range(num_txs)
    ]
    return Block(
        height=height,
        hash=block_hash,
        proposer_address=proposer,
        num_txs=num_txs,
        txs=txs,
    )


@pytest.fixture
def make_block():
    """Factory for test blocks."""
    return build_block


@pytest.fixture
def window():
    """Create a window holding at most 10 blocks."""
    return BlockWindow(capacity=10)


@pytest.fixture
def filled_window(window):
    """Window with heights 1..10 (hash = str(height))."""
    for height in range(1, 11):
        window.insert_block(build_block(height))
    return window


@pytest.fixture
def queues(window):
    """Height queues sharing the window's lock."""
    return ErrorHeightQueues(lock=window.lock)
