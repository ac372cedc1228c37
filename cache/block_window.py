"""
Bounded window of the most recent blocks.

The window is the cache tier of the explorer: it keeps the latest
``capacity`` block summaries (newest at position 0) together with the
transactions of each block, and evicts the oldest block when a new one
arrives on a full window. Eviction is insert-triggered only.

All mutations run under the write side of a ReadWriteLock; lookups take the
read side. Eviction, index cleanup and the prepend of the new block happen
inside a single write section, so readers never observe a half-applied
insert.
"""
from collections import deque
from itertools import islice
from typing import Deque, List, Optional, Tuple

import structlog

from blockchain.pagination import Pagination, paginate_slice
from blockchain.types import Block, Transaction

from .core import decode_record, encode_record
from .errors import CacheIndexError, EmptyError, NotFoundError, StoreError
from .index import IndexMaintainer
from .locking import ReadWriteLock
from .monitoring import CacheMonitor

logger = structlog.get_logger()


class _Entry:
    """One window slot: a serialized block summary and its serialized transactions."""
    __slots__ = ("record", "txs")

    def __init__(self, record: str):
        self.record = record
        self.txs: Optional[List[str]] = None


class BlockWindow:
    """
    Fixed-capacity, most-recent-first list of blocks.

    Args:
        capacity: Maximum number of blocks kept (the configured block buffer)
        lock: Lock shared with the height queues; a new one is created if omitted
        monitor: Optional metrics recorder
    """

    def __init__(self, capacity: int, lock: Optional[ReadWriteLock] = None,
                 monitor: Optional[CacheMonitor] = None):
        self.capacity = capacity
        self.lock = lock or ReadWriteLock()
        self.monitor = monitor
        self.index = IndexMaintainer()
        self._entries: Deque[_Entry] = deque()

    def __len__(self) -> int:
        with self.lock.read_locked():
            return len(self._entries)

    # Writes

    def insert_block(self, block: Block) -> None:
        """
        Prepend a block, evicting the oldest one when the window is full.

        The stored record is the block summary; transaction and receipt
        bodies are stripped and belong to insert_transactions_of_block.

        Raises:
            StoreError: If the capacity is misconfigured or a record cannot be encoded/decoded
            CacheIndexError: If the block's hash or height is already in the window
        """
        record = encode_record(block.summary())

        with self.lock.write_locked():
            size = len(self._entries)
            if self.capacity <= 0 and size > 0:
                raise StoreError(f"invalid block buffer capacity {self.capacity}")

            evict_position = size - 1 if size >= self.capacity and size != 0 else None
            evicted = None
            if evict_position is not None:
                evicted = decode_record(self._entries[evict_position].record, Block)

            # Validate before touching anything so a rejected insert leaves no trace
            for position in (self.index.find_by_hash(block.hash),
                             self.index.find_by_height(block.height)):
                if position is not None and position != evict_position:
                    raise CacheIndexError(
                        f"block {block.height}/{block.hash} already cached at position {position}"
                    )

            if evicted is not None:
                self.index.drop_index_for_position(evict_position, evicted)
                self._entries.pop()
                logger.debug("block_evicted", height=evicted.height, hash=evicted.hash)
                if self.monitor:
                    self.monitor.record_eviction()

            self._entries.appendleft(_Entry(record))
            self.index.shift()
            self.index.record_block_index(block.hash, block.height, 0)
            size = len(self._entries)

        logger.debug("block_cached", height=block.height, hash=block.hash, window_size=size)
        if self.monitor:
            self.monitor.update_window_size(size)

    def insert_transactions_of_block(self, block: Block) -> None:
        """
        Store the transactions of a block already present in the window.

        Transactions are kept in ascending transaction index order.
        Inserting again for the same block replaces the previous list.

        Raises:
            NotFoundError: If the block is not in the window
            CacheIndexError: If a transaction hash is already cached under another block
        """
        if block.num_txs == 0 or not block.txs:
            return

        txs = sorted(block.txs, key=lambda tx: tx.transaction_index)
        records = [encode_record(tx) for tx in txs]

        with self.lock.write_locked():
            position = self.index.lookup_by_height(block.height)
            for tx in txs:
                owner = self.index.find_tx_block(tx.hash)
                if owner is not None and owner != block.height:
                    raise CacheIndexError(f"transaction {tx.hash} already cached in block {owner}")

            self.index.drop_tx_index(block.height)
            for tx_position, tx in enumerate(txs):
                self.index.record_tx_index(block.height, tx.nonce, tx.hash, tx_position)
            self._entries[position].txs = records

        logger.debug("block_txs_cached", height=block.height, count=len(records))

    def replace_block(self, block: Block) -> bool:
        """
        Overwrite the cached block at ``block.height`` in place.

        Used when a stored block turns out to differ from the node's. The
        position does not change; the old hash and transaction keys are
        dropped and the new ones recorded.

        Returns:
            False when the height is not in the window

        Raises:
            CacheIndexError: If the new hash or a transaction hash is cached under another block
        """
        record = encode_record(block.summary())
        txs = sorted(block.txs, key=lambda tx: tx.transaction_index)
        tx_records = [encode_record(tx) for tx in txs]

        with self.lock.write_locked():
            position = self.index.find_by_height(block.height)
            if position is None:
                return False
            owner = self.index.find_by_hash(block.hash)
            if owner is not None and owner != position:
                raise CacheIndexError(f"block {block.hash} already cached at position {owner}")
            for tx in txs:
                tx_owner = self.index.find_tx_block(tx.hash)
                if tx_owner is not None and tx_owner != block.height:
                    raise CacheIndexError(f"transaction {tx.hash} already cached in block {tx_owner}")

            replaced = decode_record(self._entries[position].record, Block)
            self.index.drop_index_for_position(position, replaced)
            self.index.record_block_index(block.hash, block.height, position)
            entry = _Entry(record)
            if tx_records:
                for tx_position, tx in enumerate(txs):
                    self.index.record_tx_index(block.height, tx.nonce, tx.hash, tx_position)
                entry.txs = tx_records
            self._entries[position] = entry

        logger.info("block_replaced", height=block.height, old_hash=replaced.hash, hash=block.hash)
        return True

    # Reads

    def _require_entries(self) -> None:
        if not self._entries:
            raise NotFoundError("block window is empty")

    def _decode_block(self, position: int) -> Block:
        try:
            return decode_record(self._entries[position].record, Block)
        except StoreError as e:
            raise NotFoundError(f"block at position {position} is unreadable") from e

    def block_by_hash(self, block_hash: str) -> Block:
        with self.lock.read_locked():
            self._require_entries()
            return self._decode_block(self.index.lookup_by_hash(block_hash))

    def block_by_height(self, height: int) -> Block:
        with self.lock.read_locked():
            self._require_entries()
            return self._decode_block(self.index.lookup_by_height(height))

    def latest_blocks(self, pagination: Pagination) -> List[Block]:
        """
        Page through the window, newest first.

        A page past the end of the window is short or empty, never an error.

        Raises:
            StoreError: If a stored record cannot be decoded
        """
        skip, limit = pagination.to_skip_limit()
        with self.lock.read_locked():
            records = [entry.record for entry in islice(self._entries, skip, skip + limit)]
        return [decode_record(record, Block) for record in records]

    def latest_transactions(self, pagination: Pagination) -> List[Transaction]:
        """
        Page through the cached transactions, newest block first and
        ascending transaction index inside a block.

        Unlike latest_blocks, the requested range must lie entirely inside
        the cached transactions.

        Raises:
            NotFoundError: If skip or skip + limit runs past the cached transactions
            StoreError: If a stored record cannot be decoded
        """
        skip, limit = pagination.to_skip_limit()
        with self.lock.read_locked():
            size = sum(len(entry.txs) for entry in self._entries if entry.txs)
            if skip >= size or skip + limit > size:
                raise NotFoundError(
                    f"transactions [{skip}, {skip + limit}) out of cached range {size}"
                )
            records = []
            offset = 0
            for entry in self._entries:
                if not entry.txs:
                    continue
                if offset + len(entry.txs) > skip:
                    start = max(skip - offset, 0)
                    records.extend(entry.txs[start:start + limit - len(records)])
                    if len(records) == limit:
                        break
                offset += len(entry.txs)
        return [decode_record(record, Transaction) for record in records]

    def _block_txs(self, position: int, pagination: Pagination) -> Tuple[List[Transaction], int]:
        entry = self._entries[position]
        if entry.txs is None:
            if self._decode_block(position).num_txs == 0:
                return [], 0
            raise NotFoundError(f"transactions of block at position {position} are not cached")
        skip, limit = pagination.to_skip_limit()
        records = paginate_slice(entry.txs, skip, limit)
        return [decode_record(record, Transaction) for record in records], len(entry.txs)

    def txs_by_block_height(self, height: int, pagination: Pagination) -> Tuple[List[Transaction], int]:
        """
        Page through the transactions of a cached block.

        Returns:
            The page of transactions and the block's transaction count

        Raises:
            NotFoundError: If the block or its transactions are not cached
        """
        with self.lock.read_locked():
            self._require_entries()
            return self._block_txs(self.index.lookup_by_height(height), pagination)

    def txs_by_block_hash(self, block_hash: str, pagination: Pagination) -> Tuple[List[Transaction], int]:
        with self.lock.read_locked():
            self._require_entries()
            return self._block_txs(self.index.lookup_by_hash(block_hash), pagination)

    def _tx_at(self, height: int, tx_position: int) -> Transaction:
        entry = self._entries[self.index.lookup_by_height(height)]
        if entry.txs is None or tx_position >= len(entry.txs):
            raise NotFoundError(f"transaction {tx_position} of block {height} is not cached")
        return decode_record(entry.txs[tx_position], Transaction)

    def tx_by_hash(self, tx_hash: str) -> Transaction:
        with self.lock.read_locked():
            height = self.index.lookup_tx_block(tx_hash)
            return self._tx_at(height, self.index.lookup_tx_in_block(height, tx_hash))

    def tx_by_nonce(self, height: int, nonce: int) -> Transaction:
        with self.lock.read_locked():
            return self._tx_at(height, self.index.lookup_tx_by_nonce(height, nonce))

    def block_size(self) -> int:
        """
        Number of blocks in the window.

        Raises:
            EmptyError: If the window holds no block
        """
        with self.lock.read_locked():
            size = len(self._entries)
        if size == 0:
            raise EmptyError("blocks has no cache")
        return size

    def latest_block_height(self) -> int:
        with self.lock.read_locked():
            if not self._entries:
                raise EmptyError("blocks has no cache")
            return decode_record(self._entries[0].record, Block).height

    def total_txs(self) -> int:
        with self.lock.read_locked():
            return sum(len(entry.txs) for entry in self._entries if entry.txs)
