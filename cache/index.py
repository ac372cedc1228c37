"""
Index maintenance for the block window.

Maps block hash and height to a window position, and transaction nonce/hash
to a position inside the owning block's transaction list.

Window positions shift by one on every insert. Instead of rewriting every
entry, the index stores insertion sequence numbers and derives the position
from the sequence number of the newest entry (``head``):

    position = head - sequence

so a prepend is a single ``shift()`` call.

The index is not synchronized on its own; BlockWindow calls it while
holding the window lock.
"""
from typing import Dict, Optional, Set

import structlog

from blockchain.types import Block

from .core import (
    KEY_BLOCK_BY_HASH,
    KEY_BLOCK_BY_HEIGHT,
    KEY_TX_BY_HASH,
    KEY_TX_OF_BLOCK_BY_HASH,
    KEY_TX_OF_BLOCK_BY_NONCE,
)
from .errors import CacheIndexError, NotFoundError

logger = structlog.get_logger()


class IndexMaintainer:
    """Keeps hash/height/transaction lookup keys in step with the window."""

    def __init__(self):
        self._head = -1
        self._block_keys: Dict[str, int] = {}
        self._tx_keys: Dict[str, int] = {}
        self._tx_scopes: Dict[int, Set[str]] = {}

    def __len__(self) -> int:
        return len(self._block_keys)

    def shift(self) -> None:
        """Age every recorded position by one, making room at position 0."""
        self._head += 1

    def _position(self, seq: int) -> int:
        return self._head - seq

    def _sequence(self, position: int) -> int:
        return self._head - position

    def record_block_index(self, block_hash: str, height: int, position: int) -> None:
        """
        Map a block's hash and height to a window position.

        Args:
            block_hash: Block hash
            height: Block height
            position: Window position (0 = newest)

        Raises:
            CacheIndexError: If either key already maps to a different position
        """
        seq = self._sequence(position)
        keys = (
            KEY_BLOCK_BY_HASH.format(hash=block_hash),
            KEY_BLOCK_BY_HEIGHT.format(height=height),
        )
        for key in keys:
            existing = self._block_keys.get(key)
            if existing is not None and existing != seq:
                raise CacheIndexError(
                    f"{key} already maps to position {self._position(existing)}, not {position}"
                )
        for key in keys:
            self._block_keys[key] = seq

    def find_by_hash(self, block_hash: str) -> Optional[int]:
        seq = self._block_keys.get(KEY_BLOCK_BY_HASH.format(hash=block_hash))
        return None if seq is None else self._position(seq)

    def find_by_height(self, height: int) -> Optional[int]:
        seq = self._block_keys.get(KEY_BLOCK_BY_HEIGHT.format(height=height))
        return None if seq is None else self._position(seq)

    def lookup_by_hash(self, block_hash: str) -> int:
        position = self.find_by_hash(block_hash)
        if position is None:
            raise NotFoundError(f"block {block_hash} is not indexed")
        return position

    def lookup_by_height(self, height: int) -> int:
        position = self.find_by_height(height)
        if position is None:
            raise NotFoundError(f"block at height {height} is not indexed")
        return position

    def drop_index_for_position(self, position: int, evicted: Block) -> None:
        """
        Remove every key owned by the block stored at ``position``.

        ``evicted`` must be the record read from that position, since it
        is the only source for the hash and height keys to delete.
        """
        seq = self._sequence(position)
        for key in (KEY_BLOCK_BY_HASH.format(hash=evicted.hash),
                    KEY_BLOCK_BY_HEIGHT.format(height=evicted.height)):
            if self._block_keys.get(key) == seq:
                del self._block_keys[key]
            else:
                logger.warning("index_key_not_owned_by_evicted_block",
                               key=key, position=position)
        self.drop_tx_index(evicted.height)

    def record_tx_index(self, height: int, nonce: int, tx_hash: str, tx_position: int) -> None:
        """
        Map a transaction's nonce and hash (scoped to its block) to its
        position in the block's transaction list.

        Raises:
            CacheIndexError: If the transaction hash is already owned by another block
        """
        global_key = KEY_TX_BY_HASH.format(hash=tx_hash)
        owner = self.find_tx_block(tx_hash)
        if owner is not None and owner != height:
            raise CacheIndexError(f"transaction {tx_hash} already indexed in block {owner}")

        scope = self._tx_scopes.setdefault(height, set())
        for key, value in (
            (KEY_TX_OF_BLOCK_BY_NONCE.format(height=height, nonce=nonce), tx_position),
            (KEY_TX_OF_BLOCK_BY_HASH.format(height=height, hash=tx_hash), tx_position),
            (global_key, height),
        ):
            self._tx_keys[key] = value
            scope.add(key)

    def drop_tx_index(self, height: int) -> None:
        for key in self._tx_scopes.pop(height, set()):
            self._tx_keys.pop(key, None)

    def lookup_tx_by_nonce(self, height: int, nonce: int) -> int:
        position = self._tx_keys.get(KEY_TX_OF_BLOCK_BY_NONCE.format(height=height, nonce=nonce))
        if position is None:
            raise NotFoundError(f"no transaction with nonce {nonce} in block {height}")
        return position

    def lookup_tx_in_block(self, height: int, tx_hash: str) -> int:
        position = self._tx_keys.get(KEY_TX_OF_BLOCK_BY_HASH.format(height=height, hash=tx_hash))
        if position is None:
            raise NotFoundError(f"transaction {tx_hash} not in block {height}")
        return position

    def find_tx_block(self, tx_hash: str) -> Optional[int]:
        return self._tx_keys.get(KEY_TX_BY_HASH.format(hash=tx_hash))

    def lookup_tx_block(self, tx_hash: str) -> int:
        """Height of the block holding ``tx_hash``."""
        height = self.find_tx_block(tx_hash)
        if height is None:
            raise NotFoundError(f"transaction {tx_hash} is not indexed")
        return height
