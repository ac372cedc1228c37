"""
Read API of the explorer.

Every read goes through the fallback chain: block window, then database,
then the live node. Results are returned from the first tier that answers
and are never copied back into the tiers that missed; the window is filled
by the ingestion side only.
"""
import asyncio
from typing import List, Optional, Tuple, Union

import structlog

from blockchain.database import DatabaseManager
from blockchain.node_client import NodeClient
from blockchain.pagination import Pagination, paginate_slice
from blockchain.types import Block, Transaction, Validators
from cache.block_window import BlockWindow
from cache.core import KEY_VALIDATORS
from cache.error_queues import ErrorHeightQueues
from cache.errors import MISS_ERRORS, BadRequestError
from cache.monitoring import CACHE_TIER, DATABASE_TIER, RPC_TIER
from cache.redis_manager import RedisManager
from .fallback import FallbackReader, async_tier, sync_tier, thread_tier

logger = structlog.get_logger()

BlockId = Union[str, int]


def parse_block_id(raw: str) -> BlockId:
    """A ``0x`` prefix selects a block hash, anything else must be a positive height.

    Raises:
        BadRequestError: If the value is neither
    """
    if raw.startswith("0x"):
        return raw
    try:
        height = int(raw)
    except ValueError:
        raise BadRequestError(f"invalid block identifier {raw!r}")
    if height <= 0:
        raise BadRequestError(f"invalid block height {height}")
    return height


def _non_empty(result) -> bool:
    return len(result) > 0


class ExplorerService:
    """Fallback reads over the block window, the database and the node."""

    def __init__(
        self,
        window: BlockWindow,
        db: DatabaseManager,
        node: NodeClient,
        queues: ErrorHeightQueues,
        reader: FallbackReader,
        redis: Optional[RedisManager] = None,
    ):
        self.window = window
        self.db = db
        self.node = node
        self.queues = queues
        self.reader = reader
        self.redis = redis

    async def block(self, raw_id: str) -> Block:
        block_id = parse_block_id(raw_id)
        if isinstance(block_id, str):
            tiers = [
                sync_tier(CACHE_TIER, self.window.block_by_hash, block_id),
                thread_tier(DATABASE_TIER, self.db.block_by_hash, block_id),
                async_tier(RPC_TIER, self.node.block_by_hash, block_id),
            ]
        else:
            tiers = [
                sync_tier(CACHE_TIER, self.window.block_by_height, block_id),
                thread_tier(DATABASE_TIER, self.db.block_by_height, block_id),
                async_tier(RPC_TIER, self.node.block_by_height, block_id),
            ]
        result = await self.reader.read("block", tiers)
        return result.data

    async def blocks(self, pagination: Pagination) -> Tuple[List[Block], int]:
        """Latest blocks, newest first, with the chain height as total."""
        result = await self.reader.read("blocks", [
            sync_tier(CACHE_TIER, self.window.latest_blocks, pagination, accept=_non_empty),
            thread_tier(DATABASE_TIER, self.db.blocks, pagination),
        ])
        blocks = result.data
        return blocks, await self._latest_height(blocks)

    async def _latest_height(self, blocks: List[Block]) -> int:
        try:
            return self.window.latest_block_height()
        except MISS_ERRORS:
            pass
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.db.latest_block_height), self.reader.timeout
            )
        except MISS_ERRORS:
            pass
        except Exception as e:
            logger.warning("latest_height_unavailable", error=str(e))
        return blocks[0].height if blocks else 0

    async def block_txs(self, raw_id: str, pagination: Pagination) -> Tuple[List[Transaction], int]:
        """Transactions of one block, in block order, with the block's transaction count."""
        block_id = parse_block_id(raw_id)
        if isinstance(block_id, str):
            cached, stored, fetch = (self.window.txs_by_block_hash,
                                     self.db.txs_by_block_hash, self.node.block_by_hash)
        else:
            cached, stored, fetch = (self.window.txs_by_block_height,
                                     self.db.txs_by_block_height, self.node.block_by_height)

        async def from_node():
            block = await fetch(block_id)
            txs = sorted(block.txs, key=lambda tx: tx.transaction_index)
            return paginate_slice(txs, pagination.skip, pagination.limit), block.num_txs

        result = await self.reader.read("block_txs", [
            sync_tier(CACHE_TIER, cached, block_id, pagination),
            thread_tier(DATABASE_TIER, stored, block_id, pagination),
            async_tier(RPC_TIER, from_node),
        ])
        return result.data

    async def txs(self, pagination: Pagination) -> Tuple[List[Transaction], int]:
        """Latest transactions across blocks with the total number of stored transactions."""
        result = await self.reader.read("txs", [
            sync_tier(CACHE_TIER, self.window.latest_transactions, pagination,
                      accept=lambda txs: len(txs) == pagination.limit),
            thread_tier(DATABASE_TIER, self.db.latest_txs, pagination),
        ])
        txs = result.data
        try:
            total = await asyncio.wait_for(asyncio.to_thread(self.db.txs_count), self.reader.timeout)
        except Exception as e:
            total = max(self.window.total_txs(), pagination.skip + len(txs))
            logger.warning("txs_count_unavailable", error=str(e), estimate=total)
        return txs, total

    async def tx(self, tx_hash: str) -> Transaction:
        async def from_node():
            tx = await self.node.get_transaction(tx_hash)
            try:
                receipt = await self.node.get_transaction_receipt(tx_hash)
            except Exception as e:
                logger.warning("tx_receipt_unavailable", tx_hash=tx_hash, error=str(e))
                return tx
            return tx.apply_receipt(receipt)

        result = await self.reader.read("tx", [
            sync_tier(CACHE_TIER, self.window.tx_by_hash, tx_hash),
            thread_tier(DATABASE_TIER, self.db.tx_by_hash, tx_hash),
            async_tier(RPC_TIER, from_node),
        ])
        return result.data

    async def address_txs(self, address: str, pagination: Pagination) -> Tuple[List[Transaction], int]:
        result = await self.reader.read("address_txs", [
            thread_tier(DATABASE_TIER, self.db.txs_by_address, address, pagination),
        ])
        return result.data

    async def blocks_by_proposer(self, address: str, pagination: Pagination) -> Tuple[List[Block], int]:
        result = await self.reader.read("blocks_by_proposer", [
            thread_tier(DATABASE_TIER, self.db.blocks_by_proposer, address, pagination),
        ])
        return result.data

    def persistent_error_blocks(self) -> List[int]:
        return self.queues.list_persistent_errors()

    async def validators(self) -> Validators:
        """Validator snapshot from redis, or from the node when the snapshot expired."""
        tiers = []
        if self.redis is not None:
            tiers.append(async_tier(CACHE_TIER, self.redis.get_model, KEY_VALIDATORS, Validators))
        tiers.append(async_tier(RPC_TIER, self.node.validators))
        result = await self.reader.read("validators", tiers)
        return result.data
