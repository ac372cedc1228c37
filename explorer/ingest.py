"""
Ingestion side of the explorer: the single writer of the block window.

New heights are polled from the node, persisted, and inserted into the
window together with their transactions. Any height that could not be
processed is queued for another pass, and freshly ingested heights are
queued for verification against the node.
"""
import asyncio
from typing import List, Optional

import structlog

from blockchain.database import DatabaseManager
from blockchain.node_client import NodeClient
from blockchain.types import Block
from cache.block_window import BlockWindow
from cache.core import KEY_VALIDATORS
from cache.error_queues import ErrorHeightQueues
from cache.errors import MISS_ERRORS
from cache.redis_manager import RedisManager
from config.logging import log_error

logger = structlog.get_logger()


class BlockIngestor:
    """Feeds new blocks into the database and the block window.

    Args:
        window: Block window to fill
        db: Durable store
        node: Node client used to follow the head and refetch failed or unverified heights
        queues: Error and unverified height queues
        redis: Optional redis manager holding the validators snapshot
        validators_ttl: Lifetime of the validators snapshot in seconds
    """

    def __init__(
        self,
        window: BlockWindow,
        db: DatabaseManager,
        node: NodeClient,
        queues: ErrorHeightQueues,
        redis: Optional[RedisManager] = None,
        validators_ttl: int = 600,
    ):
        self.window = window
        self.db = db
        self.node = node
        self.queues = queues
        self.redis = redis
        self.validators_ttl = validators_ttl
        self.last_height: Optional[int] = None
        self._tasks: List[asyncio.Task] = []

    def _advance(self, height: int) -> None:
        """Queue the heights skipped since the last block and move the head to ``height``."""
        if self.last_height is None:
            try:
                self.last_height = self.window.latest_block_height()
            except MISS_ERRORS:
                self.last_height = height
                return
        if height > self.last_height + 1:
            missing = self.queues.push_error_range(self.last_height, height)
            logger.warning("block_gap_detected", last_height=self.last_height,
                           height=height, missing=missing)
        self.last_height = max(self.last_height, height)

    async def ingest(self, block: Block) -> bool:
        """
        Persist a block and add it to the window.

        A failed block is recorded as a persistent error and queued for
        retry; the head still moves past it.

        Returns:
            True when the block is stored and cached, False otherwise
        """
        self._advance(block.height)
        try:
            await asyncio.to_thread(self.db.upsert_block, block)
            self.window.insert_block(block)
            self.window.insert_transactions_of_block(block)
        except Exception as e:
            log_error(logger, e, {"operation": "block_ingest", "height": block.height})
            self.queues.push_persistent_error(block.height)
            self.queues.push_error_height(block.height)
            return False

        logger.info("block_ingested", height=block.height, hash=block.hash, num_txs=block.num_txs)
        return True

    async def follow_head(self, max_blocks: int = 20) -> int:
        """
        Ingest the heights the node produced since the last pass.

        At most ``max_blocks`` heights are fetched per pass; the rest are
        picked up by the next one. On a fresh start only the node's newest
        block is ingested.

        Returns:
            Number of blocks ingested
        """
        head = await self.node.block_number()
        if self.last_height is None:
            try:
                self.last_height = self.window.latest_block_height()
            except MISS_ERRORS:
                pass
        start = head if self.last_height is None else self.last_height + 1
        end = min(head, start + max_blocks - 1)

        ingested = 0
        for height in range(start, end + 1):
            try:
                block = await self.node.block_by_height(height)
            except Exception as e:
                log_error(logger, e, {"operation": "head_fetch", "height": height})
                break
            if await self.ingest(block):
                self.mark_unverified(height)
                ingested += 1
        return ingested

    async def retry_error_blocks(self, max_blocks: int = 10) -> int:
        """
        Refetch and store heights from the error queue.

        Heights are persisted only: a block older than the window head is
        served by the database, not the window.

        Returns:
            Number of heights stored successfully
        """
        stored = 0
        for _ in range(max_blocks):
            try:
                height = self.queues.pop_error_height()
            except MISS_ERRORS:
                break
            try:
                block = await self.node.block_by_height(height)
                await asyncio.to_thread(self.db.upsert_block, block)
            except Exception as e:
                log_error(logger, e, {"operation": "error_block_retry", "height": height})
                self.queues.push_persistent_error(height)
                continue
            stored += 1
        if stored:
            logger.info("error_blocks_recovered", count=stored)
        return stored

    def mark_unverified(self, height: int) -> None:
        self.queues.push_unverified(height)

    async def verify_next(self) -> Optional[bool]:
        """
        Check the oldest unverified height against the node.

        A mismatching block is replaced in the database and, when the height
        is still cached, in the window.

        Returns:
            None when nothing is waiting, True when the stored block matched,
            False when it was replaced by the node's version
        """
        try:
            height = self.queues.pop_unverified()
        except MISS_ERRORS:
            return None

        try:
            block = await self.node.block_by_height(height)
        except Exception:
            self.queues.push_unverified(height)
            raise
        try:
            stored = await asyncio.to_thread(self.db.block_by_height, height)
        except MISS_ERRORS:
            stored = None

        if stored is not None and stored.hash == block.hash:
            logger.debug("block_verified", height=height)
            return True

        logger.warning("block_mismatch_repaired", height=height,
                       stored_hash=stored.hash if stored else None, node_hash=block.hash)
        await asyncio.to_thread(self.db.upsert_block, block)
        try:
            self.window.replace_block(block)
        except Exception as e:
            log_error(logger, e, {"operation": "window_repair", "height": height})
        return False

    async def refresh_validators(self) -> bool:
        """Store the node's validator set in redis for the read path."""
        if self.redis is None:
            return False
        validators = await self.node.validators()
        ok = await self.redis.set_model(KEY_VALIDATORS, validators, self.validators_ttl)
        logger.info("validators_refreshed", total=validators.total_validators, stored=ok)
        return ok

    async def maintain_once(self, max_blocks: int = 10) -> None:
        """One pass over the error queue, a batch of unverified heights and the validators snapshot."""
        await self.retry_error_blocks(max_blocks)
        for _ in range(max_blocks):
            if await self.verify_next() is None:
                break
        await self.refresh_validators()

    async def start(self, interval: float = 30.0, head_interval: float = 1.0) -> None:
        """Start the head-following and maintenance loops."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._loop("head_follow", self.follow_head, head_interval)),
            asyncio.create_task(self._loop("maintenance", self.maintain_once, interval)),
        ]
        logger.info("ingestor_started", interval=interval, head_interval=head_interval)

    async def stop(self) -> None:
        if not self._tasks:
            return
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("ingestor_stopped")

    async def _loop(self, operation: str, step, interval: float) -> None:
        while True:
            try:
                await step()
            except Exception as e:
                log_error(logger, e, {"operation": operation})
            await asyncio.sleep(interval)
