"""
Durable store for the explorer.
Blocks and transactions ingested from the node are persisted here and served
when they have left the in-memory block window.
"""
import os
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import create_engine, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cache.errors import EmptyError, NotFoundError, StoreError
from .models import Base, BlockRecord, TransactionRecord
from .pagination import Pagination
from .types import Block, NetworkType, Transaction

logger = structlog.get_logger()


def _engine_options(db_url: str) -> dict:
    if not db_url.startswith("sqlite"):
        return {"pool_pre_ping": True}
    options = {"connect_args": {"check_same_thread": False}}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        options["poolclass"] = StaticPool
    return options


class DatabaseManager:
    """Manages database connections and block/transaction queries."""

    def __init__(self, db_url: Optional[str] = None, network_type: NetworkType = NetworkType.MAINNET):
        """Initialize the database manager.

        Args:
            db_url: SQLAlchemy database URL. If None, uses an in-memory SQLite database.
            network_type: Network the stored records belong to.
        """
        self.network_type = network_type

        if db_url is None:
            db_url = "sqlite:///:memory:"
        elif db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
            data_dir = os.path.dirname(db_url[len("sqlite:///"):])
            if data_dir:
                os.makedirs(data_dir, exist_ok=True)

        self.engine = create_engine(db_url, **_engine_options(db_url))
        self.Session = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)
        logger.info("database_initialized", db_url=db_url, network_type=network_type.value)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.Session()

    def close(self) -> None:
        self.engine.dispose()

    # Blocks
    def block_by_height(self, height: int) -> Block:
        with self.Session() as session:
            record = session.get(BlockRecord, height)
            if record is None:
                raise NotFoundError(f"block {height} is not stored")
            return record.to_model()

    def block_by_hash(self, block_hash: str) -> Block:
        with self.Session() as session:
            record = session.query(BlockRecord).filter_by(hash=block_hash).first()
            if record is None:
                raise NotFoundError(f"block {block_hash} is not stored")
            return record.to_model()

    def blocks(self, pagination: Pagination) -> List[Block]:
        """Page of stored blocks, highest first."""
        with self.Session() as session:
            records = (
                session.query(BlockRecord)
                .order_by(BlockRecord.height.desc())
                .offset(pagination.skip)
                .limit(pagination.limit)
                .all()
            )
            return [r.to_model() for r in records]

    def blocks_by_proposer(self, proposer: str, pagination: Pagination) -> Tuple[List[Block], int]:
        with self.Session() as session:
            query = session.query(BlockRecord).filter_by(proposer_address=proposer)
            total = query.count()
            records = (
                query.order_by(BlockRecord.height.desc())
                .offset(pagination.skip)
                .limit(pagination.limit)
                .all()
            )
            return [r.to_model() for r in records], total

    def latest_block_height(self) -> int:
        """
        Raises:
            EmptyError: If no block is stored
        """
        with self.Session() as session:
            height = session.query(func.max(BlockRecord.height)).scalar()
            if height is None:
                raise EmptyError("no block is stored")
            return height

    # Transactions
    def _txs_of_block(self, session: Session, block: BlockRecord,
                      pagination: Pagination) -> Tuple[List[Transaction], int]:
        query = session.query(TransactionRecord).filter_by(block_number=block.height)
        total = query.count()
        records = (
            query.order_by(TransactionRecord.transaction_index.asc())
            .offset(pagination.skip)
            .limit(pagination.limit)
            .all()
        )
        return [r.to_model() for r in records], total

    def txs_by_block_height(self, height: int, pagination: Pagination) -> Tuple[List[Transaction], int]:
        with self.Session() as session:
            block = session.get(BlockRecord, height)
            if block is None:
                raise NotFoundError(f"block {height} is not stored")
            return self._txs_of_block(session, block, pagination)

    def txs_by_block_hash(self, block_hash: str, pagination: Pagination) -> Tuple[List[Transaction], int]:
        with self.Session() as session:
            block = session.query(BlockRecord).filter_by(hash=block_hash).first()
            if block is None:
                raise NotFoundError(f"block {block_hash} is not stored")
            return self._txs_of_block(session, block, pagination)

    def txs_by_address(self, address: str, pagination: Pagination) -> Tuple[List[Transaction], int]:
        """Transactions sent from or to ``address``, newest first."""
        with self.Session() as session:
            query = session.query(TransactionRecord).filter(or_(
                TransactionRecord.from_address == address,
                TransactionRecord.to_address == address,
            ))
            total = query.count()
            records = (
                query.order_by(TransactionRecord.block_number.desc(),
                               TransactionRecord.transaction_index.asc())
                .offset(pagination.skip)
                .limit(pagination.limit)
                .all()
            )
            return [r.to_model() for r in records], total

    def latest_txs(self, pagination: Pagination) -> List[Transaction]:
        with self.Session() as session:
            records = (
                session.query(TransactionRecord)
                .order_by(TransactionRecord.block_number.desc(),
                          TransactionRecord.transaction_index.asc())
                .offset(pagination.skip)
                .limit(pagination.limit)
                .all()
            )
            return [r.to_model() for r in records]

    def tx_by_hash(self, tx_hash: str) -> Transaction:
        with self.Session() as session:
            record = session.get(TransactionRecord, tx_hash)
            if record is None:
                raise NotFoundError(f"transaction {tx_hash} is not stored")
            return record.to_model()

    def txs_count(self) -> int:
        with self.Session() as session:
            return session.query(func.count(TransactionRecord.hash)).scalar() or 0

    # Writes
    def insert_block(self, block: Block) -> None:
        """Insert a new block with its transactions.

        Raises:
            StoreError: If the block or one of its transactions already exists
        """
        network = self.network_type.value
        try:
            with self.Session() as session:
                session.add(BlockRecord.from_model(block, network))
                session.add_all([TransactionRecord.from_model(tx, network) for tx in block.txs])
                session.commit()
        except SQLAlchemyError as e:
            logger.error("block_insert_failed", height=block.height, error=str(e))
            raise StoreError(f"cannot insert block {block.height}") from e
        logger.debug("block_inserted", height=block.height, num_txs=len(block.txs))

    def upsert_block(self, block: Block) -> None:
        """Insert or replace a block; its stored transactions are replaced too."""
        network = self.network_type.value
        try:
            with self.Session() as session:
                session.merge(BlockRecord.from_model(block, network))
                session.query(TransactionRecord).filter_by(
                    block_number=block.height
                ).delete(synchronize_session=False)
                for tx in block.txs:
                    session.merge(TransactionRecord.from_model(tx, network))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("block_upsert_failed", height=block.height, error=str(e))
            raise StoreError(f"cannot upsert block {block.height}") from e
        logger.debug("block_upserted", height=block.height, num_txs=len(block.txs))
