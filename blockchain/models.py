from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, BigInteger, JSON, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

from .types import Block, Transaction

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)

Base = declarative_base()


class BlockRecord(Base):
    __tablename__ = 'blocks'

    height = Column(BigInteger, primary_key=True, autoincrement=False)
    hash = Column(String(66), unique=True, nullable=False, index=True)
    proposer_address = Column(String(42), index=True)
    time = Column(DateTime)
    gas_used = Column(BigInteger, default=0)
    gas_limit = Column(BigInteger, default=0)
    rewards = Column(String, default="0")
    num_txs = Column(Integer, default=0)
    network_type = Column(String, nullable=False)

    @classmethod
    def from_model(cls, block: Block, network_type: str) -> "BlockRecord":
        return cls(
            height=block.height,
            hash=block.hash,
            proposer_address=block.proposer_address,
            time=block.time,
            gas_used=block.gas_used,
            gas_limit=block.gas_limit,
            rewards=block.rewards,
            num_txs=block.num_txs,
            network_type=network_type,
        )

    def to_model(self) -> Block:
        return Block(
            height=self.height,
            hash=self.hash,
            proposer_address=self.proposer_address or "",
            time=self.time or EPOCH,
            gas_used=self.gas_used or 0,
            gas_limit=self.gas_limit or 0,
            rewards=self.rewards or "0",
            num_txs=self.num_txs or 0,
        )


class TransactionRecord(Base):
    __tablename__ = 'transactions'

    hash = Column(String(66), primary_key=True)
    block_number = Column(BigInteger, nullable=False)
    block_hash = Column(String(66), index=True)
    transaction_index = Column(Integer, default=0)
    nonce = Column(BigInteger, default=0)
    from_address = Column(String(42), index=True)
    to_address = Column(String(42), index=True)
    value = Column(String, default="0")
    gas_price = Column(BigInteger, default=0)
    gas_limit = Column(BigInteger, default=0)
    gas_used = Column(BigInteger, default=0)
    tx_fee = Column(String, default="0")
    status = Column(Integer, default=0)
    input_data = Column(Text, default="")
    decoded_input_data = Column(JSON, nullable=True)
    contract_address = Column(String(42), default="")
    root = Column(String(66), default="")
    logs = Column(JSON, default=list)
    time = Column(DateTime)
    network_type = Column(String, nullable=False)

    __table_args__ = (
        Index('ix_transactions_block_position', 'block_number', 'transaction_index'),
    )

    @classmethod
    def from_model(cls, tx: Transaction, network_type: str) -> "TransactionRecord":
        return cls(
            hash=tx.hash,
            block_number=tx.block_number,
            block_hash=tx.block_hash,
            transaction_index=tx.transaction_index,
            nonce=tx.nonce,
            from_address=tx.from_address,
            to_address=tx.to_address,
            value=tx.value,
            gas_price=tx.gas_price,
            gas_limit=tx.gas_limit,
            gas_used=tx.gas_used,
            tx_fee=tx.tx_fee,
            status=tx.status,
            input_data=tx.input_data,
            decoded_input_data=tx.decoded_input_data,
            contract_address=tx.contract_address,
            root=tx.root,
            logs=[log.model_dump(mode="json") for log in tx.logs],
            time=tx.time,
            network_type=network_type,
        )

    def to_model(self) -> Transaction:
        return Transaction(
            hash=self.hash,
            block_number=self.block_number,
            block_hash=self.block_hash or "",
            transaction_index=self.transaction_index or 0,
            nonce=self.nonce or 0,
            from_address=self.from_address or "",
            to_address=self.to_address or "",
            value=self.value or "0",
            gas_price=self.gas_price or 0,
            gas_limit=self.gas_limit or 0,
            gas_used=self.gas_used or 0,
            tx_fee=self.tx_fee or "0",
            status=self.status or 0,
            input_data=self.input_data or "",
            decoded_input_data=self.decoded_input_data,
            contract_address=self.contract_address or "",
            root=self.root or "",
            logs=self.logs or [],
            time=self.time or EPOCH,
        )
