"""
Core type definitions for the explorer.
These types are shared by the cache, the database layer, the node client
and the HTTP API, and don't import from other project modules.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NetworkType(str, Enum):
    """Network the explorer is attached to."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


class ChainModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


def _epoch() -> datetime:
    return datetime.fromtimestamp(0, tz=timezone.utc)


class Log(ChainModel):
    """Event log emitted by a transaction."""
    address: str = ""
    topics: List[str] = Field(default_factory=list)
    data: str = ""
    block_height: int = 0
    tx_hash: str = ""
    index: int = 0
    removed: bool = False


class Receipt(ChainModel):
    """Execution receipt of a transaction."""
    transaction_hash: str
    gas_used: int = 0
    status: int = 0
    contract_address: str = ""
    root: str = ""
    logs: List[Log] = Field(default_factory=list)


class Transaction(ChainModel):
    """A transaction embedded in a block."""
    hash: str
    block_number: int = 0
    block_hash: str = ""
    transaction_index: int = 0
    nonce: int = 0
    from_address: str = Field(default="", alias="from")
    to_address: str = Field(default="", alias="to")
    value: str = "0"
    gas_price: int = 0
    gas_limit: int = 0
    gas_used: int = 0
    tx_fee: str = "0"
    status: int = 0
    input_data: str = ""
    decoded_input_data: Optional[Dict[str, Any]] = None
    contract_address: str = ""
    root: str = ""
    logs: List[Log] = Field(default_factory=list)
    time: datetime = Field(default_factory=_epoch)

    def apply_receipt(self, receipt: Receipt) -> "Transaction":
        """Return a copy carrying the execution results of ``receipt``."""
        return self.model_copy(update={
            "logs": receipt.logs,
            "root": receipt.root,
            "status": receipt.status,
            "gas_used": receipt.gas_used,
            "contract_address": receipt.contract_address,
        })


class Block(ChainModel):
    """A block with its transactions and receipts."""
    height: int
    hash: str
    proposer_address: str = ""
    time: datetime = Field(default_factory=_epoch)
    gas_used: int = 0
    gas_limit: int = 0
    rewards: str = "0"
    num_txs: int = 0
    txs: List[Transaction] = Field(default_factory=list)
    receipts: List[Receipt] = Field(default_factory=list)

    def summary(self) -> "Block":
        """Copy of the block without the transaction and receipt bodies."""
        return self.model_copy(update={"txs": [], "receipts": []})


class Validator(ChainModel):
    """Validator entry as reported by the node."""
    address: str
    smc_address: str = ""
    name: str = ""
    role: int = 0
    voting_power_percentage: str = "0"
    staked_amount: str = "0"
    commission_rate: str = "0"


class Validators(ChainModel):
    """Validator set snapshot."""
    total_validators: int = 0
    total_candidates: int = 0
    total_staked_amount: str = "0"
    validators: List[Validator] = Field(default_factory=list)
