"""
Chain-facing modules of the explorer: record types, pagination, the durable
store and the node RPC client.
"""
from .types import (
    NetworkType,
    Block,
    Transaction,
    Receipt,
    Log,
    Validator,
    Validators
)
from .pagination import Pagination, paginate_slice

__all__ = [
    'NetworkType',
    'Block',
    'Transaction',
    'Receipt',
    'Log',
    'Validator',
    'Validators',
    'Pagination',
    'paginate_slice'
]
