"""
Explorer caching module

The in-memory side of the explorer's read path: a bounded window of the most
recent blocks and their transactions, the index maps that keep hash, height
and position consistent, and the queues of heights the ingestion pipeline has
to revisit. Validator snapshots are kept in redis.
"""

from .core import encode_record, decode_record
from .errors import (
    CacheError,
    NotFoundError,
    EmptyError,
    CacheIndexError,
    StoreError,
    TierTimeoutError,
    BadRequestError,
    MISS_ERRORS
)
from .locking import ReadWriteLock
from .index import IndexMaintainer
from .block_window import BlockWindow
from .error_queues import ErrorHeightQueues
from .monitoring import CacheMonitor
from .redis_manager import RedisManager

__all__ = [
    'encode_record',
    'decode_record',
    'CacheError',
    'NotFoundError',
    'EmptyError',
    'CacheIndexError',
    'StoreError',
    'TierTimeoutError',
    'BadRequestError',
    'MISS_ERRORS',
    'ReadWriteLock',
    'IndexMaintainer',
    'BlockWindow',
    'ErrorHeightQueues',
    'CacheMonitor',
    'RedisManager'
]
