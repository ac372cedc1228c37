"""
Error taxonomy for the explorer cache tiers.

The fallback read path relies on these types to decide whether a tier
should be skipped (a miss) or reported (a failure).
"""


class CacheError(Exception):
    """Base class for all cache and tier errors."""


class NotFoundError(CacheError):
    """Key, hash or height is absent from a tier."""


class EmptyError(CacheError):
    """Structure has zero elements."""


class CacheIndexError(CacheError):
    """Index invariant violated (key already mapped to another position)."""


class StoreError(CacheError):
    """Serialization or configuration failure inside a store."""


class TierTimeoutError(CacheError):
    """A tier call exceeded its deadline."""

    def __init__(self, tier: str, timeout: float):
        super().__init__(f"{tier} did not answer within {timeout}s")
        self.tier = tier
        self.timeout = timeout


class BadRequestError(CacheError):
    """Request parameters cannot be interpreted."""


# Errors that mean "this tier does not have it", as opposed to "this tier broke"
MISS_ERRORS = (NotFoundError, EmptyError)
