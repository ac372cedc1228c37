"""Pagination shared by every list endpoint."""
from typing import List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, Field

T = TypeVar('T')

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class Pagination(BaseModel):
    """1-indexed page plus page size."""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_LIMIT, ge=1)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def to_skip_limit(self) -> Tuple[int, int]:
        """Translate the page into a ``(skip, limit)`` pair."""
        return self.skip, self.limit

    @classmethod
    def from_query(
        cls,
        page: Optional[str] = None,
        limit: Optional[str] = None,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
    ) -> "Pagination":
        """
        Build a pagination from raw query string values.

        Missing, unparsable, zero or negative values fall back to the first
        page and ``default_limit``. Limits above ``max_limit`` are capped.
        """
        page_num = _parse_positive(page) or 1
        limit_num = _parse_positive(limit) or default_limit
        return cls(page=page_num, limit=min(limit_num, max_limit))


def _parse_positive(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def paginate_slice(items: Sequence[T], skip: int, limit: int) -> List[T]:
    """Slice ``items`` with bounds clamped to ``[0, len(items)]``."""
    size = len(items)
    start = min(max(skip, 0), size)
    end = min(max(start + limit, start), size)
    return list(items[start:end])
