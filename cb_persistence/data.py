"""
Data transfer types shared by persistence components.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class PagingParams:
    """
    Paging parameters of a page query.

    Attributes:
        skip: Number of records to skip (None means no explicit offset)
        take: Number of records to return (None means the page size limit)
        total: Whether the total number of matching records is requested
    """

    skip: int | None = None
    take: int | None = None
    total: bool = False

    def get_skip(self, min_skip: int) -> int:
        """Get the skip value, or ``min_skip`` when unset or smaller."""
        if self.skip is None:
            return min_skip
        return max(self.skip, min_skip)

    def get_take(self, max_take: int) -> int:
        """Get the take value, capped by ``max_take`` and defaulting to it."""
        if self.take is None:
            return max_take
        if self.take < 0:
            return 0
        return min(self.take, max_take)


@dataclass
class DataPage(Generic[T]):
    """
    A page of records.

    ``total`` is set only when the paging parameters requested it.
    """

    data: list[T] = field(default_factory=list)
    total: int | None = None


def generate_id() -> str:
    """Generate a unique record identifier."""
    return uuid.uuid4().hex


def clone_record(record: Any) -> Any:
    """Shallow copy of a record, leaving the caller's object untouched."""
    if isinstance(record, dict):
        return dict(record)
    return record
