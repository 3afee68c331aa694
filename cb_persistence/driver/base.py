"""
Abstract document store driver.

Defines the narrow capability the persistence layer needs from a document
database client. Implementations wrap a concrete client (see
``cb_persistence.driver.couchbase``) or an in-memory store for tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ScanConsistency(str, Enum):
    """
    Query consistency levels.

    NOT_BOUNDED: return whatever the index holds
    STATEMENT_PLUS: consistent with mutations completed before the statement
    REQUEST_PLUS: wait for all prior mutations to become visible
    """

    NOT_BOUNDED = "not_bounded"
    STATEMENT_PLUS = "statement_plus"
    REQUEST_PLUS = "request_plus"


@dataclass
class GetResult:
    """A document read together with its CAS token."""

    value: Any
    cas: Any = None


@dataclass
class QueryResult:
    """Rows returned by a query and the mutation count reported for it."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    mutation_count: int | None = None


class BucketHandle(ABC):
    """
    An opened bucket.

    Key operations raise ``DriverError`` subclasses on failure; a missing key
    is reported as ``DocumentNotFoundError``.
    """

    name: str

    @abstractmethod
    async def get(self, key: str) -> GetResult:
        """Read a document by key."""

    @abstractmethod
    async def get_multi(self, keys: list[str]) -> dict[str, GetResult | Exception]:
        """
        Read several documents.

        Returns:
            Mapping of key to its result, or to the error raised for that key
        """

    @abstractmethod
    async def insert(self, key: str, value: dict[str, Any]) -> Any:
        """Insert a new document; fails if the key exists. Returns the new CAS."""

    @abstractmethod
    async def upsert(self, key: str, value: dict[str, Any]) -> Any:
        """Insert or replace a document. Returns the new CAS."""

    @abstractmethod
    async def replace(self, key: str, value: dict[str, Any], cas: Any = None) -> Any:
        """Replace an existing document, optionally guarded by a CAS token."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a document by key."""

    @abstractmethod
    async def query(
        self,
        statement: str,
        consistency: ScanConsistency = ScanConsistency.NOT_BOUNDED,
    ) -> QueryResult:
        """Execute a query statement against the store."""

    @abstractmethod
    async def flush(self) -> None:
        """Remove every document in the bucket."""

    @abstractmethod
    async def create_primary_index(self, ignore_if_exists: bool = True) -> None:
        """Create the primary index of the bucket."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the bucket handle."""


class ClusterHandle(ABC):
    """A connected cluster."""

    @abstractmethod
    async def create_bucket(
        self,
        name: str,
        bucket_type: str,
        ram_quota_mb: int,
        flush_enabled: bool,
    ) -> None:
        """Create a bucket; raises ``BucketExistsError`` if it already exists."""

    @abstractmethod
    async def open_bucket(self, name: str) -> BucketHandle:
        """Open a bucket by name."""

    @abstractmethod
    async def close(self) -> None:
        """Close the cluster connection."""


class DocumentStoreDriver(ABC):
    """Entry point of a driver: establishes cluster connections."""

    @abstractmethod
    async def connect(
        self,
        uri: str,
        username: str | None = None,
        password: str | None = None,
    ) -> ClusterHandle:
        """
        Connect to a cluster.

        Args:
            uri: Connection string
            username: Optional user name
            password: Optional password (used only with a user name)

        Returns:
            Connected cluster handle
        """
