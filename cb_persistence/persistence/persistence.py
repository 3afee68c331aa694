"""
Abstract persistence component that stores data in Couchbase.

Statements are composed from caller-supplied WHERE and ORDER BY fragments
and executed against the opened bucket. Several logical collections can
share one physical bucket; records are tagged with the collection name in
the hidden ``_c`` field.

Configuration parameters:
    bucket:                 (optional) Couchbase bucket name
    collection:             (optional) logical collection name
    connection(s):          see CouchbaseConnection
    credential(s):          see CouchbaseConnection
    options:
        max_page_size:      (optional) maximum page size (default: 100)
        ...                 other options are passed to the private connection
    dependencies:
        connection:         (optional) locator of a shared CouchbaseConnection

References:
    *:connection:couchbase:*:1.0  (optional) shared connection
    *:discovery:*:*:1.0           (optional) Discovery services
    *:credential-store:*:*:1.0    (optional) Credential stores

This module is part of CB_PERSISTENCE.
"""

import json
import logging
import random
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from ..config import DEFAULT_CONFIG, ConfigParams, PersistenceOptions
from ..constants import COLLECTION_MARKER_FIELD, DEFAULT_MAX_PAGE_SIZE
from ..data import DataPage, PagingParams
from ..driver import BucketHandle, ClusterHandle, DocumentStoreDriver, DriverError, ScanConsistency
from ..exceptions import InvalidStateError, StoreConnectionError
from ..observability import get_logger as get_contextual_logger
from ..observability import timed_operation
from ..references import DependencyResolver, References
from .connection import CouchbaseConnection

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


@dataclass
class OwnedConnection:
    """A private connection created by the persistence; closed together with it."""

    connection: CouchbaseConnection


@dataclass
class BorrowedConnection:
    """A shared connection found in references; never closed by the persistence."""

    connection: CouchbaseConnection


ConnectionRef = OwnedConnection | BorrowedConnection


class CouchbasePersistence:
    """
    Base persistence over a Couchbase bucket.

    Subclasses expose typed operations and build their WHERE fragments on top
    of the protected query primitives (``get_page_by_filter``,
    ``get_list_by_filter``, ``get_count_by_filter``, ``get_one_random``,
    ``delete_by_filter``). Override ``to_public`` / ``to_internal`` to map
    between stored documents and application records.

    Example:
        class BeaconsPersistence(CouchbasePersistence):
            def __init__(self):
                super().__init__("test", "beacons")

            async def get_by_site(self, correlation_id, site_id):
                return await self.get_list_by_filter(
                    correlation_id, f"site_id={json.dumps(site_id)}", None, None
                )
    """

    def __init__(
        self,
        bucket: str | None = None,
        collection: str | None = None,
        driver: DocumentStoreDriver | None = None,
    ) -> None:
        """
        Initialize the persistence.

        Args:
            bucket: (optional) bucket name
            collection: (optional) logical collection name
            driver: (optional) driver handed to a private connection
        """
        self._bucket_name = bucket
        self._collection = collection
        self._driver = driver

        self._dependency_resolver = DependencyResolver(DEFAULT_CONFIG.get_section("dependencies"))
        self._config: ConfigParams | None = None
        self._references: References | None = None
        self._options = PersistenceOptions()
        self._max_page_size = DEFAULT_MAX_PAGE_SIZE

        self._connection_ref: ConnectionRef | None = None
        self._cluster: ClusterHandle | None = None
        self._bucket: BucketHandle | None = None
        self._opened = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def configure(self, config: ConfigParams) -> None:
        """
        Configure the component.

        Args:
            config: Configuration parameters to be set
        """
        config = ConfigParams(config).set_defaults(DEFAULT_CONFIG)
        self._config = config

        self._dependency_resolver.configure(config)

        self._bucket_name = config.get_as_string_with_default("bucket", self._bucket_name)
        self._collection = config.get_as_string_with_default("collection", self._collection)
        self._options = PersistenceOptions.from_config(config.get_section("options"))
        self._max_page_size = self._options.max_page_size

    def set_references(self, references: References | None) -> None:
        """
        Set references to dependent components.

        A connection found under ``dependencies.connection`` is borrowed;
        otherwise a private connection is created and owned.

        Args:
            references: References to locate the component dependencies
        """
        self._references = references
        self._dependency_resolver.set_references(references)

        connection = self._dependency_resolver.get_one_optional("connection")
        if connection is not None:
            self._connection_ref = BorrowedConnection(connection)
        else:
            self._connection_ref = OwnedConnection(self._create_connection())

    def unset_references(self) -> None:
        """Drop the connection reference without closing it."""
        self._connection_ref = None

    def _create_connection(self) -> CouchbaseConnection:
        connection = CouchbaseConnection(self._bucket_name, self._driver)
        if self._config is not None:
            connection.configure(self._config)
        if self._references is not None:
            connection.set_references(self._references)
        return connection

    def is_open(self) -> bool:
        """Check if the component is opened."""
        return self._opened

    async def open(self, correlation_id: str | None) -> None:
        """
        Open the component.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain

        Raises:
            ConfigurationError: If a private connection cannot be resolved
            StoreConnectionError: If the connection is not open after opening
        """
        if self._opened:
            return

        if self._connection_ref is None:
            self._connection_ref = OwnedConnection(self._create_connection())

        connection = self._connection_ref.connection
        if isinstance(self._connection_ref, OwnedConnection):
            await connection.open(correlation_id)

        if not connection.is_open():
            contextual_logger.error(
                "Couchbase connection is not opened",
                extra={"correlation_id": correlation_id, "collection": self._collection},
            )
            raise StoreConnectionError(
                "Couchbase connection is not opened",
                code="CONNECT_FAILED",
                correlation_id=correlation_id,
                context={"collection": self._collection},
            )

        self._cluster = connection.get_connection()
        self._bucket = connection.get_bucket()
        self._bucket_name = connection.get_bucket_name()
        self._opened = True

        logger.debug(
            f"Opened persistence for {self._collection} in bucket {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )

    async def close(self, correlation_id: str | None) -> None:
        """
        Close the component. Only an owned connection is closed.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain

        Raises:
            InvalidStateError: If the connection reference was dropped while open
        """
        if not self._opened:
            return

        if self._connection_ref is None:
            raise InvalidStateError(
                "Couchbase connection is missing",
                code="NO_CONNECTION",
                correlation_id=correlation_id,
            )

        if isinstance(self._connection_ref, OwnedConnection):
            await self._connection_ref.connection.close(correlation_id)

        self._opened = False
        self._cluster = None
        self._bucket = None

    async def clear(self, correlation_id: str | None) -> None:
        """
        Clear component state by flushing the whole bucket.

        Every logical collection stored in the bucket is removed.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain

        Raises:
            InvalidStateError: If the bucket name is not defined or the component is not open
            StoreConnectionError: If the flush fails
        """
        if not self._bucket_name:
            raise InvalidStateError(
                "Bucket name is not defined", code="NO_BUCKET", correlation_id=correlation_id
            )

        bucket = self.get_bucket(correlation_id)
        try:
            await bucket.flush()
        except DriverError as e:
            contextual_logger.error(
                "Failed to flush bucket",
                extra={
                    "correlation_id": correlation_id,
                    "bucket": self._bucket_name,
                    "error": str(e),
                },
            )
            raise StoreConnectionError(
                f"Failed to flush bucket {self._bucket_name}",
                code="FLUSH_FAILED",
                correlation_id=correlation_id,
                context={"bucket": self._bucket_name},
            ) from e

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_public(self, value: Any) -> Any:
        """
        Convert a stored document into the public format.

        Args:
            value: Document to convert

        Returns:
            Converted record
        """
        if isinstance(value, BaseModel):
            return value.model_dump()
        return value

    def to_internal(self, value: Any) -> Any:
        """
        Convert a public record into the stored format.

        Args:
            value: Record to convert

        Returns:
            Converted document
        """
        if isinstance(value, BaseModel):
            return value.model_dump()
        return value

    # ------------------------------------------------------------------
    # Statement helpers
    # ------------------------------------------------------------------

    def get_bucket_name(self) -> str | None:
        return self._bucket_name

    def get_collection(self) -> str | None:
        return self._collection

    def metric_tags(self) -> dict[str, str | None]:
        """Bucket and collection tags of this component's metric series."""
        return {"bucket": self._bucket_name, "collection": self._collection}

    def get_bucket(self, correlation_id: str | None = None) -> BucketHandle:
        """
        Get the opened bucket handle.

        Raises:
            InvalidStateError: If the component is not open
        """
        if self._bucket is None:
            raise InvalidStateError(
                "Persistence is not opened",
                code="NO_CONNECTION",
                correlation_id=correlation_id,
                context={"collection": self._collection},
            )
        return self._bucket

    def _from_clause(self) -> str:
        return f"`{self._bucket_name}`"

    def _where_clause(self, filter: str | None, scoped: bool) -> str:
        """Compose ``WHERE <collection filter> AND (<filter>)``; empty when nothing applies."""
        clauses: list[str] = []
        if scoped and self._collection:
            clauses.append(f"{COLLECTION_MARKER_FIELD}={json.dumps(self._collection)}")
        if filter:
            clauses.append(f"({filter})" if clauses else filter)
        if not clauses:
            return ""
        return " WHERE " + " AND ".join(clauses)

    def _convert_rows(self, rows: list[Any], select: str | None) -> list[Any]:
        """Unwrap ``SELECT *`` rows from their bucket key, convert and drop empty results."""
        items = []
        for row in rows:
            if not select and isinstance(row, dict) and self._bucket_name in row:
                row = row[self._bucket_name]
            item = self.to_public(row)
            if item is not None:
                items.append(item)
        return items

    async def _query_count(self, correlation_id: str | None, where: str) -> int:
        statement = f"SELECT COUNT(*) FROM {self._from_clause()}{where}"
        result = await self.get_bucket(correlation_id).query(
            statement, ScanConsistency.STATEMENT_PLUS
        )
        if not result.rows:
            return 0
        row = result.rows[0]
        if isinstance(row, dict):
            return int(next(iter(row.values()), 0))
        return int(row)

    # ------------------------------------------------------------------
    # Query primitives
    # ------------------------------------------------------------------

    @timed_operation("persistence.get_page_by_filter")
    async def get_page_by_filter(
        self,
        correlation_id: str | None,
        filter: str | None,
        paging: PagingParams | None,
        sort: str | None = None,
        select: str | None = None,
    ) -> DataPage:
        """
        Get a page of records matching a filter, sorted by the sort expression.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            filter: (optional) filter expression placed after WHERE
            paging: (optional) paging parameters
            sort: (optional) sort expression placed after ORDER BY
            select: (optional) projection placed after SELECT

        Returns:
            Data page; ``total`` is set only when requested by ``paging``
        """
        paging = paging or PagingParams()
        skip = paging.get_skip(-1)
        take = paging.get_take(self._max_page_size)

        where = self._where_clause(filter, scoped=True)
        statement = f"SELECT {select or '*'} FROM {self._from_clause()}{where}"
        if sort:
            statement += f" ORDER BY {sort}"
        if skip >= 0:
            statement += f" OFFSET {skip}"
        statement += f" LIMIT {take}"

        result = await self.get_bucket(correlation_id).query(
            statement, ScanConsistency.STATEMENT_PLUS
        )
        logger.debug(
            f"Retrieved {len(result.rows)} from {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )
        items = self._convert_rows(result.rows, select)

        if paging.total:
            count = await self._query_count(correlation_id, where)
            return DataPage(items, count)
        return DataPage(items)

    @timed_operation("persistence.get_list_by_filter")
    async def get_list_by_filter(
        self,
        correlation_id: str | None,
        filter: str | None,
        sort: str | None = None,
        select: str | None = None,
    ) -> list[Any]:
        """
        Get every record matching a filter, sorted by the sort expression.

        The statement is not scoped to the collection; callers include the
        collection condition in ``filter`` when the bucket is shared.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            filter: (optional) filter expression placed after WHERE
            sort: (optional) sort expression placed after ORDER BY
            select: (optional) projection placed after SELECT

        Returns:
            List of records
        """
        statement = f"SELECT {select or '*'} FROM {self._from_clause()}"
        statement += self._where_clause(filter, scoped=False)
        if sort:
            statement += f" ORDER BY {sort}"

        result = await self.get_bucket(correlation_id).query(
            statement, ScanConsistency.REQUEST_PLUS
        )
        logger.debug(
            f"Retrieved {len(result.rows)} from {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )
        return self._convert_rows(result.rows, select)

    @timed_operation("persistence.get_count_by_filter")
    async def get_count_by_filter(self, correlation_id: str | None, filter: str | None) -> int:
        """
        Get the number of records in the collection matching a filter.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            filter: (optional) filter expression placed after WHERE

        Returns:
            Number of matching records
        """
        count = await self._query_count(correlation_id, self._where_clause(filter, scoped=True))
        logger.debug(
            f"Counted {count} items in {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )
        return count

    @timed_operation("persistence.get_one_random")
    async def get_one_random(self, correlation_id: str | None, filter: str | None) -> Any:
        """
        Get a random record from those matching a filter.

        The count and the read are separate statements, so concurrent writes
        may make the result miss (None) or skew the distribution.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            filter: (optional) filter expression placed after WHERE

        Returns:
            A random record, or None if nothing matches
        """
        where = self._where_clause(filter, scoped=True)
        count = await self._query_count(correlation_id, where)
        if count == 0:
            return None

        skip = random.randrange(count)
        statement = f"SELECT * FROM {self._from_clause()}{where} OFFSET {skip} LIMIT 1"
        result = await self.get_bucket(correlation_id).query(
            statement, ScanConsistency.STATEMENT_PLUS
        )
        items = self._convert_rows(result.rows, None)
        item = items[0] if items else None

        if item is not None:
            logger.debug(
                f"Retrieved random item from {self._bucket_name}",
                extra={"correlation_id": correlation_id},
            )
        return item

    @timed_operation("persistence.delete_by_filter")
    async def delete_by_filter(self, correlation_id: str | None, filter: str | None) -> None:
        """
        Delete records matching a filter.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            filter: (optional) filter expression placed after WHERE
        """
        statement = f"DELETE FROM {self._from_clause()}"
        statement += self._where_clause(filter, scoped=False)

        result = await self.get_bucket(correlation_id).query(
            statement, ScanConsistency.REQUEST_PLUS
        )
        if result.mutation_count is not None:
            logger.debug(
                f"Deleted {result.mutation_count} items from {self._bucket_name}",
                extra={"correlation_id": correlation_id},
            )
