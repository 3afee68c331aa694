"""
Persistence for records with a unique ``id`` field.

Records are stored under the key ``<collection><id>`` and tagged with the
collection name, so several collections can live in one bucket. Key-value
operations go straight to the bucket; filter-based queries are delegated to
a wrapped ``CouchbasePersistence``.

Configuration parameters:
    bucket:                 (optional) Couchbase bucket name
    collection:             (optional) logical collection name
    connection(s):          see CouchbaseConnection
    credential(s):          see CouchbaseConnection
    options:
        max_page_size:      (optional) maximum page size (default: 100)
    dependencies:
        connection:         (optional) locator of a shared CouchbaseConnection

This module is part of CB_PERSISTENCE.
"""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from ..config import ConfigParams
from ..constants import COLLECTION_MARKER_FIELD, ID_FIELD
from ..data import DataPage, PagingParams, clone_record, generate_id
from ..driver import BucketHandle, DocumentStoreDriver, DriverError, GetResult, is_key_not_found
from ..observability import get_logger as get_contextual_logger
from ..observability import timed_operation
from ..references import References
from .persistence import CouchbasePersistence

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class _CollectionPersistence(CouchbasePersistence):
    """Base persistence that converts query rows with its owner's hooks."""

    def __init__(
        self,
        owner: "IdentifiableCouchbasePersistence",
        bucket: str | None,
        collection: str,
        driver: DocumentStoreDriver | None,
    ) -> None:
        super().__init__(bucket, collection, driver)
        self._owner = owner

    def to_public(self, value: Any) -> Any:
        return self._owner.to_public(value)

    def to_internal(self, value: Any) -> Any:
        return self._owner.to_internal(value)


class IdentifiableCouchbasePersistence:
    """
    Persistence for records identified by an ``id`` field.

    Subclasses build WHERE fragments for their own filters and call the
    protected query primitives. Note that ``get_list_by_filter`` and
    ``delete_by_filter`` are not restricted to the collection; include
    ``_c="<collection>"`` in the filter when the bucket is shared.

    Example:
        class DummyPersistence(IdentifiableCouchbasePersistence):
            def __init__(self):
                super().__init__("test", "dummies")

            async def get_page_by_key(self, correlation_id, key, paging):
                return await self.get_page_by_filter(
                    correlation_id, f"key={json.dumps(key)}", paging
                )

        persistence = DummyPersistence()
        persistence.configure(ConfigParams.from_env())
        await persistence.open(None)
        dummy = await persistence.create(None, {"key": "Key 1", "content": "Content 1"})
    """

    def __init__(
        self,
        bucket: str | None,
        collection: str | None,
        driver: DocumentStoreDriver | None = None,
    ) -> None:
        """
        Initialize the persistence.

        Args:
            bucket: Bucket name (may be set later through configuration)
            collection: Logical collection name
            driver: (optional) driver handed to a private connection

        Raises:
            ValueError: If collection is None
        """
        if collection is None:
            raise ValueError("Collection name could not be None")

        self._collection = collection
        self._persistence = _CollectionPersistence(self, bucket, collection, driver)

    # ------------------------------------------------------------------
    # Lifecycle (delegated)
    # ------------------------------------------------------------------

    def configure(self, config: ConfigParams) -> None:
        """Configure the component; ``collection`` may override the constructor value."""
        self._persistence.configure(config)
        self._collection = self._persistence.get_collection() or self._collection

    def set_references(self, references: References | None) -> None:
        self._persistence.set_references(references)

    def unset_references(self) -> None:
        self._persistence.unset_references()

    def is_open(self) -> bool:
        return self._persistence.is_open()

    async def open(self, correlation_id: str | None) -> None:
        await self._persistence.open(correlation_id)

    async def close(self, correlation_id: str | None) -> None:
        await self._persistence.close(correlation_id)

    async def clear(self, correlation_id: str | None) -> None:
        """Flush the whole bucket, including other collections stored in it."""
        await self._persistence.clear(correlation_id)

    # ------------------------------------------------------------------
    # Keys and conversion
    # ------------------------------------------------------------------

    @property
    def _bucket_name(self) -> str | None:
        return self._persistence.get_bucket_name()

    def _get_bucket(self, correlation_id: str | None) -> BucketHandle:
        return self._persistence.get_bucket(correlation_id)

    def metric_tags(self) -> dict[str, str | None]:
        return {"bucket": self._bucket_name, "collection": self._collection}

    def generate_bucket_id(self, id: Any) -> str | None:
        """
        Build the storage key of a record.

        Args:
            id: Record id

        Returns:
            ``<collection><id>``, or None when id is None
        """
        if id is None:
            return None
        return f"{self._collection}{id}"

    def to_public(self, value: Any) -> Any:
        """
        Convert a stored document into a public record by stripping the
        collection marker.
        """
        if isinstance(value, BaseModel):
            value = value.model_dump()
        if isinstance(value, dict) and COLLECTION_MARKER_FIELD in value:
            value = dict(value)
            del value[COLLECTION_MARKER_FIELD]
        return value

    def to_internal(self, value: Any) -> Any:
        """Convert a public record into a stored document tagged with the collection."""
        if isinstance(value, BaseModel):
            value = value.model_dump()
        if isinstance(value, dict):
            value = dict(value)
            value[COLLECTION_MARKER_FIELD] = self._collection
        return value

    def to_internal_partial(self, value: Any) -> Any:
        """Convert a partial update; by default the same as ``to_internal``."""
        return self.to_internal(value)

    @staticmethod
    def _as_record(item: Any) -> dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump()
        return clone_record(item)

    # ------------------------------------------------------------------
    # Query primitives (delegated)
    # ------------------------------------------------------------------

    async def get_page_by_filter(
        self,
        correlation_id: str | None,
        filter: str | None,
        paging: PagingParams | None,
        sort: str | None = None,
        select: str | None = None,
    ) -> DataPage:
        return await self._persistence.get_page_by_filter(
            correlation_id, filter, paging, sort, select
        )

    async def get_list_by_filter(
        self,
        correlation_id: str | None,
        filter: str | None,
        sort: str | None = None,
        select: str | None = None,
    ) -> list[Any]:
        return await self._persistence.get_list_by_filter(correlation_id, filter, sort, select)

    async def get_count_by_filter(self, correlation_id: str | None, filter: str | None) -> int:
        return await self._persistence.get_count_by_filter(correlation_id, filter)

    async def get_one_random(self, correlation_id: str | None, filter: str | None) -> Any:
        return await self._persistence.get_one_random(correlation_id, filter)

    async def delete_by_filter(self, correlation_id: str | None, filter: str | None) -> None:
        await self._persistence.delete_by_filter(correlation_id, filter)

    # ------------------------------------------------------------------
    # Key-value operations
    # ------------------------------------------------------------------

    @timed_operation("persistence.get_one_by_id")
    async def get_one_by_id(self, correlation_id: str | None, id: Any) -> Any:
        """
        Get a record by its id.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            id: Record id

        Returns:
            The record, or None if it does not exist
        """
        key = self.generate_bucket_id(id)
        try:
            result = await self._get_bucket(correlation_id).get(key)
        except DriverError as e:
            if is_key_not_found(e):
                return None
            raise

        logger.debug(
            f"Retrieved from {self._bucket_name} by id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return self.to_public(result.value)

    @timed_operation("persistence.get_list_by_ids")
    async def get_list_by_ids(self, correlation_id: str | None, ids: list[Any]) -> list[Any]:
        """
        Get records by their ids. Missing ids are skipped.

        When every key fails, the first failure decides: a missing key gives
        an empty list, anything else is raised.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            ids: Record ids

        Returns:
            Found records
        """
        keys = [self.generate_bucket_id(id) for id in ids]
        if not keys:
            return []

        results = await self._get_bucket(correlation_id).get_multi(keys)

        errors = [result for result in results.values() if isinstance(result, Exception)]
        if errors and len(errors) == len(results):
            error = results.get(keys[0], errors[0])
            if not is_key_not_found(error):
                raise error

        items = []
        for key in keys:
            result = results.get(key)
            if isinstance(result, GetResult) and result.value is not None:
                items.append(self.to_public(result.value))

        logger.debug(
            f"Retrieved {len(items)} from {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )
        return items

    def _prepare_new(self, item: Any) -> tuple[str, Any]:
        record = self._as_record(item)
        if record.get(ID_FIELD) is None:
            record[ID_FIELD] = generate_id()
        return self.generate_bucket_id(record[ID_FIELD]), self.to_internal(record)

    @timed_operation("persistence.create")
    async def create(self, correlation_id: str | None, item: Any) -> Any:
        """
        Create a record. An id is generated when the record has none.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            item: Record to create

        Returns:
            The created record, or None when item is None

        Raises:
            DocumentExistsError: If a record with the same id exists
        """
        if item is None:
            return None

        key, value = self._prepare_new(item)
        await self._get_bucket(correlation_id).insert(key, value)

        logger.debug(
            f"Created in {self._bucket_name} with id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return self.to_public(value)

    @timed_operation("persistence.set")
    async def set(self, correlation_id: str | None, item: Any) -> Any:
        """
        Create or replace a record. An id is generated when the record has none.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            item: Record to set

        Returns:
            The stored record, or None when item is None
        """
        if item is None:
            return None

        key, value = self._prepare_new(item)
        await self._get_bucket(correlation_id).upsert(key, value)

        logger.debug(
            f"Set in {self._bucket_name} with id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return self.to_public(value)

    @timed_operation("persistence.update")
    async def update(self, correlation_id: str | None, item: Any) -> Any:
        """
        Replace an existing record.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            item: Record with the id of the record to replace

        Returns:
            The updated record, or None when item or its id is None

        Raises:
            DocumentNotFoundError: If the record does not exist
        """
        if item is None:
            return None
        record = self._as_record(item)
        if record.get(ID_FIELD) is None:
            return None

        key = self.generate_bucket_id(record[ID_FIELD])
        value = self.to_internal(record)
        await self._get_bucket(correlation_id).replace(key, value)

        logger.debug(
            f"Updated in {self._bucket_name} with id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return self.to_public(value)

    @timed_operation("persistence.update_partially")
    async def update_partially(
        self, correlation_id: str | None, id: Any, data: Mapping[str, Any] | None
    ) -> Any:
        """
        Update selected fields of a record.

        The record is read with its CAS token, merged with ``data`` and
        replaced under that token. A concurrent write makes the replace fail
        with ``CasMismatchError``; the update is not retried.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            id: Record id
            data: Fields to update

        Returns:
            The updated record, or None when id or data is None

        Raises:
            DocumentNotFoundError: If the record does not exist
            CasMismatchError: If the record changed since it was read
        """
        if id is None or data is None:
            return None

        key = self.generate_bucket_id(id)
        partial = self.to_internal_partial(dict(data))
        bucket = self._get_bucket(correlation_id)

        result = await bucket.get(key)
        if result.value is None:
            return None

        value = dict(result.value)
        value.update(partial)
        await bucket.replace(key, value, cas=result.cas)

        logger.debug(
            f"Updated partially in {self._bucket_name} with id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return self.to_public(value)

    @timed_operation("persistence.delete_by_id")
    async def delete_by_id(self, correlation_id: str | None, id: Any) -> Any:
        """
        Delete a record by its id.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            id: Record id

        Returns:
            The deleted record, or None when id is None

        Raises:
            DocumentNotFoundError: If the record does not exist
        """
        if id is None:
            return None

        key = self.generate_bucket_id(id)
        bucket = self._get_bucket(correlation_id)

        result = await bucket.get(key)
        if result.value is None:
            return None
        old_item = self.to_public(result.value)

        try:
            await bucket.remove(key)
        except DriverError as e:
            # Removed concurrently
            if not is_key_not_found(e):
                raise

        logger.debug(
            f"Deleted from {self._bucket_name} with id = {key}",
            extra={"correlation_id": correlation_id},
        )
        return old_item

    @timed_operation("persistence.delete_by_ids")
    async def delete_by_ids(self, correlation_id: str | None, ids: list[Any]) -> None:
        """
        Delete records by their ids. Missing ids are ignored.

        All removals run concurrently and are awaited before the first
        failure (in id order) is raised.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
            ids: Record ids
        """
        keys = [self.generate_bucket_id(id) for id in ids]
        if not keys:
            return

        bucket = self._get_bucket(correlation_id)
        results = await asyncio.gather(
            *(bucket.remove(key) for key in keys), return_exceptions=True
        )

        deleted = 0
        first_error: BaseException | None = None
        for key, result in zip(keys, results):
            if not isinstance(result, BaseException):
                deleted += 1
            elif not is_key_not_found(result) and first_error is None:
                first_error = result
                contextual_logger.error(
                    "Failed to delete record",
                    extra={
                        "correlation_id": correlation_id,
                        "bucket": self._bucket_name,
                        "key": key,
                        "error": str(result),
                    },
                )

        logger.debug(
            f"Deleted {deleted} items from {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )
        if first_error is not None:
            raise first_error
