"""
Couchbase driver adapter.

Implements the driver interface on top of the asynchronous API of the
official Couchbase Python SDK (``acouchbase``). Native exceptions are
translated into ``cb_persistence.driver.errors`` so the persistence layer
never depends on the SDK directly.

This module is part of CB_PERSISTENCE.
"""

import asyncio
import logging
from typing import Any

from acouchbase.cluster import Cluster
from couchbase.auth import PasswordAuthenticator
from couchbase.exceptions import (
    BucketAlreadyExistsException,
    CasMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
)
from couchbase.management.buckets import BucketType, CreateBucketSettings
from couchbase.management.options import CreatePrimaryQueryIndexOptions
from couchbase.n1ql import QueryScanConsistency
from couchbase.options import ClusterOptions, QueryOptions, ReplaceOptions

from .base import (
    BucketHandle,
    ClusterHandle,
    DocumentStoreDriver,
    GetResult,
    QueryResult,
    ScanConsistency,
)
from .errors import (
    BucketExistsError,
    CasMismatchError,
    DocumentExistsError,
    DocumentNotFoundError,
    DriverError,
)

logger = logging.getLogger(__name__)

# The SDK has no statement_plus level; request_plus is the closest stronger one
_CONSISTENCY_MAP = {
    ScanConsistency.NOT_BOUNDED: QueryScanConsistency.NOT_BOUNDED,
    ScanConsistency.STATEMENT_PLUS: QueryScanConsistency.REQUEST_PLUS,
    ScanConsistency.REQUEST_PLUS: QueryScanConsistency.REQUEST_PLUS,
}


def _translate(error: CouchbaseException, key: Any = None) -> DriverError:
    """Map a native SDK exception onto the driver error taxonomy."""
    if isinstance(error, DocumentNotFoundException):
        return DocumentNotFoundError(str(error), key=key)
    if isinstance(error, CasMismatchException):
        return CasMismatchError(str(error), key=key)
    if isinstance(error, DocumentExistsException):
        return DocumentExistsError(str(error), key=key)
    if isinstance(error, BucketAlreadyExistsException):
        return BucketExistsError(str(error))
    return DriverError(str(error), key=key)


class CouchbaseBucket(BucketHandle):
    """Bucket handle backed by the default collection of an SDK bucket."""

    def __init__(self, cluster: Cluster, bucket: Any, name: str) -> None:
        self._cluster = cluster
        self._bucket = bucket
        self._collection = bucket.default_collection()
        self.name = name

    async def get(self, key: str) -> GetResult:
        try:
            result = await self._collection.get(key)
        except CouchbaseException as e:
            raise _translate(e, key) from e
        return GetResult(value=result.content_as[dict], cas=result.cas)

    async def get_multi(self, keys: list[str]) -> dict[str, GetResult | Exception]:
        results = await asyncio.gather(*(self.get(key) for key in keys), return_exceptions=True)
        return dict(zip(keys, results, strict=True))

    async def insert(self, key: str, value: dict[str, Any]) -> Any:
        try:
            result = await self._collection.insert(key, value)
        except CouchbaseException as e:
            raise _translate(e, key) from e
        return result.cas

    async def upsert(self, key: str, value: dict[str, Any]) -> Any:
        try:
            result = await self._collection.upsert(key, value)
        except CouchbaseException as e:
            raise _translate(e, key) from e
        return result.cas

    async def replace(self, key: str, value: dict[str, Any], cas: Any = None) -> Any:
        try:
            if cas is not None:
                result = await self._collection.replace(key, value, ReplaceOptions(cas=cas))
            else:
                result = await self._collection.replace(key, value)
        except CouchbaseException as e:
            raise _translate(e, key) from e
        return result.cas

    async def remove(self, key: str) -> None:
        try:
            await self._collection.remove(key)
        except CouchbaseException as e:
            raise _translate(e, key) from e

    async def query(
        self,
        statement: str,
        consistency: ScanConsistency = ScanConsistency.NOT_BOUNDED,
    ) -> QueryResult:
        options = QueryOptions(scan_consistency=_CONSISTENCY_MAP[consistency])
        try:
            result = self._cluster.query(statement, options)
            rows = [row async for row in result.rows()]
            mutation_count = None
            metrics = result.metadata().metrics()
            if metrics is not None:
                mutation_count = metrics.mutation_count()
        except CouchbaseException as e:
            raise _translate(e) from e
        return QueryResult(rows=rows, mutation_count=mutation_count)

    async def flush(self) -> None:
        try:
            await self._cluster.buckets().flush_bucket(self.name)
        except CouchbaseException as e:
            raise _translate(e) from e

    async def create_primary_index(self, ignore_if_exists: bool = True) -> None:
        try:
            await self._cluster.query_indexes().create_primary_index(
                self.name, CreatePrimaryQueryIndexOptions(ignore_if_exists=ignore_if_exists)
            )
        except CouchbaseException as e:
            raise _translate(e) from e

    async def disconnect(self) -> None:
        # Buckets share the cluster connection; nothing to release per bucket
        self._bucket = None
        self._collection = None


class CouchbaseCluster(ClusterHandle):
    """Cluster handle wrapping an ``acouchbase`` cluster."""

    def __init__(self, cluster: Cluster) -> None:
        self._cluster = cluster

    async def create_bucket(
        self,
        name: str,
        bucket_type: str,
        ram_quota_mb: int,
        flush_enabled: bool,
    ) -> None:
        try:
            settings = CreateBucketSettings(
                name=name,
                bucket_type=BucketType[bucket_type.upper()],
                ram_quota_mb=ram_quota_mb,
                flush_enabled=flush_enabled,
            )
        except KeyError as e:
            raise DriverError(f"Unknown bucket type '{bucket_type}'") from e
        try:
            await self._cluster.buckets().create_bucket(settings)
        except CouchbaseException as e:
            raise _translate(e) from e

    async def open_bucket(self, name: str) -> BucketHandle:
        try:
            bucket = self._cluster.bucket(name)
            await bucket.on_connect()
        except CouchbaseException as e:
            raise _translate(e) from e
        return CouchbaseBucket(self._cluster, bucket, name)

    async def close(self) -> None:
        try:
            await self._cluster.close()
        except CouchbaseException as e:
            logger.warning(f"Error closing Couchbase cluster: {e}")


class CouchbaseDriver(DocumentStoreDriver):
    """
    Default driver using the official Couchbase SDK.

    Example:
        driver = CouchbaseDriver()
        cluster = await driver.connect("couchbase://localhost", "admin", "secret")
        bucket = await cluster.open_bucket("test")
    """

    async def connect(
        self,
        uri: str,
        username: str | None = None,
        password: str | None = None,
    ) -> ClusterHandle:
        try:
            if username:
                options = ClusterOptions(PasswordAuthenticator(username, password or ""))
                cluster = await Cluster.connect(uri, options)
            else:
                logger.debug("Connecting to couchbase without credentials")
                cluster = await Cluster.connect(uri)
        except CouchbaseException as e:
            raise _translate(e) from e
        return CouchbaseCluster(cluster)
