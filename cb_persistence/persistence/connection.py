"""
Couchbase connection.

Owns the lifecycle of one physical cluster connection and one opened bucket.
Persistence components either create a private connection or share one
registered in their references.

Configuration parameters:
    bucket:                 (optional) Couchbase bucket name
    connection(s):          see CouchbaseConnectionResolver
    credential(s):          see CouchbaseConnectionResolver
    options:
        auto_create:        (optional) create missing bucket (default: false)
        auto_index:         (optional) create primary index on a new bucket (default: true)
        flush_enabled:      (optional) bucket flush enabled (default: true)
        bucket_type:        (optional) bucket type (default: couchbase)
        ram_quota:          (optional) RAM quota in MB (default: 100)

References:
    *:discovery:*:*:1.0         (optional) Discovery services
    *:credential-store:*:*:1.0  (optional) Credential stores

This module is part of CB_PERSISTENCE.
"""

import asyncio
import logging
import time

from ..config import DEFAULT_CONFIG, ConfigParams, PersistenceOptions
from ..connect import CouchbaseConnectionResolver, ResolvedConnection
from ..constants import BUCKET_SETTLE_DELAY_SECONDS
from ..driver import (
    BucketExistsError,
    BucketHandle,
    ClusterHandle,
    DocumentStoreDriver,
    DriverError,
    create_default_driver,
)
from ..exceptions import ConfigurationError, StoreConnectionError
from ..observability import get_logger as get_contextual_logger
from ..observability import log_operation, record_operation, timed_operation
from ..references import References

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class CouchbaseConnection:
    """
    Couchbase connection using a pluggable document store driver.

    State machine: closed -> opening -> open -> closed. ``is_open()`` is true
    while a bucket handle is held.

    Example:
        connection = CouchbaseConnection("test")
        connection.configure(ConfigParams.from_tuples(
            "connection.host", "localhost",
            "connection.port", 8091,
            "credential.username", "Administrator",
            "credential.password", "password",
        ))
        await connection.open("123")
        bucket = connection.get_bucket()
    """

    settle_delay: float = BUCKET_SETTLE_DELAY_SECONDS

    def __init__(
        self,
        bucket_name: str | None = None,
        driver: DocumentStoreDriver | None = None,
    ) -> None:
        """
        Initialize the connection.

        Args:
            bucket_name: (optional) bucket name, may be overridden by configuration
            driver: (optional) document store driver; the Couchbase SDK driver is
                created on first open when omitted
        """
        self._bucket_name = bucket_name
        self._driver = driver
        self._connection_resolver = CouchbaseConnectionResolver()
        self._options = PersistenceOptions()

        self._connection: ClusterHandle | None = None
        self._bucket: BucketHandle | None = None

    def configure(self, config: ConfigParams) -> None:
        """
        Configure the component.

        Args:
            config: Configuration parameters to be set
        """
        config = ConfigParams(config).set_defaults(DEFAULT_CONFIG)

        self._connection_resolver.configure(config)

        self._bucket_name = config.get_as_string_with_default("bucket", self._bucket_name)
        self._options = PersistenceOptions.from_config(config.get_section("options"))

    def set_references(self, references: References | None) -> None:
        """
        Set references to dependent components (discovery, credential stores).

        Args:
            references: References to locate the component dependencies
        """
        self._connection_resolver.set_references(references)

    def is_open(self) -> bool:
        """Check whether the bucket handle is currently held."""
        return self._bucket is not None

    def _get_driver(self) -> DocumentStoreDriver:
        if self._driver is None:
            self._driver = create_default_driver()
        return self._driver

    async def _create_bucket(self, correlation_id: str | None) -> bool:
        """Create the bucket if configured to; returns True when it was newly created."""
        if not self._options.auto_create:
            return False

        try:
            await self._connection.create_bucket(
                self._bucket_name,
                bucket_type=self._options.bucket_type,
                ram_quota_mb=self._options.ram_quota,
                flush_enabled=self._options.flush_enabled,
            )
        except BucketExistsError:
            logger.debug(
                f"Couchbase bucket {self._bucket_name} already exists",
                extra={"correlation_id": correlation_id},
            )
            return False

        # A new bucket rejects connections until it finishes initializing
        await asyncio.sleep(self.settle_delay)
        return True

    async def _connect(self, correlation_id: str | None, connection: ResolvedConnection) -> None:
        try:
            self._connection = await self._get_driver().connect(
                connection.uri, connection.username, connection.password
            )
        except DriverError as e:
            contextual_logger.error(
                "Failed to connect to couchbase",
                extra={"correlation_id": correlation_id, "error": str(e)},
            )
            raise StoreConnectionError(
                "Connection to couchbase failed",
                code="CONNECT_FAILED",
                correlation_id=correlation_id,
                context={"bucket": self._bucket_name},
            ) from e

    async def _open_bucket(self, correlation_id: str | None) -> None:
        try:
            self._bucket = await self._connection.open_bucket(self._bucket_name)
        except DriverError as e:
            contextual_logger.error(
                "Failed to open bucket",
                extra={
                    "correlation_id": correlation_id,
                    "bucket": self._bucket_name,
                    "error": str(e),
                },
            )
            raise StoreConnectionError(
                "Connection to couchbase failed",
                code="CONNECT_FAILED",
                correlation_id=correlation_id,
                context={"bucket": self._bucket_name},
            ) from e

        logger.debug(
            f"Connected to couchbase bucket {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )

    async def _reset(self) -> None:
        cluster = self._connection
        self._connection = None
        self._bucket = None
        if cluster is not None:
            await cluster.close()

    async def open(self, correlation_id: str | None) -> None:
        """
        Open the connection: resolve parameters, connect, then optionally
        create the bucket, open it and create its primary index.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain

        Raises:
            ConfigurationError: If connection parameters or the bucket name are missing
            StoreConnectionError: If connecting or opening the bucket fails
            DriverError: If creating the bucket or the index fails
        """
        start_time = time.time()

        try:
            connection = await self._connection_resolver.resolve(correlation_id)
        except ConfigurationError as e:
            contextual_logger.error(
                "Failed to resolve Couchbase connection",
                extra={"correlation_id": correlation_id, "error": str(e)},
            )
            raise

        if not self._bucket_name:
            raise ConfigurationError(
                "Bucket name is not defined", code="NO_BUCKET", correlation_id=correlation_id
            )

        logger.debug("Connecting to couchbase", extra={"correlation_id": correlation_id})

        try:
            await self._connect(correlation_id, connection)
            new_bucket = await self._create_bucket(correlation_id)
            await self._open_bucket(correlation_id)
            if new_bucket and self._options.auto_index:
                await self._bucket.create_primary_index(ignore_if_exists=True)
        except Exception as e:
            await self._reset()
            duration_ms = (time.time() - start_time) * 1000
            record_operation(
                "connection.open",
                duration_ms,
                success=False,
                error=type(e).__name__,
                bucket=self._bucket_name,
            )
            log_operation(
                contextual_logger,
                "connection.open",
                level=logging.ERROR,
                success=False,
                duration_ms=duration_ms,
                correlation_id=correlation_id,
                bucket=self._bucket_name,
                error_type=type(e).__name__,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        record_operation("connection.open", duration_ms, success=True, bucket=self._bucket_name)
        log_operation(
            contextual_logger,
            "connection.open",
            level=logging.DEBUG,
            duration_ms=duration_ms,
            correlation_id=correlation_id,
            bucket=self._bucket_name,
        )

    @timed_operation("connection.close")
    async def close(self, correlation_id: str | None) -> None:
        """
        Close the connection and free the bucket handle.

        Closing a closed connection is a no-op. Never fails.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain
        """
        if self._bucket is not None:
            await self._bucket.disconnect()
        if self._connection is not None:
            await self._connection.close()

        self._connection = None
        self._bucket = None

        logger.debug(
            f"Disconnected from couchbase bucket {self._bucket_name}",
            extra={"correlation_id": correlation_id},
        )

    def get_connection(self) -> ClusterHandle | None:
        return self._connection

    def get_bucket(self) -> BucketHandle | None:
        return self._bucket

    def get_bucket_name(self) -> str | None:
        return self._bucket_name

    def metric_tags(self) -> dict[str, str | None]:
        return {"bucket": self._bucket_name}
