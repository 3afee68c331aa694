"""
Document store driver layer.

Provides the driver interface consumed by connections and persistence
components, the driver error taxonomy, and (in ``driver.couchbase``)
the adapter for the official Couchbase SDK.
"""

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
    is_key_not_found,
)


def create_default_driver() -> DocumentStoreDriver:
    """
    Create the default Couchbase SDK driver.

    The SDK is imported lazily so components can be built and tested with
    an injected driver when the SDK is not needed.
    """
    from .couchbase import CouchbaseDriver

    return CouchbaseDriver()


__all__ = [
    # Interface
    "DocumentStoreDriver",
    "ClusterHandle",
    "BucketHandle",
    "GetResult",
    "QueryResult",
    "ScanConsistency",
    "create_default_driver",
    # Errors
    "DriverError",
    "DocumentNotFoundError",
    "DocumentExistsError",
    "CasMismatchError",
    "BucketExistsError",
    "is_key_not_found",
]
