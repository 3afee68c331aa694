"""
CB_PERSISTENCE - Couchbase persistence components

Connection resolution, connection lifecycle and base persistence classes
for storing JSON documents in Couchbase buckets, with several logical
collections multiplexed in one bucket.
"""

# Component factory
from .build import DefaultCouchbaseFactory, Factory
# Configuration
from .config import ConfigParams, PersistenceOptions
# Connection resolution
from .connect import (
    ConnectionParams,
    CouchbaseConnectionResolver,
    CredentialParams,
    MemoryCredentialStore,
    MemoryDiscovery,
    ResolvedConnection,
)
# Data types
from .data import DataPage, PagingParams
# Errors
from .exceptions import (
    ConfigurationError,
    CouchbasePersistenceError,
    InvalidStateError,
    StoreConnectionError,
)
# Persistence
from .persistence import (
    CouchbaseConnection,
    CouchbasePersistence,
    IdentifiableCouchbasePersistence,
)
from .references import Descriptor, References

__version__ = "1.0.0"

__all__ = [
    # Persistence
    "CouchbaseConnection",
    "CouchbasePersistence",
    "IdentifiableCouchbasePersistence",
    # Connection resolution
    "CouchbaseConnectionResolver",
    "ConnectionParams",
    "CredentialParams",
    "ResolvedConnection",
    "MemoryDiscovery",
    "MemoryCredentialStore",
    # Configuration and references
    "ConfigParams",
    "PersistenceOptions",
    "Descriptor",
    "References",
    "Factory",
    "DefaultCouchbaseFactory",
    # Data
    "DataPage",
    "PagingParams",
    # Errors
    "CouchbasePersistenceError",
    "ConfigurationError",
    "StoreConnectionError",
    "InvalidStateError",
]
