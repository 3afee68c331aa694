"""
Couchbase connections and persistence components.
"""

from .connection import CouchbaseConnection
from .identifiable import IdentifiableCouchbasePersistence
from .persistence import (
    BorrowedConnection,
    ConnectionRef,
    CouchbasePersistence,
    OwnedConnection,
)

__all__ = [
    "CouchbaseConnection",
    "CouchbasePersistence",
    "IdentifiableCouchbasePersistence",
    "ConnectionRef",
    "OwnedConnection",
    "BorrowedConnection",
]
