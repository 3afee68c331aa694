"""
Connection resolution.

Turns scattered connection and credential configuration into a single
Couchbase connection string.
"""

from .discovery import CredentialStore, Discovery, MemoryCredentialStore, MemoryDiscovery
from .params import ConnectionParams, CredentialParams, ResolvedConnection
from .resolver import ConnectionResolver, CouchbaseConnectionResolver, CredentialResolver

__all__ = [
    "CouchbaseConnectionResolver",
    "ConnectionResolver",
    "CredentialResolver",
    "ConnectionParams",
    "CredentialParams",
    "ResolvedConnection",
    "Discovery",
    "CredentialStore",
    "MemoryDiscovery",
    "MemoryCredentialStore",
]
