"""
Constants for CB_PERSISTENCE.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_SCHEME: Final[str] = "couchbase"
"""URI scheme used when a connection string is synthesized from hosts."""

URI_RESERVED_KEYS: Final[tuple[str, ...]] = (
    "uri",
    "host",
    "port",
    "database",
    "username",
    "password",
    "discovery_key",
    "store_key",
)
"""Connection/credential keys that never become connection string parameters."""

BUCKET_SETTLE_DELAY_SECONDS: Final[float] = 2.0
"""Wait after creating a bucket before it accepts connections (seconds)."""

# ============================================================================
# DEFAULT OPTIONS
# ============================================================================

DEFAULT_BUCKET_TYPE: Final[str] = "couchbase"
"""Bucket type used when auto-creating buckets."""

DEFAULT_RAM_QUOTA_MB: Final[int] = 100
"""RAM quota for auto-created buckets (megabytes)."""

DEFAULT_MAX_PAGE_SIZE: Final[int] = 100
"""Maximum number of records returned by a single paged query."""

# ============================================================================
# REFERENCES
# ============================================================================

CONNECTION_DEPENDENCY: Final[str] = "*:connection:couchbase:*:1.0"
"""Default locator of a shared CouchbaseConnection."""

DISCOVERY_LOCATOR: Final[str] = "*:discovery:*:*:1.0"
"""Locator of discovery services used to resolve connection keys."""

CREDENTIAL_STORE_LOCATOR: Final[str] = "*:credential-store:*:*:1.0"
"""Locator of credential stores used to resolve credential keys."""

# ============================================================================
# RECORD FORMAT
# ============================================================================

COLLECTION_MARKER_FIELD: Final[str] = "_c"
"""Hidden field tagging a stored record with its logical collection."""

ID_FIELD: Final[str] = "id"
"""Field holding the application-visible record identifier."""

# ============================================================================
# DRIVER ERROR CODES
# ============================================================================

KEY_NOT_FOUND_CODE: Final[int] = 13
"""Key-value status returned when a document key does not exist."""

KEY_EXISTS_CODE: Final[int] = 12
"""Key-value status returned when a key exists or a CAS value does not match."""
