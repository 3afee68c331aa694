"""
Couchbase connection resolution.

Resolves connection and credential parameters (following discovery and
credential-store indirections), validates them and composes a single
connection string.

Configuration parameters:
    connection(s):
        discovery_key: (optional) key to retrieve the connection from a Discovery service
        host:          host name or IP address
        port:          port number
        database:      database (bucket) name
        uri:           connection string with all parameters in it
    credential(s):
        store_key:     (optional) key to retrieve the credentials from a CredentialStore
        username:      user name
        password:      user password

References:
    *:discovery:*:*:1.0         (optional) Discovery services
    *:credential-store:*:*:1.0  (optional) Credential stores

This module is part of CB_PERSISTENCE.
"""

import asyncio
import logging

from ..config import ConfigParams
from ..constants import (
    CREDENTIAL_STORE_LOCATOR,
    DEFAULT_SCHEME,
    DISCOVERY_LOCATOR,
    URI_RESERVED_KEYS,
)
from ..exceptions import ConfigurationError
from ..references import Descriptor, References
from .params import ConnectionParams, CredentialParams, ResolvedConnection

logger = logging.getLogger(__name__)


class ConnectionResolver:
    """Resolves connection entries, following discovery keys."""

    def __init__(self) -> None:
        self._connections: list[ConnectionParams] = []
        self._references: References | None = None

    def configure(self, config: ConfigParams) -> None:
        self._connections = ConnectionParams.many_from_config(config)

    def set_references(self, references: References | None) -> None:
        self._references = references

    def get_all(self) -> list[ConnectionParams]:
        return list(self._connections)

    async def _discover(
        self, correlation_id: str | None, connection: ConnectionParams
    ) -> list[ConnectionParams]:
        key = connection.get_discovery_key()
        services = []
        if self._references is not None:
            services = self._references.get_optional(Descriptor.from_string(DISCOVERY_LOCATOR))
        if not services:
            raise ConfigurationError(
                f"Discovery wasn't found to resolve connection with key {key}",
                code="CANNOT_RESOLVE",
                correlation_id=correlation_id,
                context={"discovery_key": key},
            )

        discovered: list[ConnectionParams] = []
        for service in services:
            discovered.extend(await service.resolve_all(correlation_id, key))
        return discovered

    async def resolve_all(self, correlation_id: str | None) -> list[ConnectionParams]:
        """
        Resolve all configured connections.

        Entries with a discovery key are replaced by the connections the
        discovery services return for it; order is preserved.

        Returns:
            Independent copies of the resolved entries
        """
        resolved: list[ConnectionParams] = []
        for connection in self._connections:
            if connection.use_discovery():
                resolved.extend(await self._discover(correlation_id, connection))
            else:
                resolved.append(ConnectionParams(connection))
        return resolved


class CredentialResolver:
    """Resolves the credential set, following credential-store keys."""

    def __init__(self) -> None:
        self._credentials: list[CredentialParams] = []
        self._references: References | None = None

    def configure(self, config: ConfigParams) -> None:
        self._credentials = CredentialParams.many_from_config(config)

    def set_references(self, references: References | None) -> None:
        self._references = references

    async def _lookup_in_stores(
        self, correlation_id: str | None, credential: CredentialParams
    ) -> CredentialParams | None:
        key = credential.get_store_key()
        stores = []
        if self._references is not None:
            stores = self._references.get_optional(
                Descriptor.from_string(CREDENTIAL_STORE_LOCATOR)
            )
        if not stores:
            raise ConfigurationError(
                f"Credential store wasn't found to resolve credential with key {key}",
                code="CANNOT_RESOLVE",
                correlation_id=correlation_id,
                context={"store_key": key},
            )

        for store in stores:
            found = await store.lookup(correlation_id, key)
            if found is not None:
                return found
        return None

    async def lookup(self, correlation_id: str | None) -> CredentialParams | None:
        """
        Look up the first resolvable credential set.

        Returns:
            A copy of the credentials, or None if none are configured
        """
        for credential in self._credentials:
            if not credential.use_credential_store():
                return CredentialParams(credential)
            found = await self._lookup_in_stores(correlation_id, credential)
            if found is not None:
                return found
        return None


class CouchbaseConnectionResolver:
    """
    Resolves a Couchbase connection string from connection and credential
    parameters. Supports several cluster nodes.

    Example:
        resolver = CouchbaseConnectionResolver()
        resolver.configure(ConfigParams.from_tuples(
            "connections.1.host", "host1", "connections.1.port", 8091,
            "connections.2.host", "host2", "connections.2.port", 8091,
            "connections.1.database", "test",
        ))
        connection = await resolver.resolve(None)
        # connection.uri == "couchbase://host1:8091,host2:8091/test"
    """

    def __init__(self) -> None:
        self._connection_resolver = ConnectionResolver()
        self._credential_resolver = CredentialResolver()

    def configure(self, config: ConfigParams) -> None:
        self._connection_resolver.configure(config)
        self._credential_resolver.configure(config)

    def set_references(self, references: References | None) -> None:
        self._connection_resolver.set_references(references)
        self._credential_resolver.set_references(references)

    def _validate_connection(
        self, correlation_id: str | None, connection: ConnectionParams
    ) -> None:
        if connection.get_uri() is not None:
            return

        if connection.get_host() is None:
            raise ConfigurationError(
                "Connection host is not set", code="NO_HOST", correlation_id=correlation_id
            )

        if connection.get_port() == 0:
            raise ConfigurationError(
                "Connection port is not set", code="NO_PORT", correlation_id=correlation_id
            )

    def _validate_connections(
        self, correlation_id: str | None, connections: list[ConnectionParams]
    ) -> None:
        if not connections:
            raise ConfigurationError(
                "Database connection is not set",
                code="NO_CONNECTION",
                correlation_id=correlation_id,
            )

        for connection in connections:
            self._validate_connection(correlation_id, connection)

    def _compose_connection(
        self,
        connections: list[ConnectionParams],
        credential: CredentialParams | None,
    ) -> ResolvedConnection:
        username = None
        password = None
        if credential is not None:
            username = credential.get_username()
            if username:
                password = credential.get_password()

        # An explicit uri wins as is
        for connection in connections:
            uri = connection.get_uri()
            if uri:
                return ResolvedConnection(uri=uri, username=username, password=password)

        hosts = ",".join(
            f"{connection.get_host()}:{connection.get_port()}"
            if connection.get_port()
            else connection.get_host()
            for connection in connections
        )

        database = ""
        for connection in connections:
            database = database or connection.get_database() or ""
        if database:
            database = "/" + database

        # Remaining keys become connection string parameters
        options = ConfigParams()
        for connection in connections:
            options.update(connection)
        if credential is not None:
            options.update(credential)
        params = "&".join(
            key if value is None else f"{key}={options.get_as_nullable_string(key)}"
            for key, value in options.items()
            if key not in URI_RESERVED_KEYS
        )
        if params:
            params = "?" + params

        uri = f"{DEFAULT_SCHEME}://{hosts}{database}{params}"
        return ResolvedConnection(uri=uri, username=username, password=password)

    async def resolve(self, correlation_id: str | None) -> ResolvedConnection:
        """
        Resolve the Couchbase connection string and credentials.

        Args:
            correlation_id: (optional) transaction id to trace execution through call chain

        Returns:
            Resolved connection

        Raises:
            ConfigurationError: If connections are missing or invalid
        """
        connections, credential = await asyncio.gather(
            self._connection_resolver.resolve_all(correlation_id),
            self._credential_resolver.lookup(correlation_id),
        )

        self._validate_connections(correlation_id, connections)
        logger.debug(
            f"Resolved {len(connections)} Couchbase connection(s)",
            extra={"correlation_id": correlation_id},
        )
        return self._compose_connection(connections, credential)
