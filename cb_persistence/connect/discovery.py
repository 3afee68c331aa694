"""
Discovery services and credential stores.

Connection and credential entries may point to an external registry by key
(``discovery_key`` / ``store_key``) instead of carrying parameters inline.
These interfaces are what the resolvers consume; the in-memory
implementations are configured from ``ConfigParams`` and are handy for tests
and single-process deployments.
"""

import logging
from abc import ABC, abstractmethod

from ..config import ConfigParams
from .params import ConnectionParams, CredentialParams

logger = logging.getLogger(__name__)


class Discovery(ABC):
    """Resolves connection parameters registered under a discovery key."""

    @abstractmethod
    async def register(
        self, correlation_id: str | None, key: str, connection: ConnectionParams
    ) -> ConnectionParams:
        """Register connection parameters under a key."""

    @abstractmethod
    async def resolve_one(
        self, correlation_id: str | None, key: str
    ) -> ConnectionParams | None:
        """Resolve the first connection registered under a key."""

    @abstractmethod
    async def resolve_all(self, correlation_id: str | None, key: str) -> list[ConnectionParams]:
        """Resolve every connection registered under a key."""


class CredentialStore(ABC):
    """Looks up credentials stored under a key."""

    @abstractmethod
    async def store(
        self, correlation_id: str | None, key: str, credential: CredentialParams | None
    ) -> None:
        """Store (or with None, remove) credentials under a key."""

    @abstractmethod
    async def lookup(self, correlation_id: str | None, key: str) -> CredentialParams | None:
        """Look up credentials by key."""


class MemoryDiscovery(Discovery):
    """
    Discovery service that keeps connections in memory.

    Configuration: one section per key, e.g.
        key1.host=localhost, key1.port=8091, key2.uri=couchbase://cluster
    """

    def __init__(self, config: ConfigParams | None = None) -> None:
        self._items: list[tuple[str, ConnectionParams]] = []
        if config is not None:
            self.configure(config)

    def configure(self, config: ConfigParams) -> None:
        for key in config.get_section_names():
            self._items.append((key, ConnectionParams(config.get_section(key))))

    async def register(
        self, correlation_id: str | None, key: str, connection: ConnectionParams
    ) -> ConnectionParams:
        self._items.append((key, ConnectionParams(connection)))
        logger.debug(
            f"Registered connection under discovery key {key}",
            extra={"correlation_id": correlation_id},
        )
        return connection

    async def resolve_one(
        self, correlation_id: str | None, key: str
    ) -> ConnectionParams | None:
        connections = await self.resolve_all(correlation_id, key)
        return connections[0] if connections else None

    async def resolve_all(self, correlation_id: str | None, key: str) -> list[ConnectionParams]:
        return [ConnectionParams(item) for item_key, item in self._items if item_key == key]


class MemoryCredentialStore(CredentialStore):
    """
    Credential store that keeps credentials in memory.

    Configuration: one section per key, e.g.
        key1.username=admin, key1.password=secret
    """

    def __init__(self, config: ConfigParams | None = None) -> None:
        self._items: dict[str, CredentialParams] = {}
        if config is not None:
            self.configure(config)

    def configure(self, config: ConfigParams) -> None:
        for key in config.get_section_names():
            self._items[key] = CredentialParams(config.get_section(key))

    async def store(
        self, correlation_id: str | None, key: str, credential: CredentialParams | None
    ) -> None:
        if credential is None:
            self._items.pop(key, None)
        else:
            self._items[key] = CredentialParams(credential)

    async def lookup(self, correlation_id: str | None, key: str) -> CredentialParams | None:
        credential = self._items.get(key)
        return CredentialParams(credential) if credential is not None else None
