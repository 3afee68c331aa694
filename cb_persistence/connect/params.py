"""
Connection and credential parameters.

Both are ``ConfigParams`` subclasses so that any extra key an entry carries
(``operation_timeout``, ``detailed_errcodes`` ...) survives resolution and
can be rendered into the connection string.
"""

from dataclasses import dataclass

from ..config import ConfigParams


def _sections(config: ConfigParams, many: str, one: str) -> list[ConfigParams]:
    """Read ``<many>.N.*`` sections in configuration order, or the single ``<one>.*`` section."""
    items = config.get_section(many)
    if items:
        return [items.get_section(name) for name in items.get_section_names()]
    item = config.get_section(one)
    return [item] if item else []


class ConnectionParams(ConfigParams):
    """
    One physical endpoint: host, port, uri, database, discovery_key and
    any additional connection string parameters.
    """

    @classmethod
    def many_from_config(cls, config: ConfigParams) -> list["ConnectionParams"]:
        """Read connection entries from ``connections.N.*`` or ``connection.*``."""
        return [cls(section) for section in _sections(config, "connections", "connection")]

    def get_host(self) -> str | None:
        return self.get_as_nullable_string("host") or None

    def get_port(self) -> int:
        """Get the port; 0 means the port is not set."""
        return self.get_as_integer_with_default("port", 0)

    def get_uri(self) -> str | None:
        return self.get_as_nullable_string("uri") or None

    def get_database(self) -> str | None:
        return self.get_as_nullable_string("database") or None

    def get_discovery_key(self) -> str | None:
        return self.get_as_nullable_string("discovery_key") or None

    def use_discovery(self) -> bool:
        return self.get_discovery_key() is not None


class CredentialParams(ConfigParams):
    """A credential set: username, password and an optional store_key."""

    @classmethod
    def many_from_config(cls, config: ConfigParams) -> list["CredentialParams"]:
        """Read credential entries from ``credentials.N.*`` or ``credential.*``."""
        return [cls(section) for section in _sections(config, "credentials", "credential")]

    def get_username(self) -> str | None:
        return self.get_as_nullable_string("username") or None

    def get_password(self) -> str | None:
        return self.get_as_nullable_string("password")

    def get_store_key(self) -> str | None:
        return self.get_as_nullable_string("store_key") or None

    def use_credential_store(self) -> bool:
        return self.get_store_key() is not None


@dataclass(frozen=True)
class ResolvedConnection:
    """Final connection string and credentials used to connect."""

    uri: str
    username: str | None = None
    password: str | None = None
