"""
Configuration management for CB_PERSISTENCE.

Components are configured with ``ConfigParams``: a flat, ordered map of
dot-path keys (``connection.host``, ``connections.2.port``,
``options.auto_create`` ...). The ``options`` section is validated with
the Pydantic ``PersistenceOptions`` model.

Example:
    config = ConfigParams.from_tuples(
        "bucket", "test",
        "connection.host", "localhost",
        "connection.port", 8091,
        "options.auto_create", True,
    )
    persistence.configure(config)
"""

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constants import (
    CONNECTION_DEPENDENCY,
    DEFAULT_BUCKET_TYPE,
    DEFAULT_MAX_PAGE_SIZE,
    DEFAULT_RAM_QUOTA_MB,
)
from .exceptions import ConfigurationError

_TRUE_STRINGS = ("true", "1", "yes", "y", "t", "on")
_FALSE_STRINGS = ("false", "0", "no", "n", "f", "off")


def _to_nullable_string(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_nullable_integer(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def _to_nullable_boolean(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return None


class ConfigParams(dict):
    """
    Flat configuration map keyed by dot-separated paths.

    Keys keep their insertion order, which is meaningful: connection entries
    and connection string parameters are emitted in configuration order.
    """

    @classmethod
    def from_tuples(cls, *tuples: Any) -> "ConfigParams":
        """
        Create configuration from a flat list of key/value pairs.

        Args:
            *tuples: key1, value1, key2, value2, ...

        Returns:
            New ConfigParams instance
        """
        result = cls()
        for index in range(0, len(tuples) - 1, 2):
            result[str(tuples[index])] = tuples[index + 1]
        return result

    @classmethod
    def from_value(cls, value: Mapping[str, Any] | None) -> "ConfigParams":
        """
        Create configuration from a (possibly nested) mapping.

        Nested mappings are flattened into dot-path keys, so
        ``{"connection": {"host": "localhost"}}`` becomes ``connection.host``.
        """
        result = cls()
        if value:
            result._flatten("", value)
        return result

    @classmethod
    def from_env(cls) -> "ConfigParams":
        """
        Build a single-connection configuration from environment variables.

        Reads COUCHBASE_URI, COUCHBASE_HOST, COUCHBASE_PORT, COUCHBASE_BUCKET,
        COUCHBASE_USER and COUCHBASE_PASS. Unset variables are omitted.
        """
        mapping = (
            ("connection.uri", "COUCHBASE_URI"),
            ("connection.host", "COUCHBASE_HOST"),
            ("connection.port", "COUCHBASE_PORT"),
            ("bucket", "COUCHBASE_BUCKET"),
            ("credential.username", "COUCHBASE_USER"),
            ("credential.password", "COUCHBASE_PASS"),
        )
        result = cls()
        for key, env_name in mapping:
            value = os.getenv(env_name)
            if value:
                result[key] = value
        return result

    def _flatten(self, prefix: str, value: Mapping[str, Any]) -> None:
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(item, Mapping):
                self._flatten(path, item)
            else:
                self[path] = item

    def get_section_names(self) -> list[str]:
        """Return the top-level section names in configuration order."""
        names: list[str] = []
        for key in self.keys():
            name = key.split(".", 1)[0]
            if name and name not in names:
                names.append(name)
        return names

    def get_section(self, name: str) -> "ConfigParams":
        """
        Get a section of the configuration with its prefix stripped.

        Args:
            name: Section name (may itself be a dot path, e.g. "connections.1")

        Returns:
            New ConfigParams with the section content (empty if missing)
        """
        prefix = name + "."
        result = ConfigParams()
        for key, value in self.items():
            if key.startswith(prefix):
                result[key[len(prefix):]] = value
        return result

    def add_section(self, name: str, section: Mapping[str, Any]) -> None:
        """Add every key of a section under the given prefix."""
        for key, value in section.items():
            self[f"{name}.{key}" if key else name] = value

    def set_defaults(self, defaults: Mapping[str, Any]) -> "ConfigParams":
        """Return a copy where keys missing from this configuration take default values."""
        result = ConfigParams(defaults)
        result.update(self)
        return result

    def override(self, other: Mapping[str, Any] | None) -> "ConfigParams":
        """Return a copy of this configuration overridden by another one."""
        result = ConfigParams(self)
        if other:
            result.update(other)
        return result

    def get_as_nullable_string(self, key: str) -> str | None:
        return _to_nullable_string(self.get(key))

    def get_as_string_with_default(self, key: str, default: str | None) -> str | None:
        value = self.get_as_nullable_string(key)
        return value if value is not None else default

    def get_as_nullable_integer(self, key: str) -> int | None:
        return _to_nullable_integer(self.get(key))

    def get_as_integer_with_default(self, key: str, default: int) -> int:
        value = self.get_as_nullable_integer(key)
        return value if value is not None else default

    def get_as_nullable_boolean(self, key: str) -> bool | None:
        return _to_nullable_boolean(self.get(key))

    def get_as_boolean_with_default(self, key: str, default: bool) -> bool:
        value = self.get_as_nullable_boolean(key)
        return value if value is not None else default


class PersistenceOptions(BaseModel):
    """
    Validated ``options.*`` section of a connection or persistence.

    Usage:
        options = PersistenceOptions.from_config(config.get_section("options"))
        if options.auto_create:
            ...
    """

    model_config = ConfigDict(extra="ignore")

    auto_create: bool = Field(False, description="Create the bucket when it is missing")
    auto_index: bool = Field(True, description="Create a primary index on a new bucket")
    flush_enabled: bool = Field(True, description="Allow bucket-wide flush")
    bucket_type: str = Field(DEFAULT_BUCKET_TYPE, description="Type of auto-created buckets")
    ram_quota: int = Field(DEFAULT_RAM_QUOTA_MB, ge=1, description="RAM quota in MB")
    max_page_size: int = Field(DEFAULT_MAX_PAGE_SIZE, ge=1, description="Maximum page size")

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "PersistenceOptions":
        """
        Build options from an ``options`` section.

        String values such as ``"true"`` or ``"100"`` are coerced by the model;
        empty values fall back to the defaults.

        Raises:
            ConfigurationError: If an option value cannot be parsed or is out of range
        """
        values = {
            name: section[name]
            for name in cls.model_fields
            if section.get(name) not in (None, "")
        }
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid options: {e}",
                code="INVALID_OPTIONS",
                context={"errors": e.error_count()},
            ) from e


DEFAULT_CONFIG = ConfigParams.from_tuples(
    # connections.*
    # credential.*
    "dependencies.connection", CONNECTION_DEPENDENCY,
    "options.auto_create", False,
    "options.auto_index", True,
    "options.flush_enabled", True,
    "options.bucket_type", DEFAULT_BUCKET_TYPE,
    "options.ram_quota", DEFAULT_RAM_QUOTA_MB,
    "options.max_page_size", DEFAULT_MAX_PAGE_SIZE,
)
"""Defaults applied by connections and persistence components on configure()."""
