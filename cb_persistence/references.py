"""
Component references.

A lightweight registry that lets components find their collaborators by
descriptor, e.g. a persistence looking up a shared connection registered
as ``my-app:connection:couchbase:default:1.0``.

Usage:
    references = References.from_tuples(
        Descriptor("my-app", "connection", "couchbase", "default", "1.0"), connection,
        Descriptor("my-app", "discovery", "memory", "default", "1.0"), discovery,
    )
    persistence.set_references(references)
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Descriptor:
    """
    Component locator: ``group:type:kind:name:version``.

    Any part may be ``"*"`` (or None), which matches every value.
    """

    group: str | None
    type: str | None
    kind: str | None
    name: str | None
    version: str | None

    @classmethod
    def from_string(cls, value: str) -> "Descriptor":
        """
        Parse a descriptor string.

        Raises:
            ConfigurationError: If the string does not have five parts
        """
        parts = value.split(":")
        if len(parts) != 5:
            raise ConfigurationError(
                f"Descriptor '{value}' is not in the format group:type:kind:name:version",
                code="BAD_DESCRIPTOR",
                context={"descriptor": value},
            )
        return cls(*(None if part == "*" else part for part in parts))

    @staticmethod
    def _match_field(a: str | None, b: str | None) -> bool:
        return a is None or b is None or a == "*" or b == "*" or a == b

    def match(self, other: "Descriptor") -> bool:
        """Partially match this descriptor to another one, honoring wildcards."""
        return (
            self._match_field(self.group, other.group)
            and self._match_field(self.type, other.type)
            and self._match_field(self.kind, other.kind)
            and self._match_field(self.name, other.name)
            and self._match_field(self.version, other.version)
        )

    def __str__(self) -> str:
        return ":".join(
            part or "*" for part in (self.group, self.type, self.kind, self.name, self.version)
        )


def _locator_matches(query: Any, locator: Any) -> bool:
    if isinstance(query, Descriptor) and isinstance(locator, Descriptor):
        return query.match(locator)
    return query == locator


class References:
    """
    Registry of component references keyed by locator.

    Registration order is preserved and lookups return components in that
    order.
    """

    def __init__(self) -> None:
        self._references: list[tuple[Any, Any]] = []

    @classmethod
    def from_tuples(cls, *tuples: Any) -> "References":
        """Create references from a flat list: locator1, component1, ..."""
        references = cls()
        for index in range(0, len(tuples) - 1, 2):
            references.put(tuples[index], tuples[index + 1])
        return references

    def put(self, locator: Any, component: Any) -> "References":
        """
        Register a component.

        Args:
            locator: Descriptor (or any comparable key) identifying the component
            component: The component instance

        Returns:
            Self for chaining
        """
        self._references.append((locator, component))
        logger.debug(f"Registered reference {locator}")
        return self

    def remove(self, locator: Any) -> Any:
        """Remove and return the first component matching the locator."""
        for index, (ref_locator, component) in enumerate(self._references):
            if _locator_matches(locator, ref_locator):
                del self._references[index]
                return component
        return None

    def get_optional(self, locator: Any) -> list[Any]:
        """Get all components matching the locator (possibly empty)."""
        return [
            component
            for ref_locator, component in self._references
            if _locator_matches(locator, ref_locator)
        ]

    def get_one_optional(self, locator: Any) -> Any:
        """Get the first component matching the locator, or None."""
        components = self.get_optional(locator)
        return components[0] if components else None


class DependencyResolver:
    """
    Resolves named dependencies from ``dependencies.*`` configuration.

    Example:
        resolver = DependencyResolver({"connection": "*:connection:couchbase:*:1.0"})
        resolver.set_references(references)
        connection = resolver.get_one_optional("connection")
    """

    def __init__(self, defaults: Mapping[str, Any] | None = None) -> None:
        self._dependencies: dict[str, Any] = {}
        self._references: References | None = None
        for name, locator in (defaults or {}).items():
            self.put(name, locator)

    def put(self, name: str, locator: Any) -> None:
        """Define a dependency; string locators are parsed as descriptors."""
        if isinstance(locator, str):
            locator = Descriptor.from_string(locator)
        self._dependencies[name] = locator

    def configure(self, config: Any) -> None:
        """Read dependency locators from the ``dependencies`` section."""
        section = config.get_section("dependencies")
        for name, locator in section.items():
            if locator:
                self.put(name, locator)

    def set_references(self, references: References | None) -> None:
        self._references = references

    def get_optional(self, name: str) -> list[Any]:
        locator = self._dependencies.get(name)
        if locator is None or self._references is None:
            return []
        return self._references.get_optional(locator)

    def get_one_optional(self, name: str) -> Any:
        components = self.get_optional(name)
        return components[0] if components else None
