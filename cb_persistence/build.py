"""
Component factory.

Creates Couchbase components by their descriptors so containers can build
them from configuration.

Usage:
    factory = DefaultCouchbaseFactory()
    locator = Descriptor("my-app", "connection", "couchbase", "default", "1.0")
    if factory.can_create(locator):
        connection = factory.create(locator)
"""

import logging
from collections.abc import Callable
from typing import Any

from .exceptions import ConfigurationError
from .persistence import CouchbaseConnection
from .references import Descriptor

logger = logging.getLogger(__name__)


class Factory:
    """
    Registry of component constructors keyed by descriptor.

    Lookups use descriptor matching, so a registration with wildcards
    (``*``) serves every matching locator.
    """

    def __init__(self) -> None:
        self._registrations: list[tuple[Descriptor, Callable[[Descriptor], Any]]] = []

    def register(self, descriptor: Descriptor, factory: Callable[[Descriptor], Any]) -> "Factory":
        """
        Register a constructor function.

        Args:
            descriptor: Descriptor of the components the function creates
            factory: Function receiving the requested locator and returning a component

        Returns:
            Self for chaining
        """
        self._registrations.append((descriptor, factory))
        logger.debug(f"Registered factory for {descriptor}")
        return self

    def register_as_type(self, descriptor: Descriptor, component_type: type) -> "Factory":
        """Register a class that is created with its no-argument constructor."""
        return self.register(descriptor, lambda locator: component_type())

    def can_create(self, locator: Descriptor) -> Descriptor | None:
        """
        Check whether the factory can create a component.

        Returns:
            The registered descriptor that matches, or None
        """
        for descriptor, _ in self._registrations:
            if descriptor.match(locator):
                return descriptor
        return None

    def create(self, locator: Descriptor) -> Any:
        """
        Create a component by its locator.

        Raises:
            ConfigurationError: If no registration matches the locator
        """
        for descriptor, factory in self._registrations:
            if descriptor.match(locator):
                return factory(locator)

        raise ConfigurationError(
            f"Cannot create component {locator}",
            code="CANNOT_CREATE",
            context={"locator": str(locator)},
        )


class DefaultCouchbaseFactory(Factory):
    """Creates Couchbase components by their descriptors."""

    descriptor = Descriptor("cb-persistence", "factory", "couchbase", "default", "1.0")
    couchbase_connection_descriptor = Descriptor(
        "cb-persistence", "connection", "couchbase", "*", "1.0"
    )

    def __init__(self) -> None:
        super().__init__()
        self.register_as_type(self.couchbase_connection_descriptor, CouchbaseConnection)
