"""
Unit tests for component references and the component factory.
"""

import pytest

from cb_persistence.build import DefaultCouchbaseFactory
from cb_persistence.config import ConfigParams
from cb_persistence.exceptions import ConfigurationError
from cb_persistence.persistence import CouchbaseConnection
from cb_persistence.references import Descriptor, DependencyResolver, References


class TestDescriptor:
    """Test descriptor parsing and matching."""

    def test_from_string(self):
        descriptor = Descriptor.from_string("my-app:connection:couchbase:*:1.0")

        assert descriptor == Descriptor("my-app", "connection", "couchbase", None, "1.0")
        assert str(descriptor) == "my-app:connection:couchbase:*:1.0"

    def test_from_string_invalid(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Descriptor.from_string("connection:couchbase")

        assert exc_info.value.code == "BAD_DESCRIPTOR"

    def test_wildcard_match(self):
        locator = Descriptor.from_string("*:connection:couchbase:*:1.0")

        assert locator.match(Descriptor("my-app", "connection", "couchbase", "default", "1.0"))
        assert not locator.match(Descriptor("my-app", "connection", "mongodb", "default", "1.0"))


class TestReferences:
    """Test the reference registry."""

    def test_lookup_in_registration_order(self):
        first, second = object(), object()
        references = References.from_tuples(
            Descriptor("a", "connection", "couchbase", "one", "1.0"), first,
            Descriptor("a", "connection", "couchbase", "two", "1.0"), second,
        )
        locator = Descriptor.from_string("*:connection:couchbase:*:1.0")

        assert references.get_optional(locator) == [first, second]
        assert references.get_one_optional(locator) is first

    def test_remove(self):
        component = object()
        locator = Descriptor("a", "discovery", "memory", "default", "1.0")
        references = References().put(locator, component)

        assert references.remove(locator) is component
        assert references.get_optional(locator) == []
        assert references.remove(locator) is None

    def test_plain_locators(self):
        references = References.from_tuples("connection", 1)

        assert references.get_one_optional("connection") == 1
        assert references.get_one_optional("other") is None


class TestDependencyResolver:
    """Test named dependencies."""

    def test_configured_dependency(self):
        component = object()
        resolver = DependencyResolver({"connection": "*:connection:couchbase:*:1.0"})
        resolver.configure(
            ConfigParams.from_tuples("dependencies.connection", "*:connection:couchbase:shared:1.0")
        )
        resolver.set_references(
            References.from_tuples(
                Descriptor("a", "connection", "couchbase", "default", "1.0"), object(),
                Descriptor("a", "connection", "couchbase", "shared", "1.0"), component,
            )
        )

        assert resolver.get_one_optional("connection") is component

    def test_unknown_dependency(self):
        resolver = DependencyResolver()
        resolver.set_references(References())

        assert resolver.get_optional("connection") == []
        assert resolver.get_one_optional("connection") is None


class TestDefaultCouchbaseFactory:
    """Test creating components by descriptor."""

    def test_create_connection(self):
        factory = DefaultCouchbaseFactory()
        locator = Descriptor("cb-persistence", "connection", "couchbase", "default", "1.0")

        assert factory.can_create(locator) is not None
        assert isinstance(factory.create(locator), CouchbaseConnection)

    def test_cannot_create(self):
        factory = DefaultCouchbaseFactory()
        locator = Descriptor("cb-persistence", "connection", "mongodb", "default", "1.0")

        assert factory.can_create(locator) is None
        with pytest.raises(ConfigurationError) as exc_info:
            factory.create(locator)

        assert exc_info.value.code == "CANNOT_CREATE"
