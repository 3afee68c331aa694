"""
Pytest configuration and shared fixtures for CB_PERSISTENCE tests.

This module provides:
- An in-memory document store driver understanding the statements
  the persistence components compose
- Configuration fixtures
- A dummy persistence with scenarios shared by unit and integration tests
"""

import itertools
import json
import re
from typing import Any

import pytest

from cb_persistence.config import ConfigParams
from cb_persistence.data import DataPage, PagingParams
from cb_persistence.driver import (
    BucketExistsError,
    BucketHandle,
    CasMismatchError,
    ClusterHandle,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStoreDriver,
    DriverError,
    GetResult,
    QueryResult,
    ScanConsistency,
)
from cb_persistence.observability import get_metrics_collector
from cb_persistence.persistence import IdentifiableCouchbasePersistence

# ============================================================================
# IN-MEMORY DRIVER
# ============================================================================

_STATEMENT = re.compile(
    r"^(?:SELECT (?P<select>.+?)|(?P<delete>DELETE)) FROM `(?P<bucket>[^`]+)`"
    r"(?: WHERE (?P<where>.+?))?"
    r"(?: ORDER BY (?P<sort>.+?))?"
    r"(?: OFFSET (?P<offset>\d+))?"
    r"(?: LIMIT (?P<limit>\d+))?$"
)
_CONDITION = re.compile(r"^\s*(?P<field>\w+)\s*=\s*(?P<value>.+?)\s*$")


def _parse_literal(text: str) -> Any:
    if text.startswith("'") and text.endswith("'"):
        return text[1:-1]
    return json.loads(text)


def _parse_where(where: str | None) -> list[tuple[str, Any]]:
    """Parse ``a=1 AND (b="x")`` into [("a", 1), ("b", "x")]."""
    if not where:
        return []
    conditions = []
    for part in where.split(" AND "):
        match = _CONDITION.match(part.strip().strip("()"))
        if match is None:
            raise DriverError(f"Unsupported condition: {part}")
        conditions.append((match.group("field"), _parse_literal(match.group("value"))))
    return conditions


class FakeBucket(BucketHandle):
    """Bucket keeping documents in a dict and recording executed statements."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: dict[str, tuple[dict[str, Any], int]] = {}
        self.statements: list[tuple[str, ScanConsistency]] = []
        self.flushed = 0
        self.primary_index = False
        self.disconnected = False
        self._cas = itertools.count(1)

    def _store(self, key: str, value: dict[str, Any]) -> int:
        cas = next(self._cas)
        self.documents[key] = (json.loads(json.dumps(value)), cas)
        return cas

    async def get(self, key: str) -> GetResult:
        if key not in self.documents:
            raise DocumentNotFoundError("The key does not exist on the server", key=key)
        value, cas = self.documents[key]
        return GetResult(value=dict(value), cas=cas)

    async def get_multi(self, keys: list[str]) -> dict[str, GetResult | Exception]:
        results: dict[str, GetResult | Exception] = {}
        for key in keys:
            try:
                results[key] = await self.get(key)
            except DriverError as e:
                results[key] = e
        return results

    async def insert(self, key: str, value: dict[str, Any]) -> int:
        if key in self.documents:
            raise DocumentExistsError("The key already exists in the server", key=key)
        return self._store(key, value)

    async def upsert(self, key: str, value: dict[str, Any]) -> int:
        return self._store(key, value)

    async def replace(self, key: str, value: dict[str, Any], cas: Any = None) -> int:
        if key not in self.documents:
            raise DocumentNotFoundError("The key does not exist on the server", key=key)
        if cas is not None and self.documents[key][1] != cas:
            raise CasMismatchError("CAS value mismatch", key=key)
        return self._store(key, value)

    async def remove(self, key: str) -> None:
        if key not in self.documents:
            raise DocumentNotFoundError("The key does not exist on the server", key=key)
        del self.documents[key]

    def _matching(self, where: str | None) -> list[dict[str, Any]]:
        conditions = _parse_where(where)
        return [
            value
            for value, _ in self.documents.values()
            if all(value.get(field) == expected for field, expected in conditions)
        ]

    async def query(
        self,
        statement: str,
        consistency: ScanConsistency = ScanConsistency.NOT_BOUNDED,
    ) -> QueryResult:
        self.statements.append((statement, consistency))
        match = _STATEMENT.match(statement)
        if match is None:
            raise DriverError(f"Syntax error in statement: {statement}")

        where = match.group("where")
        if match.group("delete"):
            conditions = _parse_where(where)
            keys = [
                key
                for key, (value, _) in self.documents.items()
                if all(value.get(field) == expected for field, expected in conditions)
            ]
            for key in keys:
                del self.documents[key]
            return QueryResult(rows=[], mutation_count=len(keys))

        rows = self._matching(where)
        select = match.group("select")
        if select == "COUNT(*)":
            return QueryResult(rows=[{"$1": len(rows)}])

        sort = match.group("sort")
        if sort:
            field, _, direction = sort.partition(" ")
            rows.sort(key=lambda row: row.get(field), reverse=direction.upper() == "DESC")

        offset = int(match.group("offset") or 0)
        rows = rows[offset:]
        if match.group("limit") is not None:
            rows = rows[: int(match.group("limit"))]

        if select == "*":
            return QueryResult(rows=[{self.name: dict(row)} for row in rows])
        fields = [name.strip() for name in select.split(",")]
        return QueryResult(rows=[{name: row.get(name) for name in fields} for row in rows])

    async def flush(self) -> None:
        self.flushed += 1
        self.documents.clear()

    async def create_primary_index(self, ignore_if_exists: bool = True) -> None:
        self.primary_index = True

    async def disconnect(self) -> None:
        self.disconnected = True


class FakeCluster(ClusterHandle):
    def __init__(self, buckets: dict[str, FakeBucket]) -> None:
        self.buckets = buckets
        self.created: list[dict[str, Any]] = []
        self.closed = False

    async def create_bucket(
        self,
        name: str,
        bucket_type: str,
        ram_quota_mb: int,
        flush_enabled: bool,
    ) -> None:
        if name in self.buckets:
            raise BucketExistsError(f"Bucket {name} already exists")
        self.created.append(
            {
                "name": name,
                "bucket_type": bucket_type,
                "ram_quota_mb": ram_quota_mb,
                "flush_enabled": flush_enabled,
            }
        )
        self.buckets[name] = FakeBucket(name)

    async def open_bucket(self, name: str) -> FakeBucket:
        if name not in self.buckets:
            raise DriverError(f"Bucket {name} not found")
        return self.buckets[name]

    async def close(self) -> None:
        self.closed = True


class FakeDriver(DocumentStoreDriver):
    """Driver whose clusters share one set of in-memory buckets."""

    def __init__(self, *bucket_names: str) -> None:
        self.buckets = {name: FakeBucket(name) for name in bucket_names}
        self.connects: list[tuple[str, str | None, str | None]] = []
        self.clusters: list[FakeCluster] = []

    async def connect(
        self,
        uri: str,
        username: str | None = None,
        password: str | None = None,
    ) -> FakeCluster:
        self.connects.append((uri, username, password))
        cluster = FakeCluster(self.buckets)
        self.clusters.append(cluster)
        return cluster


# ============================================================================
# FIXTURES
# ============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: requires a running Couchbase server")


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty metrics collector."""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def fake_driver() -> FakeDriver:
    """In-memory driver with an existing ``test`` bucket."""
    return FakeDriver("test")


@pytest.fixture
def couchbase_config() -> ConfigParams:
    """Single-node configuration for the ``test`` bucket."""
    return ConfigParams.from_tuples(
        "bucket", "test",
        "connection.host", "localhost",
        "connection.port", 8091,
        "credential.username", "Administrator",
        "credential.password", "password",
    )


# ============================================================================
# DUMMY PERSISTENCE
# ============================================================================


class DummyCouchbasePersistence(IdentifiableCouchbasePersistence):
    """Persistence of dummy records in the ``dummies`` collection of bucket ``test``."""

    def __init__(self, driver: DocumentStoreDriver | None = None) -> None:
        super().__init__("test", "dummies", driver)

    @staticmethod
    def _compose_filter(key: str | None) -> str | None:
        return f"key={json.dumps(key)}" if key is not None else None

    async def get_page_by_key(
        self, correlation_id: str | None, key: str | None, paging: PagingParams | None
    ) -> DataPage:
        return await self.get_page_by_filter(correlation_id, self._compose_filter(key), paging)

    async def get_count_by_key(self, correlation_id: str | None, key: str | None) -> int:
        return await self.get_count_by_filter(correlation_id, self._compose_filter(key))


class DummyPersistenceChecks:
    """Scenarios shared by the unit tests and the live-server integration tests."""

    def __init__(self, persistence: DummyCouchbasePersistence) -> None:
        self.persistence = persistence
        self.dummy1 = {"key": "Key 1", "content": "Content 1"}
        self.dummy2 = {"key": "Key 2", "content": "Content 2"}

    async def check_crud_operations(self) -> None:
        persistence = self.persistence

        # Create one dummy
        dummy1 = await persistence.create(None, self.dummy1)
        assert dummy1 is not None
        assert dummy1["id"] is not None
        assert dummy1["key"] == self.dummy1["key"]
        assert dummy1["content"] == self.dummy1["content"]
        assert "_c" not in dummy1

        # Create another dummy
        dummy2 = await persistence.create(None, self.dummy2)
        assert dummy2["key"] == self.dummy2["key"]

        page = await persistence.get_page_by_key(None, None, None)
        assert len(page.data) == 2

        # Update the dummy
        dummy1 = dict(dummy1, content="Updated Content 1")
        result = await persistence.update(None, dummy1)
        assert result["id"] == dummy1["id"]
        assert result["content"] == "Updated Content 1"

        # Partially update the dummy
        result = await persistence.update_partially(
            None, dummy1["id"], {"content": "Partially Updated Content 1"}
        )
        assert result["id"] == dummy1["id"]
        assert result["key"] == dummy1["key"]
        assert result["content"] == "Partially Updated Content 1"

        # Get the dummy by id
        result = await persistence.get_one_by_id(None, dummy1["id"])
        assert result["content"] == "Partially Updated Content 1"

        # Delete the dummy
        result = await persistence.delete_by_id(None, dummy1["id"])
        assert result["id"] == dummy1["id"]

        # Try to get the deleted dummy
        assert await persistence.get_one_by_id(None, dummy1["id"]) is None

        assert await persistence.get_count_by_key(None, None) == 1

    async def check_batch_operations(self) -> None:
        persistence = self.persistence

        dummy1 = await persistence.create(None, self.dummy1)
        dummy2 = await persistence.create(None, self.dummy2)

        # Read batch
        items = await persistence.get_list_by_ids(None, [dummy1["id"], dummy2["id"]])
        assert len(items) == 2

        # Delete batch
        await persistence.delete_by_ids(None, [dummy1["id"], dummy2["id"]])

        # Read empty batch
        items = await persistence.get_list_by_ids(None, [dummy1["id"], dummy2["id"]])
        assert items == []


@pytest.fixture
def make_dummy_persistence():
    """Factory of configured dummy persistences."""

    def factory(
        config: ConfigParams, driver: DocumentStoreDriver | None = None
    ) -> DummyCouchbasePersistence:
        persistence = DummyCouchbasePersistence(driver)
        persistence.configure(config)
        return persistence

    return factory


@pytest.fixture
def dummy_persistence(make_dummy_persistence, fake_driver, couchbase_config):
    """Dummy persistence over the in-memory driver."""
    return make_dummy_persistence(couchbase_config, fake_driver)


@pytest.fixture
def make_dummy_checks():
    """Factory of the shared dummy persistence scenarios."""
    return DummyPersistenceChecks
