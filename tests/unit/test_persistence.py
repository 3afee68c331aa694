"""
Unit tests for CouchbasePersistence.

Tests the lifecycle with owned and borrowed connections, statement
composition of the query primitives and bucket flushing.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cb_persistence.config import ConfigParams
from cb_persistence.data import DataPage, PagingParams
from cb_persistence.driver import DriverError, ScanConsistency
from cb_persistence.exceptions import InvalidStateError, StoreConnectionError
from cb_persistence.observability import get_metrics_collector
from cb_persistence.persistence import (
    BorrowedConnection,
    CouchbaseConnection,
    CouchbasePersistence,
    OwnedConnection,
)
from cb_persistence.references import Descriptor, References

CONNECTION_LOCATOR = Descriptor("test", "connection", "couchbase", "default", "1.0")


@pytest.fixture
def persistence(fake_driver, couchbase_config):
    """Configured persistence for the ``dummies`` collection."""
    persistence = CouchbasePersistence(collection="dummies", driver=fake_driver)
    persistence.configure(couchbase_config)
    return persistence


@pytest.fixture
def bucket(fake_driver):
    """The in-memory ``test`` bucket seeded with records of two collections."""
    bucket = fake_driver.buckets["test"]
    bucket._store("dummies1", {"id": "1", "key": "Key 1", "content": "A", "_c": "dummies"})
    bucket._store("dummies2", {"id": "2", "key": "Key 2", "content": "B", "_c": "dummies"})
    bucket._store("dummies3", {"id": "3", "key": "Key 3", "content": "A", "_c": "dummies"})
    bucket._store("others1", {"id": "1", "key": "Key 1", "content": "A", "_c": "others"})
    return bucket


class TestPersistenceLifecycle:
    """Test opening and closing with owned and borrowed connections."""

    @pytest.mark.asyncio
    async def test_open_private_connection(self, persistence, fake_driver):
        """Test a persistence without references creates and owns its connection."""
        await persistence.open(None)

        assert persistence.is_open()
        assert isinstance(persistence._connection_ref, OwnedConnection)
        assert persistence.get_bucket_name() == "test"
        assert persistence.get_bucket() is fake_driver.buckets["test"]

        await persistence.close(None)

        assert not persistence.is_open()
        assert fake_driver.clusters[0].closed

    @pytest.mark.asyncio
    async def test_open_twice_is_noop(self, persistence, fake_driver):
        await persistence.open(None)
        await persistence.open(None)

        assert len(fake_driver.connects) == 1

    @pytest.mark.asyncio
    async def test_set_references_without_connection(self, persistence):
        """Test a private connection is created when none is registered."""
        persistence.set_references(References())

        assert isinstance(persistence._connection_ref, OwnedConnection)

    @pytest.mark.asyncio
    async def test_borrowed_connection(self, fake_driver, couchbase_config):
        """Test a shared connection is used but never closed by the persistence."""
        connection = CouchbaseConnection(driver=fake_driver)
        connection.configure(couchbase_config)
        await connection.open(None)

        persistence = CouchbasePersistence(collection="dummies")
        persistence.configure(ConfigParams())
        persistence.set_references(References.from_tuples(CONNECTION_LOCATOR, connection))
        await persistence.open(None)

        assert isinstance(persistence._connection_ref, BorrowedConnection)
        assert persistence.get_bucket() is connection.get_bucket()
        assert persistence.get_bucket_name() == "test"

        await persistence.close(None)

        assert not persistence.is_open()
        assert connection.is_open()
        assert len(fake_driver.connects) == 1

    @pytest.mark.asyncio
    async def test_custom_connection_dependency(self, fake_driver, couchbase_config):
        """Test dependencies.connection selects which shared connection is used."""
        default = CouchbaseConnection(driver=fake_driver)
        default.configure(couchbase_config)
        special = CouchbaseConnection(driver=fake_driver)
        special.configure(couchbase_config)
        await special.open(None)

        persistence = CouchbasePersistence(collection="dummies")
        persistence.configure(
            ConfigParams.from_tuples("dependencies.connection", "*:connection:couchbase:special:1.0")
        )
        persistence.set_references(
            References.from_tuples(
                CONNECTION_LOCATOR, default,
                Descriptor("test", "connection", "couchbase", "special", "1.0"), special,
            )
        )
        await persistence.open(None)

        assert persistence._connection_ref.connection is special

    @pytest.mark.asyncio
    async def test_borrowed_connection_not_open(self, fake_driver, couchbase_config):
        """Test opening over a closed shared connection fails."""
        connection = CouchbaseConnection(driver=fake_driver)
        connection.configure(couchbase_config)

        persistence = CouchbasePersistence(collection="dummies")
        persistence.set_references(References.from_tuples(CONNECTION_LOCATOR, connection))

        with pytest.raises(StoreConnectionError) as exc_info:
            await persistence.open("123")

        assert exc_info.value.code == "CONNECT_FAILED"
        assert not persistence.is_open()

    @pytest.mark.asyncio
    async def test_close_after_unset_references(self, persistence):
        """Test closing an open persistence whose reference was dropped fails."""
        await persistence.open(None)
        persistence.unset_references()

        with pytest.raises(InvalidStateError) as exc_info:
            await persistence.close("123")

        assert exc_info.value.code == "NO_CONNECTION"

    @pytest.mark.asyncio
    async def test_close_when_closed(self, persistence):
        await persistence.close(None)

        assert not persistence.is_open()

    @pytest.mark.asyncio
    async def test_query_when_closed(self, persistence):
        with pytest.raises(InvalidStateError):
            await persistence.get_count_by_filter(None, None)


class TestClear:
    """Test flushing the bucket."""

    @pytest.mark.asyncio
    async def test_clear_flushes_bucket(self, persistence, bucket):
        """Test clear removes every collection in the bucket."""
        await persistence.open(None)

        await persistence.clear(None)

        assert bucket.flushed == 1
        assert bucket.documents == {}

    @pytest.mark.asyncio
    async def test_clear_without_bucket_name(self):
        persistence = CouchbasePersistence(collection="dummies")

        with pytest.raises(InvalidStateError) as exc_info:
            await persistence.clear(None)

        assert exc_info.value.code == "NO_BUCKET"

    @pytest.mark.asyncio
    async def test_clear_failure(self, persistence, bucket):
        """Test a flush failure is wrapped with the driver error as cause."""
        await persistence.open(None)

        with patch.object(bucket, "flush", AsyncMock(side_effect=DriverError("flush disabled"))):
            with pytest.raises(StoreConnectionError) as exc_info:
                await persistence.clear("123")

        assert exc_info.value.code == "FLUSH_FAILED"
        assert isinstance(exc_info.value.__cause__, DriverError)


class TestPageQueries:
    """Test get_page_by_filter statements and results."""

    @pytest.mark.asyncio
    async def test_page_default(self, persistence, bucket):
        """Test the default page is scoped to the collection and limited by max page size."""
        await persistence.open(None)

        page = await persistence.get_page_by_filter(None, None, None)

        assert isinstance(page, DataPage)
        assert len(page.data) == 3
        assert page.total is None
        assert all(item["_c"] == "dummies" for item in page.data)
        assert bucket.statements[-1] == (
            'SELECT * FROM `test` WHERE _c="dummies" LIMIT 100',
            ScanConsistency.STATEMENT_PLUS,
        )

    @pytest.mark.asyncio
    async def test_page_statement_order(self, persistence, bucket):
        """Test ORDER BY precedes OFFSET and LIMIT."""
        await persistence.open(None)

        page = await persistence.get_page_by_filter(
            None, 'content="A"', PagingParams(skip=1, take=5), "key DESC"
        )

        assert bucket.statements[-1][0] == (
            'SELECT * FROM `test` WHERE _c="dummies" AND (content="A") '
            "ORDER BY key DESC OFFSET 1 LIMIT 5"
        )
        assert [item["key"] for item in page.data] == ["Key 1"]

    @pytest.mark.asyncio
    async def test_page_with_total(self, persistence, bucket):
        """Test the total is counted after the data query with the same WHERE."""
        await persistence.open(None)

        page = await persistence.get_page_by_filter(
            None, 'content="A"', PagingParams(take=1, total=True)
        )

        assert len(page.data) == 1
        assert page.total == 2
        assert [statement for statement, _ in bucket.statements[-2:]] == [
            'SELECT * FROM `test` WHERE _c="dummies" AND (content="A") LIMIT 1',
            'SELECT COUNT(*) FROM `test` WHERE _c="dummies" AND (content="A")',
        ]

    @pytest.mark.asyncio
    async def test_page_take_capped(self, fake_driver, couchbase_config, bucket):
        """Test take is capped by options.max_page_size."""
        persistence = CouchbasePersistence(collection="dummies", driver=fake_driver)
        persistence.configure(couchbase_config.override({"options.max_page_size": 2}))
        await persistence.open(None)

        page = await persistence.get_page_by_filter(None, None, PagingParams(take=50))

        assert len(page.data) == 2
        assert bucket.statements[-1][0].endswith(" LIMIT 2")

    @pytest.mark.asyncio
    async def test_page_negative_skip_omitted(self, persistence, bucket):
        await persistence.open(None)

        await persistence.get_page_by_filter(None, None, PagingParams(skip=-3))

        assert "OFFSET" not in bucket.statements[-1][0]

    @pytest.mark.asyncio
    async def test_page_with_projection(self, persistence, bucket):
        """Test projected rows are returned as they are."""
        await persistence.open(None)

        page = await persistence.get_page_by_filter(None, None, None, "key", "key, content")

        assert page.data[0] == {"key": "Key 1", "content": "A"}
        assert bucket.statements[-1][0].startswith("SELECT key, content FROM `test`")

    @pytest.mark.asyncio
    async def test_page_without_collection(self, fake_driver, couchbase_config, bucket):
        """Test an unscoped persistence uses the filter alone."""
        persistence = CouchbasePersistence(driver=fake_driver)
        persistence.configure(couchbase_config)
        await persistence.open(None)

        page = await persistence.get_page_by_filter(None, 'key="Key 1"', None)

        assert bucket.statements[-1][0] == 'SELECT * FROM `test` WHERE key="Key 1" LIMIT 100'
        assert len(page.data) == 2

    @pytest.mark.asyncio
    async def test_page_records_metrics(self, persistence, bucket):
        await persistence.open(None)

        await persistence.get_page_by_filter(None, None, None)

        collector = get_metrics_collector()
        assert collector.get_operation_count("persistence.get_page_by_filter") == 1


class TestListAndCountQueries:
    """Test get_list_by_filter, get_count_by_filter and get_one_random."""

    @pytest.mark.asyncio
    async def test_list_is_not_scoped(self, persistence, bucket):
        """Test the list query spans the whole bucket with request consistency."""
        await persistence.open(None)

        items = await persistence.get_list_by_filter(None, 'content="A"', "key")

        assert len(items) == 3
        assert bucket.statements[-1] == (
            'SELECT * FROM `test` WHERE content="A" ORDER BY key',
            ScanConsistency.REQUEST_PLUS,
        )

    @pytest.mark.asyncio
    async def test_list_without_filter(self, persistence, bucket):
        await persistence.open(None)

        items = await persistence.get_list_by_filter(None, None)

        assert len(items) == 4
        assert bucket.statements[-1][0] == "SELECT * FROM `test`"

    @pytest.mark.asyncio
    async def test_list_drops_none_results(self, fake_driver, couchbase_config, bucket):
        """Test records converted to None are skipped."""

        class SkippingPersistence(CouchbasePersistence):
            def to_public(self, value):
                return None if value.get("content") == "B" else value

        persistence = SkippingPersistence(collection="dummies", driver=fake_driver)
        persistence.configure(couchbase_config)
        await persistence.open(None)

        items = await persistence.get_list_by_filter(None, '_c="dummies"')

        assert [item["id"] for item in items] == ["1", "3"]

    @pytest.mark.asyncio
    async def test_count(self, persistence, bucket):
        await persistence.open(None)

        count = await persistence.get_count_by_filter(None, 'content="A"')

        assert count == 2
        assert bucket.statements[-1][0] == (
            'SELECT COUNT(*) FROM `test` WHERE _c="dummies" AND (content="A")'
        )

    @pytest.mark.asyncio
    async def test_one_random(self, persistence, bucket):
        """Test the random read uses an offset within the counted range."""
        await persistence.open(None)

        with patch("cb_persistence.persistence.persistence.random.randrange", return_value=1):
            item = await persistence.get_one_random(None, 'content="A"')

        assert item["id"] == "3"
        assert bucket.statements[-1][0] == (
            'SELECT * FROM `test` WHERE _c="dummies" AND (content="A") OFFSET 1 LIMIT 1'
        )

    @pytest.mark.asyncio
    async def test_one_random_empty(self, persistence, bucket):
        """Test nothing is read when the count is zero."""
        await persistence.open(None)

        item = await persistence.get_one_random(None, 'content="Z"')

        assert item is None
        assert bucket.statements[-1][0].startswith("SELECT COUNT(*)")


class TestDeleteByFilter:
    """Test delete_by_filter."""

    @pytest.mark.asyncio
    async def test_delete_by_filter(self, persistence, bucket):
        await persistence.open(None)

        await persistence.delete_by_filter(None, 'content="A"')

        assert bucket.statements[-1][0] == 'DELETE FROM `test` WHERE content="A"'
        assert sorted(bucket.documents) == ["dummies2"]

    @pytest.mark.asyncio
    async def test_delete_errors_propagate(self, persistence):
        """Test driver errors from queries are raised untouched."""
        await persistence.open(None)
        bucket = MagicMock()
        bucket.query = AsyncMock(side_effect=DriverError("syntax error", code=3000))
        persistence._bucket = bucket

        with pytest.raises(DriverError) as exc_info:
            await persistence.delete_by_filter(None, "bad filter")

        assert exc_info.value.code == 3000
