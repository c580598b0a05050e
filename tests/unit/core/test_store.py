"""
Unit tests for core.store module.

Tests:
- Configuration models and factory methods
- initialize(): schema creation, additive migrations, idempotence, failure
- StoreUnavailable before initialize() and after close()
- PersistenceError wrapping of database failures
- Notification and device operations (queries and parameters)
"""

from unittest.mock import AsyncMock

import asyncpg
import pytest
from pydantic import ValidationError

from pushbrotr.core.exceptions import ConnectionPoolError, PersistenceError, StoreUnavailable
from pushbrotr.core.pool import Pool
from pushbrotr.core.store import (
    MIGRATIONS,
    SCHEMA,
    StoreConfig,
    StoreTimeoutsConfig,
    SubscriptionStore,
)
from pushbrotr.models import DeviceRegistration, NotificationRecord


class TestConfig:
    def test_defaults(self):
        config = StoreConfig()
        assert config.timeouts.query == 30.0
        assert config.timeouts.setup == 60.0

    def test_none_timeout_allowed(self):
        assert StoreTimeoutsConfig(query=None).query is None

    def test_tiny_timeout_rejected(self):
        with pytest.raises(ValidationError, match="Timeout"):
            StoreTimeoutsConfig(query=0.01)


class TestFactories:
    def test_from_dict_with_pool(self):
        store = SubscriptionStore.from_dict(
            {"pool": {"database": {"host": "db"}}, "timeouts": {"query": 5.0}}
        )
        assert store.pool_config.database.host == "db"
        assert store.config.timeouts.query == 5.0

    def test_from_dict_empty(self):
        store = SubscriptionStore.from_dict({})
        assert store.pool_config.database.host
        assert store.config == StoreConfig()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "store.yaml"
        path.write_text("pool:\n  database:\n    database: pushtest\n")
        store = SubscriptionStore.from_yaml(str(path))
        assert store.pool_config.database.database == "pushtest"

    def test_repr(self):
        assert "initialized=False" in repr(SubscriptionStore())


class TestInitialize:
    """Schema setup and lifecycle."""

    @pytest.fixture
    def store(self, mock_pool: Pool) -> SubscriptionStore:
        mock_pool.connect = AsyncMock()  # type: ignore[method-assign]
        return SubscriptionStore(pool=mock_pool)

    async def test_creates_schema(self, store, mock_connection):
        await store.initialize()
        assert store.is_initialized
        executed = [c.args[0] for c in mock_connection.execute.await_args_list]
        assert executed == list(SCHEMA)

    async def test_applies_missing_columns(self, store, mock_connection):
        mock_connection.fetchval = AsyncMock(return_value=False)
        await store.initialize()
        executed = [c.args[0] for c in mock_connection.execute.await_args_list]
        for table, column, column_type in MIGRATIONS:
            assert f"ALTER TABLE {table} ADD COLUMN {column} {column_type}" in executed

    async def test_checks_columns_by_name(self, store, mock_connection):
        await store.initialize()
        checked = [c.args[1:] for c in mock_connection.fetchval.await_args_list]
        assert checked == [(table, column) for table, column, _ in MIGRATIONS]

    async def test_idempotent(self, store, mock_pool):
        await store.initialize()
        await store.initialize()
        mock_pool.connect.assert_awaited_once()

    async def test_schema_failure_wrapped(self, store, mock_connection, mock_asyncpg_pool):
        mock_connection.execute = AsyncMock(side_effect=asyncpg.PostgresError("denied"))
        with pytest.raises(PersistenceError, match="store initialization failed"):
            await store.initialize()
        assert not store.is_initialized
        mock_asyncpg_pool.close.assert_awaited_once()

    async def test_connect_failure_propagates(self, mock_pool):
        mock_pool.connect = AsyncMock(side_effect=ConnectionPoolError("refused"))  # type: ignore[method-assign]
        store = SubscriptionStore(pool=mock_pool)
        with pytest.raises(ConnectionPoolError):
            await store.initialize()
        assert not store.is_initialized

    async def test_close_then_reinitialize(self, store, mock_pool, mock_asyncpg_pool):
        await store.initialize()
        await store.close()
        assert not store.is_initialized
        mock_asyncpg_pool.close.assert_awaited_once()

        async def reconnect() -> None:
            mock_pool._pool = mock_asyncpg_pool
            mock_pool._is_connected = True

        mock_pool.connect = AsyncMock(side_effect=reconnect)  # type: ignore[method-assign]
        await store.initialize()
        assert store.is_initialized
        mock_pool.connect.assert_awaited_once()

    async def test_context_manager(self, store):
        async with store:
            assert store.is_initialized
        assert not store.is_initialized


class TestUnavailable:
    """Every operation fails before initialize()."""

    @pytest.mark.parametrize(
        ("operation", "args"),
        [
            ("pubkeys_subscribed_to_event", ("e1",)),
            ("notification_status", ("e1",)),
            ("fetch_notifications", ("e1",)),
            ("record_notification_sent", ("e1", "bob", 1)),
            ("device_tokens_for", ("bob",)),
            ("fetch_devices", ("bob",)),
            ("upsert_device", ("bob", "tok", 1)),
            ("remove_device", ("bob", "tok")),
        ],
    )
    async def test_raises(self, mock_pool, operation, args):
        store = SubscriptionStore(pool=mock_pool)
        with pytest.raises(StoreUnavailable, match="before initialize"):
            await getattr(store, operation)(*args)

    async def test_raises_after_close(self, mock_store):
        await mock_store.close()
        with pytest.raises(StoreUnavailable):
            await mock_store.device_tokens_for("bob")


class TestPersistenceErrors:
    async def test_postgres_error_wrapped(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(side_effect=asyncpg.PostgresError("broken"))
        with pytest.raises(PersistenceError, match="fetch_devices failed"):
            await mock_store.device_tokens_for("bob")

    async def test_os_error_wrapped(self, mock_store, mock_connection):
        mock_connection.execute = AsyncMock(side_effect=OSError("disk"))
        with pytest.raises(PersistenceError, match="upsert_device failed"):
            await mock_store.upsert_device("bob", "tok", 1)

    async def test_timeout_wrapped(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(side_effect=TimeoutError())
        with pytest.raises(PersistenceError):
            await mock_store.notification_status("e1")

    async def test_pool_error_passes_through(self, mock_store, mock_connection):
        mock_connection.execute = AsyncMock(side_effect=asyncpg.InterfaceError("gone"))
        mock_store._pool._config.retry.max_attempts = 1
        with pytest.raises(ConnectionPoolError):
            await mock_store.remove_device("bob", "tok")


class TestNotifications:
    """Notification record operations."""

    async def test_pubkeys_subscribed_to_event(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(return_value=[{"pubkey": "bob"}, {"pubkey": "carol"}])
        assert await mock_store.pubkeys_subscribed_to_event("e1") == {"bob", "carol"}
        query, event_id = mock_connection.fetch.await_args.args
        assert "FROM notifications WHERE event_id = $1" in query
        assert event_id == "e1"
        assert mock_connection.fetch.await_args.kwargs["timeout"] == 30.0

    async def test_notification_status(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(
            return_value=[
                {
                    "id": "e1:bob",
                    "event_id": "e1",
                    "pubkey": "bob",
                    "received_notification": True,
                    "sent_at": 10,
                },
                {
                    "id": "e1:carol",
                    "event_id": "e1",
                    "pubkey": "carol",
                    "received_notification": False,
                    "sent_at": None,
                },
            ]
        )
        status = await mock_store.notification_status("e1")
        assert dict(status) == {"bob": True, "carol": False}
        assert status.notified() == {"bob"}

    async def test_fetch_notifications(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(
            return_value=[
                {
                    "id": "e1:bob",
                    "event_id": "e1",
                    "pubkey": "bob",
                    "received_notification": True,
                    "sent_at": None,
                }
            ]
        )
        records = await mock_store.fetch_notifications("e1")
        assert records == [NotificationRecord("e1", "bob", sent_at=0)]

    async def test_record_notification_sent(self, mock_store, mock_connection):
        await mock_store.record_notification_sent("e1", "bob", 1234)
        args = mock_connection.execute.await_args.args
        assert "ON CONFLICT (id) DO UPDATE" in args[0]
        assert args[1:] == ("e1:bob", "e1", "bob", True, 1234)

    async def test_upsert_notification(self, mock_store, mock_connection):
        record = NotificationRecord("e1", "bob", received_notification=False, sent_at=5)
        await mock_store.upsert_notification(record)
        assert mock_connection.execute.await_args.args[1:] == tuple(record.to_db_params())


class TestDevices:
    """Device registration operations."""

    async def test_fetch_devices(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(
            return_value=[
                {"id": "bob:a", "pubkey": "bob", "device_token": "a", "added_at": None},
                {"id": "bob:b", "pubkey": "bob", "device_token": "b", "added_at": 5},
            ]
        )
        devices = await mock_store.fetch_devices("bob")
        assert devices == [
            DeviceRegistration("bob", "a", added_at=0),
            DeviceRegistration("bob", "b", added_at=5),
        ]

    async def test_device_tokens_for(self, mock_store, mock_connection):
        mock_connection.fetch = AsyncMock(
            return_value=[{"id": "bob:a", "pubkey": "bob", "device_token": "a", "added_at": 1}]
        )
        assert await mock_store.device_tokens_for("bob") == ["a"]

    async def test_device_tokens_for_none(self, mock_store):
        assert await mock_store.device_tokens_for("bob") == []

    async def test_upsert_device(self, mock_store, mock_connection):
        await mock_store.upsert_device("bob", "tok", 42)
        args = mock_connection.execute.await_args.args
        assert "INSERT INTO user_info" in args[0]
        assert "DO UPDATE SET added_at = EXCLUDED.added_at" in args[0]
        assert args[1:] == ("bob:tok", "bob", "tok", 42)

    async def test_upsert_device_validates(self, mock_store):
        with pytest.raises(ValueError, match="device_token"):
            await mock_store.upsert_device("bob", "", 1)

    @pytest.mark.parametrize(("status", "expected"), [("DELETE 1", 1), ("DELETE 0", 0)])
    async def test_remove_device(self, mock_store, mock_connection, status, expected):
        mock_connection.execute = AsyncMock(return_value=status)
        assert await mock_store.remove_device("bob", "tok") == expected
        assert mock_connection.execute.await_args.args[1:] == ("bob", "tok")

    async def test_remove_device_unparseable_status(self, mock_store, mock_connection):
        mock_connection.execute = AsyncMock(return_value="OK")
        assert await mock_store.remove_device("bob", "tok") == 0
