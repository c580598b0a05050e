"""
Durable subscription store for notification records and device tokens.

[SubscriptionStore][pushbrotr.core.store.SubscriptionStore] exclusively
owns all persisted state of the notification pipeline:

* ``notifications``: one row per (event, pubkey) pair, keyed by
  ``event_id:pubkey``, indexed on ``event_id``.
* ``user_info``: one row per (pubkey, device token) pair, keyed by
  ``pubkey:device_token``, indexed on ``pubkey``.

Every write is a single ``INSERT ... ON CONFLICT DO UPDATE`` upsert, so
concurrent writers for different pubkeys of the same event never collide
and repeated writes converge to the same final state.

The schema is created on [initialize()][pushbrotr.core.store.SubscriptionStore.initialize]
and then migrated additively: columns introduced after the first release
(``sent_at``, ``added_at``) are added only if missing, so initialization
is idempotent against any earlier schema version.

Examples:
    ```python
    store = SubscriptionStore.from_yaml("config/store.yaml")

    async with store:
        await store.upsert_device("bob", "a1b2c3", added_at=int(time.time()))
        await store.device_tokens_for("bob")   # ['a1b2c3']
    ```

See Also:
    [Pool][pushbrotr.core.pool.Pool]: Connection pool wrapped by this store.
    [NotificationRecord][pushbrotr.models.notification.NotificationRecord]:
        Row model of the ``notifications`` table.
    [DeviceRegistration][pushbrotr.models.device.DeviceRegistration]: Row
        model of the ``user_info`` table.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Final

import asyncpg
from pydantic import BaseModel, Field, field_validator

from pushbrotr.models import (
    DeviceDbParams,
    DeviceRegistration,
    NotificationDbParams,
    NotificationRecord,
    NotificationStatus,
)

from .exceptions import PersistenceError, StoreUnavailable
from .logger import Logger
from .pool import Pool, PoolConfig
from .yaml import load_yaml


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


_MIN_TIMEOUT_SECONDS = 0.1


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL,
        pubkey TEXT NOT NULL,
        received_notification BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    "CREATE INDEX IF NOT EXISTS notification_event_id_index ON notifications (event_id)",
    """
    CREATE TABLE IF NOT EXISTS user_info (
        id TEXT PRIMARY KEY,
        device_token TEXT NOT NULL,
        pubkey TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS user_info_pubkey_index ON user_info (pubkey)",
)

#: Additive migrations as (table, column, type), applied in order.
MIGRATIONS: Final[tuple[tuple[str, str, str], ...]] = (
    ("notifications", "sent_at", "BIGINT"),
    ("user_info", "added_at", "BIGINT"),
)

_COLUMN_EXISTS_QUERY: Final = """
    SELECT EXISTS (
        SELECT 1 FROM information_schema.columns
        WHERE table_schema = current_schema()
          AND table_name = $1
          AND column_name = $2
    )
"""


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class StoreTimeoutsConfig(BaseModel):
    """Timeout settings for store operations (in seconds, None = no limit)."""

    query: float | None = Field(default=30.0, description="Query timeout (seconds, None=infinite)")
    setup: float | None = Field(
        default=60.0, description="Schema setup timeout (seconds, None=infinite)"
    )

    @field_validator("query", "setup", mode="after")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout: None (infinite) or >= 0.1 seconds."""
        if v is not None and v < _MIN_TIMEOUT_SECONDS:
            raise ValueError(
                f"Timeout must be None (infinite) or >= {_MIN_TIMEOUT_SECONDS} seconds"
            )
        return v


class StoreConfig(BaseModel):
    """Aggregate configuration for the subscription store."""

    timeouts: StoreTimeoutsConfig = Field(default_factory=StoreTimeoutsConfig)


# ---------------------------------------------------------------------------
# SubscriptionStore Class
# ---------------------------------------------------------------------------


class SubscriptionStore:
    """Async facade over the notification and device tables.

    One instance is opened per process and shared by every concurrent
    dispatch task. Concurrency control is delegated to the connection pool
    and PostgreSQL; the store holds no locks of its own beyond guarding
    its lifecycle.

    Every operation raises
    [StoreUnavailable][pushbrotr.core.exceptions.StoreUnavailable] when
    called before [initialize()][pushbrotr.core.store.SubscriptionStore.initialize]
    (or after [close()][pushbrotr.core.store.SubscriptionStore.close]) and
    [PersistenceError][pushbrotr.core.exceptions.PersistenceError] on any
    database or I/O failure.
    """

    def __init__(
        self,
        pool: Pool | None = None,
        config: StoreConfig | None = None,
    ) -> None:
        self._pool = pool or Pool()
        self._config = config or StoreConfig()
        self._initialized = False
        self._lifecycle_lock = asyncio.Lock()
        self._logger = Logger("store")

    @classmethod
    def from_yaml(cls, config_path: str) -> SubscriptionStore:
        """Create a store from a YAML file with a ``pool`` key and store settings."""
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> SubscriptionStore:
        """Create a store from a configuration dictionary.

        The ``pool`` key builds the [Pool][pushbrotr.core.pool.Pool]; the
        remaining keys are [StoreConfig][pushbrotr.core.store.StoreConfig]
        fields.
        """
        pool = Pool.from_dict(config_dict["pool"]) if "pool" in config_dict else None
        store_dict = {k: v for k, v in config_dict.items() if k != "pool"}
        config = StoreConfig(**store_dict) if store_dict else None
        return cls(pool=pool, config=config)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def pool_config(self) -> PoolConfig:
        return self._pool.config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect the pool, create the schema and apply pending migrations.

        No-op if the store is already initialized. After
        [close()][pushbrotr.core.store.SubscriptionStore.close] it
        re-initializes against the same database.

        Raises:
            PersistenceError: If the database is unreachable or a schema
                statement fails.
        """
        async with self._lifecycle_lock:
            if self._initialized:
                return
            try:
                await self._pool.connect()
                await self._setup_schema()
            except PersistenceError:
                await self._pool.close()
                raise
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
                await self._pool.close()
                raise PersistenceError(f"store initialization failed: {e}") from e
            self._initialized = True
            self._logger.info("store_initialized")

    async def _setup_schema(self) -> None:
        timeout = self._config.timeouts.setup
        async with self._pool.transaction() as conn:
            for statement in SCHEMA:
                await conn.execute(statement, timeout=timeout)
            for table, column, column_type in MIGRATIONS:
                exists = await conn.fetchval(_COLUMN_EXISTS_QUERY, table, column, timeout=timeout)
                if exists:
                    continue
                # identifiers come from MIGRATIONS, never from input
                await conn.execute(
                    f"ALTER TABLE {table} ADD COLUMN {column} {column_type}",
                    timeout=timeout,
                )
                self._logger.info("migration_applied", table=table, column=column)

    async def close(self) -> None:
        """Release the pool. Idempotent."""
        async with self._lifecycle_lock:
            if not self._initialized:
                return
            self._initialized = False
            await self._pool.close()
            self._logger.info("store_closed")

    async def __aenter__(self) -> SubscriptionStore:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Query Helpers
    # -------------------------------------------------------------------------

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one pool call, enforcing initialization and wrapping failures."""
        if not self._initialized:
            raise StoreUnavailable(f"{operation} called before initialize()")
        try:
            return await call()
        except PersistenceError:
            raise
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
            self._logger.error("store_operation_failed", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}") from e

    async def _fetch(self, operation: str, query: str, *args: Any) -> list[asyncpg.Record]:
        timeout = self._config.timeouts.query
        result: list[asyncpg.Record] = await self._run(
            operation, lambda: self._pool.fetch(query, *args, timeout=timeout)
        )
        return result

    async def _execute(self, operation: str, query: str, *args: Any) -> str:
        timeout = self._config.timeouts.query
        result: str = await self._run(
            operation, lambda: self._pool.execute(query, *args, timeout=timeout)
        )
        return result

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def pubkeys_subscribed_to_event(self, event_id: str) -> set[str]:
        """All pubkeys with a notification record for *event_id*, sent or not."""
        rows = await self._fetch(
            "pubkeys_subscribed_to_event",
            "SELECT pubkey FROM notifications WHERE event_id = $1",
            event_id,
        )
        return {row["pubkey"] for row in rows}

    async def fetch_notifications(self, event_id: str) -> list[NotificationRecord]:
        """Every notification record of *event_id*, ordered by pubkey."""
        rows = await self._fetch(
            "fetch_notifications",
            """
            SELECT id, event_id, pubkey, received_notification, sent_at
            FROM notifications
            WHERE event_id = $1
            ORDER BY pubkey
            """,
            event_id,
        )
        return [
            NotificationRecord.from_db_params(
                NotificationDbParams(
                    id=row["id"],
                    event_id=row["event_id"],
                    pubkey=row["pubkey"],
                    received_notification=row["received_notification"],
                    sent_at=row["sent_at"],
                )
            )
            for row in rows
        ]

    async def notification_status(self, event_id: str) -> NotificationStatus:
        """Per-pubkey delivery status for *event_id*."""
        records = await self.fetch_notifications(event_id)
        return NotificationStatus(
            event_id, {record.pubkey: record.received_notification for record in records}
        )

    async def upsert_notification(self, record: NotificationRecord) -> None:
        """Insert or overwrite the record keyed by ``event_id:pubkey``."""
        params = record.to_db_params()
        await self._execute(
            "upsert_notification",
            """
            INSERT INTO notifications (id, event_id, pubkey, received_notification, sent_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                received_notification = EXCLUDED.received_notification,
                sent_at = EXCLUDED.sent_at
            """,
            *params,
        )

    async def record_notification_sent(self, event_id: str, pubkey: str, sent_at: int) -> None:
        """Mark *pubkey* as notified about *event_id* at *sent_at*."""
        await self.upsert_notification(
            NotificationRecord(
                event_id=event_id,
                pubkey=pubkey,
                received_notification=True,
                sent_at=sent_at,
            )
        )

    # -------------------------------------------------------------------------
    # Devices
    # -------------------------------------------------------------------------

    async def fetch_devices(self, pubkey: str) -> list[DeviceRegistration]:
        """Every device registration of *pubkey*, oldest first."""
        rows = await self._fetch(
            "fetch_devices",
            """
            SELECT id, pubkey, device_token, added_at
            FROM user_info
            WHERE pubkey = $1
            ORDER BY added_at NULLS FIRST, device_token
            """,
            pubkey,
        )
        return [
            DeviceRegistration.from_db_params(
                DeviceDbParams(
                    id=row["id"],
                    pubkey=row["pubkey"],
                    device_token=row["device_token"],
                    added_at=row["added_at"],
                )
            )
            for row in rows
        ]

    async def device_tokens_for(self, pubkey: str) -> list[str]:
        """Device tokens registered for *pubkey* (possibly empty)."""
        return [device.device_token for device in await self.fetch_devices(pubkey)]

    async def upsert_device(self, pubkey: str, device_token: str, added_at: int) -> None:
        """Register *device_token* for *pubkey*, refreshing ``added_at`` if present."""
        params = DeviceRegistration(
            pubkey=pubkey, device_token=device_token, added_at=added_at
        ).to_db_params()
        await self._execute(
            "upsert_device",
            """
            INSERT INTO user_info (id, pubkey, device_token, added_at)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET added_at = EXCLUDED.added_at
            """,
            *params,
        )

    async def remove_device(self, pubkey: str, device_token: str) -> int:
        """Unregister *device_token* from *pubkey*.

        Returns:
            Number of rows removed (``0`` if the pair was not registered).
        """
        status = await self._execute(
            "remove_device",
            "DELETE FROM user_info WHERE pubkey = $1 AND device_token = $2",
            pubkey,
            device_token,
        )
        return _rows_affected(status)

    def __repr__(self) -> str:
        return f"SubscriptionStore(pool={self._pool!r}, initialized={self._initialized})"


def _rows_affected(status: str) -> int:
    """Parse the row count from a command tag such as ``"DELETE 3"``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
