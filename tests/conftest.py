"""
Pytest configuration and shared fixtures for PushBrotr tests.

Provides:
- Mock fixtures for asyncpg, Pool and SubscriptionStore
- In-memory fakes for the store, the mute policy and the push gateway
- A note factory producing fresh, valid notes
"""

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from pushbrotr.core.exceptions import PolicyEvaluationError, StoreUnavailable
from pushbrotr.core.pool import DatabaseConfig, Pool, PoolConfig
from pushbrotr.core.store import SubscriptionStore
from pushbrotr.models import DeliveryResult, DeviceRegistration, Note, NotificationStatus


# ============================================================================
# Environment / Logging
# ============================================================================


@pytest.fixture(autouse=True)
def db_password(monkeypatch: pytest.MonkeyPatch) -> str:
    """Every test runs with a database password in the environment."""
    monkeypatch.setenv("DB_PASSWORD", "test_password")
    return "test_password"


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=True)
    conn.execute = AsyncMock(return_value="OK")

    mock_transaction = MagicMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=conn)
    mock_transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=mock_transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Create a mock asyncpg pool."""
    pool = MagicMock()
    pool.close = AsyncMock()

    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)

    return pool


@pytest.fixture
def pool_config() -> PoolConfig:
    return PoolConfig(
        database=DatabaseConfig(
            host="localhost",
            port=5432,
            database="test_db",
            user="test_user",
        )
    )


@pytest.fixture
def mock_pool(
    mock_asyncpg_pool: MagicMock, mock_connection: MagicMock, pool_config: PoolConfig
) -> Pool:
    """Create a connected Pool with mocked internals."""
    pool = Pool(config=pool_config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True

    # Store mock connection for easy access in tests
    pool._mock_connection = mock_connection  # type: ignore[attr-defined]

    return pool


@pytest.fixture
def mock_store(mock_pool: Pool) -> SubscriptionStore:
    """Create an initialized SubscriptionStore over the mocked pool."""
    store = SubscriptionStore(pool=mock_pool)
    store._initialized = True
    return store


# ============================================================================
# In-Memory Fakes
# ============================================================================


class FakeStore:
    """In-memory stand-in for SubscriptionStore used by dispatcher tests.

    Mirrors the store's observable behavior: composite keys, upsert
    semantics and StoreUnavailable before initialize().
    """

    def __init__(self) -> None:
        self.notifications: dict[tuple[str, str], tuple[bool, int]] = {}
        self.devices: dict[tuple[str, str], int] = {}
        self.initialized = False
        self.closed = False
        self.writes = 0
        self.fail_on: dict[str, Exception] = {}

    def _check(self, operation: str) -> None:
        if not self.initialized:
            raise StoreUnavailable(f"{operation} called before initialize()")
        if operation in self.fail_on:
            raise self.fail_on[operation]

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.initialized = False
        self.closed = True

    async def __aenter__(self) -> "FakeStore":
        await self.initialize()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def pubkeys_subscribed_to_event(self, event_id: str) -> set[str]:
        self._check("pubkeys_subscribed_to_event")
        return {pk for (eid, pk) in self.notifications if eid == event_id}

    async def notification_status(self, event_id: str) -> NotificationStatus:
        self._check("notification_status")
        return NotificationStatus(
            event_id,
            {pk: sent for (eid, pk), (sent, _) in self.notifications.items() if eid == event_id},
        )

    async def record_notification_sent(self, event_id: str, pubkey: str, sent_at: int) -> None:
        self._check("record_notification_sent")
        self.writes += 1
        self.notifications[(event_id, pubkey)] = (True, sent_at)

    async def fetch_devices(self, pubkey: str) -> list[DeviceRegistration]:
        self._check("fetch_devices")
        return [
            DeviceRegistration(pk, token, added_at)
            for (pk, token), added_at in sorted(self.devices.items())
            if pk == pubkey
        ]

    async def device_tokens_for(self, pubkey: str) -> list[str]:
        self._check("device_tokens_for")
        return sorted(token for (pk, token) in self.devices if pk == pubkey)

    async def upsert_device(self, pubkey: str, device_token: str, added_at: int) -> None:
        self._check("upsert_device")
        self.writes += 1
        self.devices[(pubkey, device_token)] = added_at

    async def remove_device(self, pubkey: str, device_token: str) -> int:
        self._check("remove_device")
        self.writes += 1
        return 1 if self.devices.pop((pubkey, device_token), None) is not None else 0


class FakeMutePolicy:
    """Mute policy driven by explicit pubkey sets."""

    def __init__(
        self,
        muted: set[str] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.muted = muted or set()
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    async def should_mute(self, note: Note, pubkey: str) -> bool:
        self.calls.append((note.id, pubkey))
        if pubkey in self.failing:
            raise PolicyEvaluationError(f"cannot evaluate mute list of {pubkey}")
        return pubkey in self.muted


class FakeGateway:
    """Push gateway recording every call.

    ``results`` maps device tokens to a DeliveryResult, an exception to
    raise, or a number of seconds to sleep before succeeding.
    """

    def __init__(self, results: Mapping[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[dict[str, Any]] = []

    async def deliver(
        self,
        device_token: str,
        title: str,
        subtitle: str,
        body: str,
        payload: Any,
    ) -> DeliveryResult:
        self.calls.append(
            {
                "device_token": device_token,
                "title": title,
                "subtitle": subtitle,
                "body": body,
                "payload": dict(payload),
            }
        )
        outcome = self.results.get(device_token, DeliveryResult.ok())
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int | float):
            await asyncio.sleep(outcome)
            return DeliveryResult.ok()
        return outcome

    @property
    def tokens(self) -> list[str]:
        return [call["device_token"] for call in self.calls]


@pytest.fixture
def fake_store() -> FakeStore:
    store = FakeStore()
    store.initialized = True
    return store


@pytest.fixture
def fake_mute_policy() -> FakeMutePolicy:
    return FakeMutePolicy()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


# ============================================================================
# Notes
# ============================================================================


@pytest.fixture
def make_note() -> Callable[..., Note]:
    """Factory for valid notes created now."""

    def factory(
        id: str = "e1",
        pubkey: str = "alice",
        content: str = "gm",
        created_at: int | None = None,
        kind: int = 1,
        tags: list[list[Any]] | None = None,
        sig: str = "00" * 64,
    ) -> Note:
        return Note(
            id=id,
            pubkey=pubkey,
            content=content,
            created_at=int(time.time()) if created_at is None else created_at,
            kind=kind,
            tags=tags or [],
            sig=sig,
        )

    return factory


@pytest.fixture
def note_dict() -> dict[str, Any]:
    """Sample NIP-01 event object."""
    return {
        "id": "e1",
        "pubkey": "alice",
        "created_at": 1_700_000_000,
        "kind": 1,
        "tags": [["p", "bob"], ["e", "e0"], ["t", "Nostr"]],
        "content": "gm nostr",
        "sig": "00" * 64,
    }
