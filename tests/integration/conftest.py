"""Integration test fixtures providing ephemeral PostgreSQL via testcontainers.

The PostgresContainer is session-scoped to avoid the ~3s Docker startup per test.
The schema is dropped before every test (function-scoped ``store`` fixture) for isolation.
"""

from __future__ import annotations

import asyncpg
import pytest
from pydantic import SecretStr
from testcontainers.postgres import PostgresContainer

from pushbrotr.core.pool import DatabaseConfig, Pool, PoolConfig
from pushbrotr.core.store import SubscriptionStore


# ---------------------------------------------------------------------------
# Session-scoped container
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_container():
    """Spawn an ephemeral PostgreSQL 16 container for the test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        yield pg


@pytest.fixture(scope="session")
def pg_dsn(pg_container: PostgresContainer) -> dict[str, str | int]:
    """Extract connection parameters from the running container."""
    return {
        "host": pg_container.get_container_host_ip(),
        "port": int(pg_container.get_exposed_port(5432)),
        "database": pg_container.dbname,
        "user": pg_container.username,
        "password": pg_container.password,
    }


@pytest.fixture
async def pg_conn(pg_dsn: dict[str, str | int]):
    """Raw asyncpg connection on a freshly emptied public schema."""
    conn = await asyncpg.connect(
        host=str(pg_dsn["host"]),
        port=int(pg_dsn["port"]),
        database=str(pg_dsn["database"]),
        user=str(pg_dsn["user"]),
        password=str(pg_dsn["password"]),
    )
    await conn.execute("DROP SCHEMA public CASCADE")
    await conn.execute("CREATE SCHEMA public")
    try:
        yield conn
    finally:
        await conn.close()


@pytest.fixture
def pool_factory(pg_dsn: dict[str, str | int]):
    """Build Pools against the container."""

    def factory() -> Pool:
        return Pool(
            config=PoolConfig(
                database=DatabaseConfig(
                    host=str(pg_dsn["host"]),
                    port=int(pg_dsn["port"]),
                    database=str(pg_dsn["database"]),
                    user=str(pg_dsn["user"]),
                    password=SecretStr(str(pg_dsn["password"])),
                ),
            )
        )

    return factory


@pytest.fixture
async def store(pg_conn: asyncpg.Connection, pool_factory):
    """Provide an initialized SubscriptionStore on an empty database."""
    async with SubscriptionStore(pool=pool_factory()) as instance:
        yield instance
