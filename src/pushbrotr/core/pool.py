"""
asyncpg connection pool shared by every dispatch task.

The pool is the only synchronization point in front of PostgreSQL: each
store call borrows one connection for one statement, and the database
serializes conflicting upserts on the primary key. Nothing above the pool
takes locks of its own.

Two kinds of failure are retried with backoff (see
[PoolRetryConfig][pushbrotr.core.pool.PoolRetryConfig]):

* creating the pool: refused or reset connections, server start-up errors;
* running a statement: the borrowed connection turned out to be dead
  (``InterfaceError``, ``ConnectionDoesNotExistError``). The next attempt
  borrows a different connection.

Anything else, a constraint violation or a bad query, is raised on the
first attempt. Exhausted retries raise
[ConnectionPoolError][pushbrotr.core.exceptions.ConnectionPoolError].

See Also:
    [SubscriptionStore][pushbrotr.core.store.SubscriptionStore]: The only
        consumer of the pool.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Awaitable, Callable  # noqa: TC003
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Literal, TypeVar, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, model_validator

from .exceptions import ConnectionPoolError, StoreUnavailable
from .logger import Logger
from .yaml import load_yaml


T = TypeVar("T")

#: Connection-level errors after which a statement is retried on a fresh connection.
_STALE_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.InterfaceError,
    asyncpg.ConnectionDoesNotExistError,
)

#: Errors raised while the server is unreachable or still starting.
_CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    OSError,
    ConnectionError,
)


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------

#: Environment variables consulted for fields absent from the config file.
DATABASE_ENV_VARS: dict[str, str] = {
    "host": "DB_HOST",
    "port": "DB_PORT",
    "database": "DB_NAME",
    "user": "DB_USER",
}


class DatabaseConfig(BaseModel):
    """Where the notification database lives and who connects to it.

    ``host``, ``port``, ``database`` and ``user`` fall back to ``DB_HOST``,
    ``DB_PORT``, ``DB_NAME`` and ``DB_USER`` when the config omits them.
    The password only ever comes from the environment variable named by
    ``password_env``.
    """

    host: str = Field(default="localhost", min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="pushbrotr", min_length=1)
    user: str = Field(default="admin", min_length=1)
    password_env: str = Field(default="DB_PASSWORD", min_length=1)  # pragma: allowlist secret
    password: SecretStr

    @model_validator(mode="before")
    @classmethod
    def resolve_environment(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        resolved = dict(data)
        for field_name, env_var in DATABASE_ENV_VARS.items():
            if field_name not in resolved and os.getenv(env_var):
                resolved[field_name] = os.environ[env_var]
        if "password" not in resolved:
            env_var = resolved.get("password_env", "DB_PASSWORD")  # pragma: allowlist secret
            secret = os.getenv(env_var)
            if not secret:
                raise ValueError(f"{env_var} environment variable not set")
            resolved["password"] = SecretStr(secret)
        return resolved


class PoolLimitsConfig(BaseModel):
    """Size of the pool and how long connections are kept or waited for."""

    min_size: int = Field(default=1, ge=1, le=100)
    max_size: int = Field(default=10, ge=1, le=200)
    max_queries: int = Field(
        default=50_000, ge=100, description="Statements served before a connection is recycled"
    )
    idle_lifetime: float = Field(
        default=300.0, ge=0.0, description="Seconds an idle connection is kept (0 = forever)"
    )
    acquire_timeout: float = Field(
        default=10.0, ge=0.1, description="Seconds to wait for a free connection"
    )

    @model_validator(mode="after")
    def check_sizes(self) -> PoolLimitsConfig:
        if self.max_size < self.min_size:
            raise ValueError(f"max_size ({self.max_size}) must be >= min_size ({self.min_size})")
        return self


class PoolRetryConfig(BaseModel):
    """Backoff applied to connection attempts and to stale-connection retries.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n`` with
    ``exponential`` backoff and ``base_delay * (n + 1)`` with ``linear``
    backoff, never more than ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.1)
    max_delay: float = Field(default=10.0, ge=0.1)
    backoff: Literal["exponential", "linear"] = "exponential"

    @model_validator(mode="after")
    def check_delays(self) -> PoolRetryConfig:
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self

    def delay(self, attempt: int) -> float:
        """Seconds to sleep after failed attempt number *attempt* (0-based)."""
        if self.backoff == "exponential":
            raw = self.base_delay * (2**attempt)
        else:
            raw = self.base_delay * (attempt + 1)
        return float(min(raw, self.max_delay))


class ServerSettingsConfig(BaseModel):
    """Session settings applied to every pooled connection."""

    application_name: str = "pushbrotr"
    timezone: str = "UTC"
    statement_timeout: int = Field(
        default=30_000, ge=0, description="Milliseconds (0 disables the server-side limit)"
    )

    def as_server_settings(self) -> dict[str, str]:
        """The settings in the string form asyncpg sends at connection start-up."""
        return {
            "application_name": self.application_name,
            "timezone": self.timezone,
            "statement_timeout": str(self.statement_timeout),
        }


class PoolConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool Class
# ---------------------------------------------------------------------------


class Pool:
    """Lazily connected wrapper around ``asyncpg.Pool``.

    Starts disconnected. [connect()][pushbrotr.core.pool.Pool.connect] (or
    ``async with``) creates the asyncpg pool, and
    [close()][pushbrotr.core.pool.Pool.close] releases it; a closed pool
    may be connected again.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected = False
        self._connection_lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig(**config_dict))

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def config(self) -> PoolConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Backoff
    # -------------------------------------------------------------------------

    async def _with_backoff(
        self,
        operation: str,
        attempt: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...],
    ) -> T:
        """Await ``attempt()`` until it succeeds or ``max_attempts`` is reached.

        Only exceptions in *retry_on* trigger another attempt.

        Raises:
            ConnectionPoolError: When the last attempt failed with a
                retryable error.
        """
        retry = self._config.retry
        for n in range(retry.max_attempts):
            try:
                return await attempt()
            except retry_on as e:
                if n + 1 >= retry.max_attempts:
                    self._logger.error(
                        "retries_exhausted",
                        operation=operation,
                        attempts=retry.max_attempts,
                        error=str(e),
                    )
                    raise ConnectionPoolError(
                        f"{operation} failed after {retry.max_attempts} attempts: {e}"
                    ) from e
                delay = retry.delay(n)
                self._logger.warning(
                    "retrying",
                    operation=operation,
                    attempt=n + 1,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable: max_attempts >= 1")

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------

    async def _create_pool(self) -> asyncpg.Pool[asyncpg.Record]:
        db = self._config.database
        limits = self._config.limits
        return await asyncpg.create_pool(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password.get_secret_value(),
            min_size=limits.min_size,
            max_size=limits.max_size,
            max_queries=limits.max_queries,
            max_inactive_connection_lifetime=limits.idle_lifetime,
            timeout=limits.acquire_timeout,
            server_settings=self._config.server_settings.as_server_settings(),
        )

    async def connect(self) -> None:
        """Create the asyncpg pool, retrying with backoff.

        No-op while connected. Concurrent callers share a single attempt.

        Raises:
            ConnectionPoolError: If every attempt failed.
        """
        async with self._connection_lock:
            if self._is_connected:
                return
            db = self._config.database
            self._logger.info(
                "connection_starting", host=db.host, port=db.port, database=db.database
            )
            self._pool = await self._with_backoff("connect", self._create_pool, _CONNECT_ERRORS)
            self._is_connected = True
            self._logger.info("connection_established")

    async def close(self) -> None:
        """Release every connection. Safe to call when not connected."""
        async with self._connection_lock:
            pool, self._pool = self._pool, None
            self._is_connected = False
            if pool is not None:
                await pool.close()
                self._logger.info("connection_closed")

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Connections and Statements
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection for the duration of an ``async with`` block.

        Raises:
            StoreUnavailable: If the pool is not connected.
        """
        if self._pool is None or not self._is_connected:
            raise StoreUnavailable("Pool not connected. Call connect() first.")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection inside a transaction, rolled back on error."""
        async with self.acquire() as conn, conn.transaction():
            yield conn

    async def _run(
        self,
        operation: Literal["fetch", "execute"],
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
    ) -> Any:
        async def attempt() -> Any:
            async with self.acquire() as conn:
                return await getattr(conn, operation)(query, *args, timeout=timeout)

        return await self._with_backoff(operation, attempt, _STALE_CONNECTION_ERRORS)

    async def fetch(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Rows returned by *query*."""
        return cast("list[asyncpg.Record]", await self._run("fetch", query, args, timeout))

    async def execute(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> str:
        """Command status tag of *query*, e.g. ``"DELETE 1"``."""
        return cast("str", await self._run("execute", query, args, timeout))

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool(host={db.host}, database={db.database}, connected={self._is_connected})"
