"""Core layer providing the infrastructure for all PushBrotr services.

Sits in the middle of the diamond DAG -- depends only on
``pushbrotr.models`` and is depended upon by ``pushbrotr.services``.

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][pushbrotr.core.pool.Pool].
    SubscriptionStore: Durable notification and device store over the
        pool. Services use it, never [Pool][pushbrotr.core.pool.Pool]
        directly.
    BaseService: Abstract generic base class with store lifecycle,
        factory methods and Prometheus helpers.
    Logger: Structured logger supporting key=value and JSON output.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    YAML: Safe YAML loading. See [load_yaml()][pushbrotr.core.yaml.load_yaml].

Examples:
    ```python
    from pushbrotr.core import SubscriptionStore

    async with SubscriptionStore.from_yaml("config/store.yaml") as store:
        await store.device_tokens_for("bob")
    ```
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .exceptions import (
    ConfigurationError,
    ConnectionPoolError,
    GatewayDeliveryError,
    PersistenceError,
    PolicyEvaluationError,
    PushBrotrError,
    StoreError,
    StoreUnavailable,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs, setup_logging
from .metrics import (
    DISPATCH_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    ServerSettingsConfig,
)
from .store import StoreConfig, StoreTimeoutsConfig, SubscriptionStore
from .yaml import load_yaml


__all__ = [
    "DISPATCH_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "DatabaseConfig",
    "GatewayDeliveryError",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "PersistenceError",
    "PolicyEvaluationError",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "PushBrotrError",
    "ServerSettingsConfig",
    "StoreConfig",
    "StoreError",
    "StoreTimeoutsConfig",
    "StoreUnavailable",
    "StructuredFormatter",
    "SubscriptionStore",
    "format_kv_pairs",
    "load_yaml",
    "setup_logging",
]
