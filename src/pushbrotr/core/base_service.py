"""
Abstract base class for event-driven PushBrotr services.

``BaseService[ConfigT]`` provides the lifecycle shared by services that
react to inbound work rather than running on a timer: structured logging
via [Logger][pushbrotr.core.logger.Logger], a shutdown flag backed by
``asyncio.Event``, ownership of the
[SubscriptionStore][pushbrotr.core.store.SubscriptionStore] lifecycle and
Prometheus helpers.

The lifecycle is ``async with service:``. Entry initializes the store
exactly once and marks the service running. Exit requests shutdown, awaits
[on_shutdown()][pushbrotr.core.base_service.BaseService.on_shutdown] so the
subclass can drain in-flight work, and closes the store.

See Also:
    [Dispatcher][pushbrotr.services.dispatcher.Dispatcher]: The notification
        dispatch engine built on this class.
    [BaseServiceConfig][pushbrotr.core.base_service.BaseServiceConfig]: Base
        configuration model for all services.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .logger import Logger
from .metrics import SERVICE_COUNTER, SERVICE_GAUGE, SERVICE_INFO, MetricsConfig
from .yaml import load_yaml


if TYPE_CHECKING:
    from types import TracebackType

    from pushbrotr.models.constants import ServiceName

    from .store import SubscriptionStore


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Base configuration shared by all services.

    Subclass this to add service-specific fields.
    """

    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for all PushBrotr services.

    Subclasses must set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [on_shutdown()][pushbrotr.core.base_service.BaseService.on_shutdown].

    Attributes:
        SERVICE_NAME: Unique service identifier used in logging and metrics.
        CONFIG_CLASS: Pydantic model class used by the factory methods.
        _store: [SubscriptionStore][pushbrotr.core.store.SubscriptionStore]
            owned by the service for its whole lifetime.
        _config: Typed service configuration.
        _logger: [Logger][pushbrotr.core.logger.Logger] named after the
            service.
        _shutdown_event: Clear while the service is running; set once
            shutdown was requested.
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, store: SubscriptionStore, config: ConfigT | None = None) -> None:
        self._store = store
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()
        self._shutdown_event.set()

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def store(self) -> SubscriptionStore:
        return self._store

    @abstractmethod
    async def on_shutdown(self) -> None:
        """Finish or abandon in-flight work before the store is closed."""
        ...

    def request_shutdown(self) -> None:
        """Request a graceful shutdown. Safe to call from signal handlers."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Whether the service was entered and shutdown was not yet requested."""
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float | None = None) -> bool:  # noqa: ASYNC109
        """Wait for a shutdown request or *timeout* seconds.

        Returns:
            ``True`` if shutdown was requested, ``False`` on timeout.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    # -------------------------------------------------------------------------
    # Factory Methods
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, store: SubscriptionStore, **kwargs: Any) -> Self:
        """Create a service from a YAML configuration file."""
        return cls.from_dict(load_yaml(config_path), store=store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: SubscriptionStore, **kwargs: Any) -> Self:
        """Create a service by parsing *data* into ``CONFIG_CLASS``."""
        config = cast("ConfigT", cls.CONFIG_CLASS(**data))
        return cls(store=store, config=config, **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        """Initialize the store and mark the service as running."""
        await self._store.initialize()
        self._shutdown_event.clear()
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Drain in-flight work, then close the store."""
        self._shutdown_event.set()
        try:
            await self.on_shutdown()
        finally:
            await self._store.close()
            self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a named gauge for this service. No-op if metrics are disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a named counter for this service. No-op if metrics are disabled."""
        if not self._config.metrics.enabled:
            return
        SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
