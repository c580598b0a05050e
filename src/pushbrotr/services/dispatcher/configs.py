"""Dispatcher service configuration models.

See Also:
    [Dispatcher][pushbrotr.services.dispatcher.Dispatcher]: The service class
        that consumes these configurations.
    [BaseServiceConfig][pushbrotr.core.base_service.BaseServiceConfig]:
        Base class providing the ``metrics`` field.
"""

from __future__ import annotations

from pydantic import Field

from pushbrotr.core.base_service import BaseServiceConfig
from pushbrotr.models.constants import FRESHNESS_WINDOW_SECONDS, NOTIFICATION_TITLE
from pushbrotr.utils.apns import ApnsConfig
from pushbrotr.utils.mute import MuteConfig


class DispatcherConfig(BaseServiceConfig):
    """Dispatcher settings.

    Attributes:
        freshness_window: Notes older than this many seconds are ignored.
        delivery_timeout: Upper bound (seconds) on one gateway call; a call
            that exceeds it counts as a failed delivery.
        max_concurrent_pubkeys: Maximum recipients of one note whose mute
            check or device fan-out runs at the same time.
        drain_timeout: Seconds to wait for in-flight dispatches on shutdown
            before cancelling them (None waits forever).
        title: Notification title shown on every push.
        apns: APNs gateway credentials and settings.
        mute: Mute policy settings.

    Examples:
        ```yaml
        freshness_window: 604800
        delivery_timeout: 10.0
        max_concurrent_pubkeys: 16
        apns:
          topic: com.jb55.damus2
          environment: production
        mute:
          relay_url: ws://localhost:7777
        ```
    """

    freshness_window: int = Field(
        default=FRESHNESS_WINDOW_SECONDS,
        ge=0,
        description="Maximum note age in seconds",
    )
    delivery_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Timeout of one gateway call in seconds",
    )
    max_concurrent_pubkeys: int = Field(
        default=16,
        ge=1,
        le=1024,
        description="Recipients handled concurrently per note",
    )
    drain_timeout: float | None = Field(
        default=30.0,
        gt=0.0,
        description="Shutdown grace period for in-flight dispatches (None = unlimited)",
    )
    title: str = Field(default=NOTIFICATION_TITLE, min_length=1)
    apns: ApnsConfig = Field(default_factory=lambda: ApnsConfig.model_validate({}))
    mute: MuteConfig = Field(default_factory=lambda: MuteConfig.model_validate({}))
