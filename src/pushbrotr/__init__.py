r"""PushBrotr -- push notification dispatch for a Nostr relay.

Runs as a write-policy plugin of the host relay: every note that passes
through is answered immediately while, in the background, the relevant
recipients are computed, deduplicated against a PostgreSQL store, checked
against their NIP-51 mute lists and notified on all of their registered
devices through APNs.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
              services         Dispatch engine and relay plugin
             /        \
          core       utils     Store, base service, logging / APNs, mute lists
             \        /
              models           Pure frozen dataclasses (zero I/O)
```

Attributes:
    models: Pure frozen dataclasses. Zero I/O, depends only on stdlib.
    core: Connection pool, subscription store, base service, exceptions,
        logging, metrics.
    utils: APNs gateway and relay-backed mute policy. Has I/O.
    services: The dispatcher service and its relay plugin.

Note:
    Top-level imports (``from pushbrotr import Dispatcher``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("pushbrotr")

__all__ = [
    "ApnsGateway",
    "BaseService",
    "DeviceRegistration",
    "Dispatcher",
    "DispatcherConfig",
    "Logger",
    "MuteList",
    "Note",
    "NotificationRecord",
    "Pool",
    "RelayMutePolicy",
    "SubscriptionStore",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("pushbrotr.core", "BaseService"),
    "Logger": ("pushbrotr.core", "Logger"),
    "Pool": ("pushbrotr.core", "Pool"),
    "SubscriptionStore": ("pushbrotr.core", "SubscriptionStore"),
    "DeviceRegistration": ("pushbrotr.models", "DeviceRegistration"),
    "MuteList": ("pushbrotr.models", "MuteList"),
    "Note": ("pushbrotr.models", "Note"),
    "NotificationRecord": ("pushbrotr.models", "NotificationRecord"),
    "ApnsGateway": ("pushbrotr.utils.apns", "ApnsGateway"),
    "RelayMutePolicy": ("pushbrotr.utils.mute", "RelayMutePolicy"),
    "Dispatcher": ("pushbrotr.services", "Dispatcher"),
    "DispatcherConfig": ("pushbrotr.services", "DispatcherConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'pushbrotr' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
