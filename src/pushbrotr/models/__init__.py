"""Pure frozen dataclasses with zero I/O for notes, deliveries and devices.

The models layer is the foundation of the diamond DAG. It has **no
dependencies** on any other PushBrotr package, only the Python standard
library. Every model uses ``@dataclass(frozen=True, slots=True)``; database
parameter containers are ``NamedTuple`` instances cached in
``__post_init__``. All validation happens in ``__post_init__`` so invalid
instances never escape the constructor.

Attributes:
    Note: Nostr event with tag-derived relevance views.
    NotificationRecord: Delivery record keyed by ``(event_id, pubkey)``.
    NotificationStatus: Read-only ``pubkey -> sent`` mapping for one event.
    DeviceRegistration: Device token registration keyed by
        ``(pubkey, device_token)``.
    DeliveryResult: Outcome of one push delivery attempt.
    NotificationMessage: Formatted push notification for one note.
    MuteList: NIP-51 mute list entries that suppress notifications.
    ServiceName: Canonical service identifiers for logging and metrics.

See Also:
    [pushbrotr.models.note][]: Note parsing and tag views.
    [pushbrotr.models.notification][]: Delivery records.
    [pushbrotr.models.device][]: Device registrations.
    [pushbrotr.models.constants][]: Shared constants and enumerations.
"""

from .constants import (
    EVENT_KIND_MAX,
    FRESHNESS_WINDOW_SECONDS,
    NOTIFICATION_TITLE,
    EventKind,
    ServiceName,
    TagType,
)
from .delivery import DeliveryResult, NotificationMessage
from .device import DeviceDbParams, DeviceRegistration, device_id
from .mute_list import MuteList
from .note import Note
from .notification import (
    NotificationDbParams,
    NotificationRecord,
    NotificationStatus,
    notification_id,
)


__all__ = [
    "EVENT_KIND_MAX",
    "FRESHNESS_WINDOW_SECONDS",
    "NOTIFICATION_TITLE",
    "DeliveryResult",
    "DeviceDbParams",
    "DeviceRegistration",
    "EventKind",
    "MuteList",
    "Note",
    "NotificationDbParams",
    "NotificationMessage",
    "NotificationRecord",
    "NotificationStatus",
    "ServiceName",
    "TagType",
    "device_id",
    "notification_id",
]
