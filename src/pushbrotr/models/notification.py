"""
Delivery record for one (event, pubkey) pair.

Maps to the ``notifications`` table. A row exists from the moment the
dispatch engine decides to notify a pubkey about an event; rows are never
deleted, only overwritten. A row with ``received_notification = true``
permanently excludes the pair from future delivery attempts.

See Also:
    [SubscriptionStore][pushbrotr.core.store.SubscriptionStore]: Persists
        and queries these records.
    [DeviceRegistration][pushbrotr.models.device.DeviceRegistration]: The
        device counterpart keyed by (pubkey, device_token).
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from time import time
from typing import NamedTuple

from ._validation import validate_instance, validate_str_not_empty, validate_timestamp


def notification_id(event_id: str, pubkey: str) -> str:
    """Composite primary key of a notification row: ``event_id:pubkey``."""
    return f"{event_id}:{pubkey}"


class NotificationDbParams(NamedTuple):
    """Positional parameters for the ``notifications`` upsert.

    Attributes:
        id: Composite key ``event_id:pubkey``.
        event_id: Hex event id.
        pubkey: Hex recipient pubkey.
        received_notification: Whether the notification was sent.
        sent_at: Unix timestamp of the delivery attempt.
    """

    id: str
    event_id: str
    pubkey: str
    received_notification: bool
    sent_at: int


@dataclass(frozen=True, slots=True)
class NotificationRecord:
    """Immutable delivery record keyed by ``(event_id, pubkey)``.

    Attributes:
        event_id: Event the notification is about.
        pubkey: Recipient pubkey.
        received_notification: ``True`` once delivery was attempted for all
            of the recipient's devices.
        sent_at: Unix timestamp of the attempt (defaults to now).

    Examples:
        ```python
        record = NotificationRecord(event_id="e1", pubkey="bob")
        record.id                         # 'e1:bob'
        record.to_db_params().sent_at     # current time
        ```
    """

    event_id: str
    pubkey: str
    received_notification: bool = True
    sent_at: int = field(default_factory=lambda: int(time()))
    _db_params: NotificationDbParams = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        hash=False,  # type: ignore[assignment]
    )

    def __post_init__(self) -> None:
        validate_str_not_empty(self.event_id, "event_id")
        validate_str_not_empty(self.pubkey, "pubkey")
        validate_instance(self.received_notification, bool, "received_notification")
        validate_timestamp(self.sent_at, "sent_at")
        object.__setattr__(self, "_db_params", self._compute_db_params())

    @property
    def id(self) -> str:
        return notification_id(self.event_id, self.pubkey)

    def _compute_db_params(self) -> NotificationDbParams:
        return NotificationDbParams(
            id=self.id,
            event_id=self.event_id,
            pubkey=self.pubkey,
            received_notification=self.received_notification,
            sent_at=self.sent_at,
        )

    def to_db_params(self) -> NotificationDbParams:
        """Return cached database parameters computed during initialization."""
        return self._db_params

    @classmethod
    def from_db_params(cls, params: NotificationDbParams) -> NotificationRecord:
        """Reconstruct a record from a database row.

        Rows written before the ``sent_at`` column existed carry ``NULL``;
        they are read back as ``0``.
        """
        return cls(
            event_id=params.event_id,
            pubkey=params.pubkey,
            received_notification=bool(params.received_notification),
            sent_at=params.sent_at or 0,
        )


class NotificationStatus(Mapping[str, bool]):
    """Read-only per-pubkey delivery status for one event.

    Behaves as a ``Mapping[str, bool]`` from pubkey to ``received_notification``.
    Pubkeys without a record are absent (``status.get(pk)`` returns ``None``).

    Examples:
        ```python
        status = await store.notification_status(event_id)
        status["bob"]          # True
        status.notified()      # {'bob'}
        ```
    """

    __slots__ = ("_event_id", "_status")

    def __init__(self, event_id: str, status: Mapping[str, bool] | None = None) -> None:
        self._event_id = event_id
        self._status: dict[str, bool] = dict(status or {})

    @property
    def event_id(self) -> str:
        return self._event_id

    def __getitem__(self, pubkey: str) -> bool:
        return self._status[pubkey]

    def __iter__(self) -> Iterator[str]:
        return iter(self._status)

    def __len__(self) -> int:
        return len(self._status)

    def __repr__(self) -> str:
        return f"NotificationStatus(event_id={self._event_id!r}, status={self._status!r})"

    def notified(self) -> set[str]:
        """Pubkeys whose record says the notification was sent."""
        return {pubkey for pubkey, sent in self._status.items() if sent}
