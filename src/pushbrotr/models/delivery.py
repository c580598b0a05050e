"""
Value types exchanged with push gateways.

A [NotificationMessage][pushbrotr.models.delivery.NotificationMessage] is
the formatted notification handed to a gateway; a
[DeliveryResult][pushbrotr.models.delivery.DeliveryResult] is what the
gateway reports back for one device.

See Also:
    [format_notification()][pushbrotr.services.dispatcher.ports.format_notification]:
        Builds messages from notes.
    [PushGateway][pushbrotr.services.dispatcher.ports.PushGateway]: The port
        that consumes messages and returns results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ._validation import validate_instance, validate_str_no_null


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """Outcome of one delivery attempt to one device.

    Attributes:
        success: Whether the gateway accepted the notification.
        reason: Gateway-provided failure reason (``None`` on success).

    Examples:
        ```python
        DeliveryResult.ok()                        # success=True
        DeliveryResult.failure("BadDeviceToken")   # success=False
        ```
    """

    success: bool
    reason: str | None = None

    def __post_init__(self) -> None:
        validate_instance(self.success, bool, "success")
        if self.reason is not None:
            validate_instance(self.reason, str, "reason")

    @classmethod
    def ok(cls) -> DeliveryResult:
        return cls(success=True)

    @classmethod
    def failure(cls, reason: str) -> DeliveryResult:
        return cls(success=False, reason=reason)


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    """Formatted push notification for one note.

    Attributes:
        title: Fixed notification title.
        subtitle: ``"From: <author pubkey>"``.
        body: Raw note content, verbatim.
        payload: Full note as a NIP-01 JSON object, attached for client-side
            deep-linking. Exposed as a read-only mapping.
    """

    title: str
    subtitle: str
    body: str
    payload: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        validate_str_no_null(self.title, "title")
        validate_instance(self.subtitle, str, "subtitle")
        validate_instance(self.body, str, "body")
        if not isinstance(self.payload, MappingProxyType):
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))
