"""
Capability ports consumed by the dispatch engine.

The engine depends on two external capabilities, each modelled as a
``typing.Protocol`` with one production adapter and one fake per test:

* [MutePolicy][pushbrotr.services.dispatcher.ports.MutePolicy], implemented
  by [RelayMutePolicy][pushbrotr.utils.mute.RelayMutePolicy].
* [PushGateway][pushbrotr.services.dispatcher.ports.PushGateway],
  implemented by [ApnsGateway][pushbrotr.utils.apns.ApnsGateway].

[format_notification()][pushbrotr.services.dispatcher.ports.format_notification]
turns a note into the message handed to the gateway.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pushbrotr.models import DeliveryResult, NotificationMessage
from pushbrotr.models.constants import NOTIFICATION_TITLE


if TYPE_CHECKING:
    from pushbrotr.models import Note


__all__ = [
    "DeliveryResult",
    "MutePolicy",
    "NotificationMessage",
    "PushGateway",
    "format_notification",
]


@runtime_checkable
class MutePolicy(Protocol):
    """Decides whether a candidate should be spared a notification.

    Implementations raise
    [PolicyEvaluationError][pushbrotr.core.exceptions.PolicyEvaluationError]
    when they cannot decide.
    """

    async def should_mute(self, note: Note, pubkey: str) -> bool: ...


@runtime_checkable
class PushGateway(Protocol):
    """Delivers one formatted notification to one device token.

    Implementations report rejections through
    [DeliveryResult][pushbrotr.models.delivery.DeliveryResult] and may raise
    [GatewayDeliveryError][pushbrotr.core.exceptions.GatewayDeliveryError]
    on transport failures.
    """

    async def deliver(
        self,
        device_token: str,
        title: str,
        subtitle: str,
        body: str,
        payload: Any,
    ) -> DeliveryResult: ...


def format_notification(note: Note, title: str = NOTIFICATION_TITLE) -> NotificationMessage:
    """Format the push notification for *note*.

    The subtitle names the author, the body is the raw note content with no
    truncation or sanitization, and the full note is attached as payload.
    """
    return NotificationMessage(
        title=title,
        subtitle=f"From: {note.pubkey}",
        body=note.content,
        payload=note.to_dict(),
    )
