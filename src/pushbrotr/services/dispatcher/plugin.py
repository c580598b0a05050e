"""
Host relay write-policy filter.

The host relay asks for an accept/reject decision for every incoming note.
[PushNotifyFilter][pushbrotr.services.dispatcher.plugin.PushNotifyFilter]
hands the note to the
[Dispatcher][pushbrotr.services.dispatcher.Dispatcher] as a background
task and answers immediately, so the decision never depends on delivery.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar


if TYPE_CHECKING:
    from pushbrotr.models import Note

    from .service import Dispatcher


class FilterAction(StrEnum):
    ACCEPT = "accept"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class FilterDecision:
    """The answer returned to the host relay for one note."""

    event_id: str
    action: FilterAction
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.event_id, "action": str(self.action), "msg": self.message}


class PushNotifyFilter:
    """Submit every note for notification and return a fixed decision.

    With ``reject=True`` every note is still dispatched but reported back
    as rejected, for relays that only want notifications out of the plugin.
    """

    NAME: ClassVar[str] = "push_notify"
    REJECT_MESSAGE: ClassVar[str] = "filter configured to reject all notes"

    def __init__(self, dispatcher: Dispatcher, *, reject: bool = False) -> None:
        self._dispatcher = dispatcher
        self._reject = reject

    def filter_note(self, note: Note) -> FilterDecision:
        """Submit *note* for background dispatch and return the decision."""
        self._dispatcher.submit(note)
        return self.decision_for(note.id)

    def decision_for(self, event_id: str) -> FilterDecision:
        """The configured decision, independent of any dispatch outcome."""
        if self._reject:
            return FilterDecision(event_id, FilterAction.REJECT, self.REJECT_MESSAGE)
        return FilterDecision(event_id, FilterAction.ACCEPT)
