"""
One-hop relevance resolution.

A pubkey is relevant to a note when the note tags it, when it authored the
note, or when it already has a notification record for an event the note
references. The last rule propagates relevance exactly one hop along
reply/reference edges: records created while processing this note are not
followed further.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol


if TYPE_CHECKING:
    from pushbrotr.models import Note


class SubscriptionLookup(Protocol):
    """The slice of the store the resolver reads."""

    async def pubkeys_subscribed_to_event(self, event_id: str) -> set[str]: ...


class RelevanceResolver:
    """Computes the pubkeys relevant to a note.

    Examples:
        ```python
        resolver = RelevanceResolver(store)
        await resolver.relevant_pubkeys_for(note)  # {'alice', 'bob', 'carol'}
        ```
    """

    def __init__(self, store: SubscriptionLookup) -> None:
        self._store = store

    async def relevant_pubkeys_for(self, note: Note) -> set[str]:
        """Tagged pubkeys, the author, and subscribers of referenced events.

        Issues one store lookup per referenced event id.

        Raises:
            StoreUnavailable: If the store is not initialized.
            PersistenceError: If a lookup fails.
        """
        pubkeys = note.relevant_pubkeys()
        for event_id in sorted(note.referenced_event_ids()):
            pubkeys |= await self._store.pubkeys_subscribed_to_event(event_id)
        return pubkeys
