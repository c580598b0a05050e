"""
NIP-51 mute list (kind 10000) reduced to the entries that suppress notifications.

Only public entries are read: the tag arrays of the list event. Private
entries (encrypted in the event content) cannot be decrypted without the
owner's secret key and are ignored.

Matching rules:

* ``p``: the note's author is muted.
* ``e``: the note itself, or any event it references, is muted (muted
  threads).
* ``t``: one of the note's hashtags is muted (case-insensitive).
* ``word``: the muted word occurs in the note content (case-insensitive
  substring).

See Also:
    [RelayMutePolicy][pushbrotr.utils.mute.RelayMutePolicy]: Fetches mute
        lists from the host relay and applies them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import TagType


if TYPE_CHECKING:
    from .note import Note


_MIN_TAG_LEN = 2


@dataclass(frozen=True, slots=True)
class MuteList:
    """Immutable set of muted pubkeys, events, hashtags and words.

    Attributes:
        pubkeys: Muted authors.
        event_ids: Muted events (threads).
        hashtags: Muted hashtags, lowercased.
        words: Muted words, lowercased.
    """

    pubkeys: frozenset[str] = frozenset()
    event_ids: frozenset[str] = frozenset()
    hashtags: frozenset[str] = frozenset()
    words: frozenset[str] = frozenset()

    @classmethod
    def from_tags(cls, tags: Iterable[Iterable[Any]]) -> MuteList:
        """Build a mute list from the tag arrays of a kind 10000 event.

        Malformed entries (too short, non-string, empty) are skipped.
        """
        buckets: dict[str, set[str]] = {t: set() for t in TagType}
        for raw in tags:
            tag = list(raw)
            if len(tag) < _MIN_TAG_LEN:
                continue
            name, value = tag[0], tag[1]
            if name not in buckets or not isinstance(value, str) or not value:
                continue
            if name in (TagType.HASHTAG, TagType.WORD):
                value = value.lower()
            buckets[name].add(value)
        return cls(
            pubkeys=frozenset(buckets[TagType.PUBKEY]),
            event_ids=frozenset(buckets[TagType.EVENT]),
            hashtags=frozenset(buckets[TagType.HASHTAG]),
            words=frozenset(buckets[TagType.WORD]),
        )

    def is_empty(self) -> bool:
        return not (self.pubkeys or self.event_ids or self.hashtags or self.words)

    def matches(self, note: Note) -> bool:
        """Whether *note* hits any entry of this list."""
        if note.pubkey in self.pubkeys:
            return True
        if self.event_ids and (
            note.id in self.event_ids or not self.event_ids.isdisjoint(note.referenced_event_ids())
        ):
            return True
        if self.hashtags and any(
            tag.lower() in self.hashtags for tag in note.tags_of_type(TagType.HASHTAG)
        ):
            return True
        if self.words:
            content = note.content.lower()
            return any(word in content for word in self.words)
        return False
