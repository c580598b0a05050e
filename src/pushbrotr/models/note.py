"""
Immutable Nostr note with tag-derived relevance views.

A [Note][pushbrotr.models.note.Note] is the event handed over by the host
relay's filtering pipeline. It carries the NIP-01 fields verbatim and
exposes read-only views over its tags: referenced pubkeys (``p``),
referenced event ids (``e``), and the set of pubkeys relevant to the
note (referenced pubkeys plus the author).

Tag content is attacker-controlled. Accessors never raise on malformed
tag arrays; they skip entries that are too short, non-string, or contain
null bytes.

See Also:
    [RelevanceResolver][pushbrotr.services.dispatcher.relevance.RelevanceResolver]:
        Extends [relevant_pubkeys()][pushbrotr.models.note.Note.relevant_pubkeys]
        one hop through referenced events.
    [format_notification()][pushbrotr.services.dispatcher.ports.format_notification]:
        Embeds [to_dict()][pushbrotr.models.note.Note.to_dict] in the
        push payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ._validation import (
    freeze_tags,
    validate_str_no_null,
    validate_str_not_empty,
    validate_timestamp,
)
from .constants import EVENT_KIND_MAX, TagType


_MIN_TAG_LEN = 2
_NOTE_KEYS = ("id", "pubkey", "content", "created_at", "kind", "tags", "sig")


@dataclass(frozen=True, slots=True)
class Note:
    """Immutable Nostr event as received from the host relay.

    The signature is carried through untouched: the host relay has already
    verified it before the note reaches the notification pipeline.

    Attributes:
        id: Hex event id.
        pubkey: Hex public key of the author.
        content: Raw event content, passed verbatim into notifications.
        created_at: Unix timestamp (seconds) of event creation.
        kind: Integer event kind (0-65535).
        tags: Ordered tag arrays, frozen as nested tuples.
        sig: Schnorr signature (hex).

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If ``id`` or ``pubkey`` is empty, or ``kind`` is out
            of range.

    Examples:
        ```python
        note = Note.from_dict({
            "id": "e1", "pubkey": "alice", "content": "gm",
            "created_at": 1700000000, "kind": 1,
            "tags": [["p", "bob"], ["e", "e0"]], "sig": "00",
        })
        note.relevant_pubkeys()       # {'alice', 'bob'}
        note.referenced_event_ids()   # {'e0'}
        ```
    """

    id: str
    pubkey: str
    content: str
    created_at: int
    kind: int
    tags: tuple[tuple[Any, ...], ...]
    sig: str

    def __post_init__(self) -> None:
        """Validate field types and freeze the tag arrays."""
        validate_str_not_empty(self.id, "id")
        validate_str_not_empty(self.pubkey, "pubkey")
        if not isinstance(self.content, str):
            raise TypeError(f"content must be a str, got {type(self.content).__name__}")
        validate_timestamp(self.created_at, "created_at")
        if isinstance(self.kind, bool) or not isinstance(self.kind, int):
            raise TypeError(f"kind must be an int, got {type(self.kind).__name__}")
        if not 0 <= self.kind <= EVENT_KIND_MAX:
            raise ValueError(f"kind must be between 0 and {EVENT_KIND_MAX}, got {self.kind}")
        validate_str_no_null(self.sig, "sig")
        object.__setattr__(self, "tags", freeze_tags(self.tags, "tags"))

    # -------------------------------------------------------------------------
    # Tag Views
    # -------------------------------------------------------------------------

    def tags_of_type(self, tag_type: str) -> list[str]:
        """Return the second element of every tag whose name is *tag_type*.

        Order follows the tag order of the note. Tag arrays with fewer than
        two elements, a non-string value, or a value containing null bytes
        are skipped.

        Args:
            tag_type: Tag name to match (e.g. ``"p"``, ``"e"``).
        """
        values: list[str] = []
        for tag in self.tags:
            if len(tag) < _MIN_TAG_LEN or tag[0] != tag_type:
                continue
            value = tag[1]
            if isinstance(value, str) and "\x00" not in value:
                values.append(value)
        return values

    def referenced_pubkeys(self) -> set[str]:
        """Pubkeys referenced through ``p`` tags (empty values dropped)."""
        return {v for v in self.tags_of_type(TagType.PUBKEY) if v}

    def referenced_event_ids(self) -> set[str]:
        """Event ids referenced through ``e`` tags (empty values dropped)."""
        return {v for v in self.tags_of_type(TagType.EVENT) if v}

    def relevant_pubkeys(self) -> set[str]:
        """Referenced pubkeys plus the author's own pubkey."""
        pubkeys = self.referenced_pubkeys()
        pubkeys.add(self.pubkey)
        return pubkeys

    def references_pubkey(self, pubkey: str) -> bool:
        """Whether *pubkey* appears in one of the note's ``p`` tags."""
        return pubkey in self.referenced_pubkeys()

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 JSON object for this note."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        """Build a note from a NIP-01 JSON object.

        Unknown keys are ignored.

        Raises:
            ValueError: If a required key is missing or a value is invalid.
            TypeError: If a value has the wrong type.
        """
        if not isinstance(data, dict):
            raise TypeError(f"note must be a JSON object, got {type(data).__name__}")
        missing = [key for key in _NOTE_KEYS if key not in data]
        if missing:
            raise ValueError(f"note is missing required keys: {', '.join(missing)}")
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            content=data["content"],
            created_at=data["created_at"],
            kind=data["kind"],
            tags=data["tags"],
            sig=data["sig"],
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> Note:
        """Parse a note from its JSON text.

        Raises:
            ValueError: If *raw* is not valid JSON or not a valid note.
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid note JSON: {e}") from e
        return cls.from_dict(data)
