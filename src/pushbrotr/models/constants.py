"""Shared constants for the models layer.

Defines enumerations and fixed values used across model, core, and
service modules. Placing them here avoids circular dependencies between
the layers of the diamond DAG.

See Also:
    [Note][pushbrotr.models.note.Note]: Uses
        [TagType][pushbrotr.models.constants.TagType] to read tags.
    [pushbrotr.services.dispatcher][]: Uses the notification defaults.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging and metrics.

    Attributes:
        DISPATCHER: Notification dispatch engine
            ([Dispatcher][pushbrotr.services.dispatcher.Dispatcher]).
    """

    DISPATCHER = "dispatcher"


class TagType(StrEnum):
    """Nostr tag names read by the notification pipeline.

    Attributes:
        PUBKEY: ``p`` tag -- a referenced public key.
        EVENT: ``e`` tag -- a referenced event id.
        HASHTAG: ``t`` tag -- a hashtag (used by NIP-51 mute lists).
        WORD: ``word`` tag -- a muted word (NIP-51 mute lists only).
    """

    PUBKEY = "p"
    EVENT = "e"
    HASHTAG = "t"
    WORD = "word"


class EventKind(IntEnum):
    """Well-known Nostr event kinds used by the pipeline.

    Attributes:
        TEXT_NOTE: Kind 1 -- short text note (NIP-01).
        MUTE_LIST: Kind 10000 -- NIP-51 mute list (replaceable).
    """

    TEXT_NOTE = 1
    MUTE_LIST = 10_000


EVENT_KIND_MAX = 65_535

#: Events older than this many seconds never trigger notifications.
FRESHNESS_WINDOW_SECONDS = 7 * 24 * 60 * 60

#: Fixed title shown on every push notification.
NOTIFICATION_TITLE = "New activity"
