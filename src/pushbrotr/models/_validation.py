"""Field checks shared by the ``__post_init__`` methods of the models.

Private module. Values checked here come from relay input or from
PostgreSQL rows, so every check fails loudly: ``TypeError`` for the wrong
kind of value, ``ValueError`` for a well-typed but unusable one.
"""

from __future__ import annotations

from typing import Any


def _kind(value: Any) -> str:
    return type(value).__name__


def validate_instance(value: Any, expected: type, name: str) -> None:
    if not isinstance(value, expected):
        article = "an" if expected.__name__[:1].lower() in "aeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {_kind(value)}")


def validate_timestamp(value: Any, name: str) -> None:
    """Unix seconds: an ``int`` (never a ``bool``) that is not negative."""
    if type(value) is bool or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {_kind(value)}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def validate_str_no_null(value: Any, name: str) -> None:
    """A ``str`` PostgreSQL can store, i.e. without NUL characters."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {_kind(value)}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    validate_str_no_null(value, name)
    if value == "":
        raise ValueError(f"{name} must not be empty")


def freeze_tags(tags: Any, name: str) -> tuple[tuple[Any, ...], ...]:
    """Convert a list of tag arrays into nested tuples.

    Only the outer structure is checked here (a sequence of sequences).
    Individual tag values are left as received: they are attacker-controlled
    and filtered lazily by the accessors that read them.
    """
    if isinstance(tags, str | bytes) or not isinstance(tags, list | tuple):
        raise TypeError(f"{name} must be a list of tag arrays, got {_kind(tags)}")
    frozen: list[tuple[Any, ...]] = []
    for i, tag in enumerate(tags):
        if isinstance(tag, str | bytes) or not isinstance(tag, list | tuple):
            raise TypeError(f"{name}[{i}] must be a list, got {_kind(tag)}")
        frozen.append(tuple(tag))
    return tuple(frozen)
