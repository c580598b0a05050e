"""
Association between a pubkey and one push-capable device.

Maps to the ``user_info`` table. A pubkey may own zero or more device
tokens; each (pubkey, device_token) pair is unique and re-registering it
only refreshes ``added_at``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time
from typing import NamedTuple

from ._validation import validate_str_not_empty, validate_timestamp


def device_id(pubkey: str, device_token: str) -> str:
    """Composite primary key of a device row: ``pubkey:device_token``."""
    return f"{pubkey}:{device_token}"


class DeviceDbParams(NamedTuple):
    """Positional parameters for the ``user_info`` upsert."""

    id: str
    pubkey: str
    device_token: str
    added_at: int


@dataclass(frozen=True, slots=True)
class DeviceRegistration:
    """Immutable device registration keyed by ``(pubkey, device_token)``.

    Attributes:
        pubkey: Owner pubkey.
        device_token: Opaque push token of the device.
        added_at: Unix timestamp of registration (defaults to now).
    """

    pubkey: str
    device_token: str
    added_at: int = field(default_factory=lambda: int(time()))
    _db_params: DeviceDbParams = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        hash=False,  # type: ignore[assignment]
    )

    def __post_init__(self) -> None:
        validate_str_not_empty(self.pubkey, "pubkey")
        validate_str_not_empty(self.device_token, "device_token")
        validate_timestamp(self.added_at, "added_at")
        object.__setattr__(
            self,
            "_db_params",
            DeviceDbParams(
                id=self.id,
                pubkey=self.pubkey,
                device_token=self.device_token,
                added_at=self.added_at,
            ),
        )

    @property
    def id(self) -> str:
        return device_id(self.pubkey, self.device_token)

    def to_db_params(self) -> DeviceDbParams:
        """Return cached database parameters computed during initialization."""
        return self._db_params

    @classmethod
    def from_db_params(cls, params: DeviceDbParams) -> DeviceRegistration:
        return cls(
            pubkey=params.pubkey,
            device_token=params.device_token,
            added_at=params.added_at or 0,
        )
