"""
Mute policy adapters.

[RelayMutePolicy][pushbrotr.utils.mute.RelayMutePolicy] answers "should
this pubkey be spared a notification about this note?" by fetching the
pubkey's NIP-51 mute list (kind 10000) from the host relay through
``nostr_sdk`` and matching it with
[MuteList.matches()][pushbrotr.models.mute_list.MuteList.matches].
Fetched lists are cached per pubkey for ``cache_ttl`` seconds, and at most
``cache_size`` lists are kept. Expired entries are evicted as new ones are
stored, so the cache stays bounded however many pubkeys are checked.

Any failure to fetch or read a list raises
[PolicyEvaluationError][pushbrotr.core.exceptions.PolicyEvaluationError];
the policy never guesses.

[NullMutePolicy][pushbrotr.utils.mute.NullMutePolicy] never mutes and is
used when ``mute.enabled`` is false.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import timedelta
from typing import Any

from nostr_sdk import Client, ClientBuilder, Filter, Kind, PublicKey, RelayUrl
from pydantic import BaseModel, Field, model_validator

from pushbrotr.core.exceptions import PolicyEvaluationError
from pushbrotr.models import EventKind, MuteList, Note


DEFAULT_RELAY_URL = "ws://localhost:7777"

logger = logging.getLogger(__name__)


class MuteConfig(BaseModel):
    """Mute policy settings.

    ``relay_url`` falls back to the ``RELAY_URL`` environment variable and
    then to ``ws://localhost:7777``.
    """

    enabled: bool = Field(default=True, description="Consult NIP-51 mute lists")
    relay_url: str = Field(default=DEFAULT_RELAY_URL, min_length=1)
    fetch_timeout: float = Field(default=5.0, gt=0.0, le=60.0, description="Seconds")
    cache_ttl: float = Field(default=60.0, ge=0.0, description="Seconds (0 disables caching)")
    cache_size: int = Field(default=10_000, ge=1, description="Maximum cached mute lists")

    @model_validator(mode="before")
    @classmethod
    def resolve_environment(cls, data: Any) -> Any:
        if isinstance(data, dict) and "relay_url" not in data:
            value = os.getenv("RELAY_URL")
            if value:
                data = {**data, "relay_url": value}
        return data


class NullMutePolicy:
    """Mute policy that never mutes."""

    async def should_mute(self, note: Note, pubkey: str) -> bool:  # noqa: ARG002
        return False


class RelayMutePolicy:
    """Mute policy backed by NIP-51 mute lists stored on the host relay.

    Use as an async context manager, or call
    [connect()][pushbrotr.utils.mute.RelayMutePolicy.connect] and
    [close()][pushbrotr.utils.mute.RelayMutePolicy.close] explicitly. An
    externally supplied ``nostr_sdk.Client`` is expected to be connected
    already and is never shut down by the policy.
    """

    def __init__(self, config: MuteConfig | None = None, *, client: Client | None = None) -> None:
        self._config = config or MuteConfig()
        self._client = client
        self._owns_client = client is None
        self._cache: dict[str, tuple[float, MuteList]] = {}

    @property
    def config(self) -> MuteConfig:
        return self._config

    async def connect(self) -> None:
        """Connect to the host relay.

        Raises:
            PolicyEvaluationError: If the relay URL is invalid or the
                connection cannot be started.
        """
        if self._client is not None:
            return
        try:
            client = ClientBuilder().build()
            await client.add_relay(RelayUrl.parse(self._config.relay_url))
            await client.connect()
        except Exception as e:  # Intentionally broad: nostr-sdk FFI errors share no base class
            raise PolicyEvaluationError(
                f"cannot connect to relay {self._config.relay_url}: {e}"
            ) from e
        self._client = client
        logger.info("mute_relay_connected relay=%s", self._config.relay_url)

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.shutdown()
        self._cache.clear()

    async def __aenter__(self) -> RelayMutePolicy:
        await self.connect()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def should_mute(self, note: Note, pubkey: str) -> bool:
        """Whether *pubkey*'s mute list suppresses notifications about *note*.

        Raises:
            PolicyEvaluationError: If the mute list cannot be obtained.
        """
        mute_list = await self.mute_list_for(pubkey)
        return mute_list.matches(note)

    async def mute_list_for(self, pubkey: str) -> MuteList:
        """Return the current mute list of *pubkey*, cached for ``cache_ttl``."""
        cached = self._cache.get(pubkey)
        if cached is not None:
            if time.monotonic() - cached[0] < self._config.cache_ttl:
                return cached[1]
            del self._cache[pubkey]

        mute_list = await self._fetch_mute_list(pubkey)
        if self._config.cache_ttl > 0:
            self._remember(pubkey, mute_list)
        return mute_list

    def _remember(self, pubkey: str, mute_list: MuteList) -> None:
        # insertion order is fetch order, so expired entries form a prefix
        now = time.monotonic()
        self._cache.pop(pubkey, None)
        while self._cache:
            oldest = next(iter(self._cache))
            if (
                now - self._cache[oldest][0] < self._config.cache_ttl
                and len(self._cache) < self._config.cache_size
            ):
                break
            del self._cache[oldest]
        self._cache[pubkey] = (now, mute_list)

    async def _fetch_mute_list(self, pubkey: str) -> MuteList:
        if self._client is None:
            raise PolicyEvaluationError("mute policy is not connected")
        try:
            mute_filter = (
                Filter().author(PublicKey.parse(pubkey)).kind(Kind(EventKind.MUTE_LIST)).limit(1)
            )
            events = await self._client.fetch_events(
                mute_filter, timedelta(seconds=self._config.fetch_timeout)
            )
            candidates = events.to_vec()
            if not candidates:
                return MuteList()
            newest = max(candidates, key=lambda evt: evt.created_at().as_secs())
            tags = [list(tag.as_vec()) for tag in newest.tags().to_vec()]
        except Exception as e:  # Intentionally broad: nostr-sdk FFI errors share no base class
            logger.warning("mute_list_fetch_failed pubkey=%s error=%s", pubkey, e)
            raise PolicyEvaluationError(f"cannot fetch mute list for {pubkey}: {e}") from e
        return MuteList.from_tags(tags)
