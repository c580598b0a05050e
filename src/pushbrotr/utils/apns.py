"""
Apple Push Notification service (APNs) gateway.

[ApnsGateway][pushbrotr.utils.apns.ApnsGateway] delivers one notification
to one device token over the APNs HTTP/2 provider API using ``httpx``.
Requests are authenticated with an ES256 provider token signed by
``PyJWT`` from the team's ``.p8`` key. The token is cached and re-signed
every ``token_refresh_interval`` seconds (APNs rejects tokens older than
one hour and throttles tokens refreshed more often than every 20 minutes).

Payload layout:

```json
{
  "aps": {
    "alert": {"title": "...", "subtitle": "...", "body": "..."},
    "mutable-content": 1,
    "content-available": 1
  },
  "nostr_event": {"id": "...", "pubkey": "...", "...": "..."}
}
```

A non-200 response yields a failed
[DeliveryResult][pushbrotr.models.delivery.DeliveryResult] carrying the
APNs ``reason``. Transport failures raise
[GatewayDeliveryError][pushbrotr.core.exceptions.GatewayDeliveryError].

Examples:
    ```python
    async with ApnsGateway(ApnsConfig.model_validate({})) as gateway:
        result = await gateway.deliver(token, "New activity", "From: ab12", "gm", note.to_dict())
    ```
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any, Literal

import httpx
import jwt
from pydantic import BaseModel, Field, model_validator

from pushbrotr.core.exceptions import ConfigurationError, GatewayDeliveryError
from pushbrotr.models import DeliveryResult


APNS_HOSTS: dict[str, str] = {
    "production": "https://api.push.apple.com",
    "development": "https://api.sandbox.push.apple.com",
}

#: Environment variables consulted for fields absent from the config file.
APNS_ENV_VARS: dict[str, str] = {
    "key_path": "APNS_PRIVATE_KEY_PATH",
    "key_id": "APNS_PRIVATE_KEY_ID",
    "team_id": "APNS_TEAM_ID",
    "topic": "APNS_TOPIC",
    "environment": "APNS_ENVIRONMENT",
}

_PROVIDER_TOKEN_ERRORS = frozenset({"ExpiredProviderToken", "InvalidProviderToken"})
_TOKEN_LOG_PREFIX = 8

logger = logging.getLogger(__name__)


class ApnsConfig(BaseModel):
    """APNs provider credentials and connection settings.

    Fields missing from the configuration are read from the environment
    (see ``APNS_ENV_VARS``). Credentials are only required once a gateway
    is built from the config.
    """

    key_path: str | None = Field(default=None, description="Path to the .p8 signing key")
    key_id: str | None = Field(default=None, description="Key id of the signing key")
    team_id: str | None = Field(default=None, description="Team id (token issuer)")
    topic: str = Field(default="com.jb55.damus2", min_length=1, description="App bundle id")
    environment: Literal["production", "development"] = Field(default="production")
    timeout: float = Field(default=10.0, gt=0.0, le=120.0, description="HTTP timeout (seconds)")
    token_refresh_interval: float = Field(
        default=3000.0,
        ge=1200.0,
        le=3500.0,
        description="Seconds before the provider token is re-signed",
    )

    @model_validator(mode="before")
    @classmethod
    def resolve_environment(cls, data: Any) -> Any:
        """Fill absent fields from the ``APNS_*`` environment variables."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for field_name, env_var in APNS_ENV_VARS.items():
            if field_name not in data:
                value = os.getenv(env_var)
                if value:
                    data[field_name] = value
        return data

    @property
    def host(self) -> str:
        return APNS_HOSTS[self.environment]

    def missing_credentials(self) -> list[str]:
        """Names of the environment variables still needed for signing."""
        return [
            APNS_ENV_VARS[name]
            for name in ("key_path", "key_id", "team_id")
            if not getattr(self, name)
        ]


def build_apns_payload(
    title: str,
    subtitle: str,
    body: str,
    payload: Any,
) -> dict[str, Any]:
    """Build the APNs JSON body for one notification."""
    return {
        "aps": {
            "alert": {"title": title, "subtitle": subtitle, "body": body},
            "mutable-content": 1,
            "content-available": 1,
        },
        "nostr_event": dict(payload),
    }


class ApnsGateway:
    """Push gateway delivering notifications through APNs.

    Use as an async context manager, or call
    [open()][pushbrotr.utils.apns.ApnsGateway.open] and
    [close()][pushbrotr.utils.apns.ApnsGateway.close] explicitly. An
    externally supplied ``httpx.AsyncClient`` is used as-is and never
    closed by the gateway.

    Raises:
        ConfigurationError: On construction, if credentials are missing.
    """

    def __init__(
        self,
        config: ApnsConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        missing = config.missing_credentials()
        if missing:
            raise ConfigurationError(f"APNs credentials not configured: {', '.join(missing)}")
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._signing_key: str | None = None
        self._token: str | None = None
        self._token_issued_at = 0.0

    @property
    def config(self) -> ApnsConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """Load the signing key and open the HTTP/2 client.

        Raises:
            ConfigurationError: If the key cannot be read or used for ES256.
        """
        self._provider_token()
        if self._client is None:
            self._client = httpx.AsyncClient(
                http2=True,
                base_url=self._config.host,
                timeout=self._config.timeout,
            )
        logger.info(
            "apns_gateway_opened environment=%s topic=%s",
            self._config.environment,
            self._config.topic,
        )

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ApnsGateway:
        await self.open()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Provider Token
    # -------------------------------------------------------------------------

    def _load_signing_key(self) -> str:
        if self._signing_key is None:
            path = Path(str(self._config.key_path))
            try:
                self._signing_key = path.read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"cannot read APNs key {path}: {e}") from e
        return self._signing_key

    def _provider_token(self) -> str:
        """Return the cached provider token, re-signing it when stale."""
        now = time.time()
        if (
            self._token is None
            or now - self._token_issued_at >= self._config.token_refresh_interval
        ):
            try:
                self._token = jwt.encode(
                    {"iss": self._config.team_id, "iat": int(now)},
                    self._load_signing_key(),
                    algorithm="ES256",
                    headers={"kid": self._config.key_id},
                )
            except (jwt.PyJWTError, ValueError, TypeError) as e:
                raise ConfigurationError(f"cannot sign APNs provider token: {e}") from e
            self._token_issued_at = now
        return self._token

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    async def deliver(
        self,
        device_token: str,
        title: str,
        subtitle: str,
        body: str,
        payload: Any,
    ) -> DeliveryResult:
        """Send one notification to *device_token*.

        Raises:
            GatewayDeliveryError: If the gateway is not open, the provider
                token cannot be signed, or the request fails in transport.
        """
        if self._client is None:
            raise GatewayDeliveryError("APNs gateway is not open")
        try:
            token = self._provider_token()
        except ConfigurationError as e:
            raise GatewayDeliveryError(str(e)) from e

        headers = {
            "authorization": f"bearer {token}",
            "apns-topic": self._config.topic,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }
        try:
            response = await self._client.post(
                f"/3/device/{device_token}",
                json=build_apns_payload(title, subtitle, body, payload),
                headers=headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            raise GatewayDeliveryError(f"APNs request failed: {e}") from e

        if response.status_code == httpx.codes.OK:
            return DeliveryResult.ok()

        reason = _response_reason(response)
        if reason in _PROVIDER_TOKEN_ERRORS:
            self._token = None
        logger.debug(
            "apns_rejected device=%s status=%s reason=%s",
            device_token[:_TOKEN_LOG_PREFIX],
            response.status_code,
            reason,
        )
        return DeliveryResult.failure(reason)


def _response_reason(response: httpx.Response) -> str:
    """Extract the APNs ``reason`` field, falling back to the HTTP status."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("reason"), str):
        return str(data["reason"])
    return f"HTTP {response.status_code}"
