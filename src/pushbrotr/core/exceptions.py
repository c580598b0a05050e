"""PushBrotr exception hierarchy.

Provides typed exceptions for every error category of the notification
pipeline so callers can distinguish programmer errors, transient I/O
failures and per-recipient failures, and let ``CancelledError`` propagate
untouched.

Exception hierarchy:

```text
PushBrotrError (base -- never raised directly)
├── ConfigurationError         -- config validation, missing keys, bad YAML
├── StoreError                 -- subscription store failures
│   ├── StoreUnavailable       -- store used before initialize()
│   └── PersistenceError       -- query or I/O failure
│       └── ConnectionPoolError -- transient: pool exhausted, network blip
├── PolicyEvaluationError      -- mute check failed for one candidate
└── GatewayDeliveryError       -- push gateway transport failure
```

See Also:
    [SubscriptionStore][pushbrotr.core.store.SubscriptionStore]: Raises
        [StoreUnavailable][pushbrotr.core.exceptions.StoreUnavailable] and
        [PersistenceError][pushbrotr.core.exceptions.PersistenceError].
    [Dispatcher][pushbrotr.services.dispatcher.Dispatcher]: Aborts a single
        candidate on
        [PolicyEvaluationError][pushbrotr.core.exceptions.PolicyEvaluationError]
        and treats
        [GatewayDeliveryError][pushbrotr.core.exceptions.GatewayDeliveryError]
        as a failed delivery.
"""

from __future__ import annotations


class PushBrotrError(Exception):
    """Base exception for all PushBrotr errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(PushBrotrError):
    """Invalid or missing configuration (YAML, env vars, CLI flags).

    See Also:
        [load_yaml()][pushbrotr.core.yaml.load_yaml]: YAML loading function
            that may trigger configuration errors.
    """


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class StoreError(PushBrotrError):
    """Base for all subscription store errors."""


class StoreUnavailable(StoreError):  # noqa: N818
    """The store was used before ``initialize()`` or after ``close()``.

    This is a programmer error: the owning process must open the store
    exactly once at startup.
    """


class PersistenceError(StoreError):
    """Query or I/O failure inside the store.

    Each write is a single upsert, so a failed call never leaves a partial
    record behind. The event being processed is aborted.
    """


class ConnectionPoolError(PersistenceError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.

    See Also:
        [Pool][pushbrotr.core.pool.Pool]: Connection pool that raises
            this exception once its retry budget is exhausted.
    """


# ---------------------------------------------------------------------------
# Capability ports
# ---------------------------------------------------------------------------


class PolicyEvaluationError(PushBrotrError):
    """The mute policy could not decide for one (note, pubkey) pair.

    The candidate is neither notified nor recorded, so it may be retried
    on a later related event.
    """


class GatewayDeliveryError(PushBrotrError):
    """The push gateway failed to deliver to one device.

    Logged and counted as a failed delivery. It never aborts the fan-out to
    other devices or pubkeys.
    """
