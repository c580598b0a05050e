"""Production adapters for the dispatcher's capability ports.

The utils layer sits in the middle of the diamond DAG. It depends on
[pushbrotr.models][pushbrotr.models] and on the dependency-free
[pushbrotr.core.exceptions][pushbrotr.core.exceptions] module only, and
logs through plain ``logging.getLogger(__name__)`` calls that the root
[StructuredFormatter][pushbrotr.core.logger.StructuredFormatter] renders.

Attributes:
    apns: [ApnsGateway][pushbrotr.utils.apns.ApnsGateway], the push gateway
        delivering through the APNs HTTP/2 provider API (``httpx`` +
        ``PyJWT``).
    mute: [RelayMutePolicy][pushbrotr.utils.mute.RelayMutePolicy], the mute
        policy reading NIP-51 mute lists from the host relay
        (``nostr_sdk``), and the no-op
        [NullMutePolicy][pushbrotr.utils.mute.NullMutePolicy].

Examples:
    ```python
    from pushbrotr.utils.apns import ApnsConfig, ApnsGateway
    from pushbrotr.utils.mute import MuteConfig, RelayMutePolicy
    ```
"""
