"""Services built on top of the store and the adapters.

Services are the top layer of the diamond DAG, depending on
[pushbrotr.core][pushbrotr.core], [pushbrotr.utils][pushbrotr.utils] and
[pushbrotr.models][pushbrotr.models]. Each service extends
[BaseService][pushbrotr.core.base_service.BaseService] and is driven by the
host relay rather than by a timer.

Attributes:
    Dispatcher: Notify-set computation and push delivery for every note
        passing through the host relay.

Examples:
    ```python
    from pushbrotr.core import SubscriptionStore
    from pushbrotr.services import Dispatcher

    store = SubscriptionStore.from_yaml("config/store.yaml")
    async with Dispatcher(store=store, mute_policy=policy, gateway=gateway) as dispatcher:
        dispatcher.submit(note)
    ```
"""

from .dispatcher import (
    Dispatcher,
    DispatcherConfig,
    DispatchReport,
    PushNotifyFilter,
)


__all__ = [
    "DispatchReport",
    "Dispatcher",
    "DispatcherConfig",
    "PushNotifyFilter",
]
