"""
Dispatcher service package.

Computes the notify-set for each note passing through the host relay and
delivers push notifications to the registered devices of every recipient.

Attributes:
    Dispatcher: Dispatch engine built on
        [BaseService][pushbrotr.core.base_service.BaseService].
    DispatcherConfig: Pydantic configuration model.
    DispatchReport: Per-note outcome summary.
    RelevanceResolver: One-hop relevant pubkey computation.
    PushNotifyFilter: Host relay filter that submits notes for dispatch.
    MutePolicy: Port for per-recipient suppression.
    PushGateway: Port for per-device delivery.
"""

from .configs import DispatcherConfig
from .plugin import FilterAction, FilterDecision, PushNotifyFilter
from .ports import (
    DeliveryResult,
    MutePolicy,
    NotificationMessage,
    PushGateway,
    format_notification,
)
from .relevance import RelevanceResolver, SubscriptionLookup
from .service import DispatchReport, Dispatcher


__all__ = [
    "DeliveryResult",
    "DispatchReport",
    "Dispatcher",
    "DispatcherConfig",
    "FilterAction",
    "FilterDecision",
    "MutePolicy",
    "NotificationMessage",
    "PushGateway",
    "PushNotifyFilter",
    "RelevanceResolver",
    "SubscriptionLookup",
    "format_notification",
]
