"""Data models."""

from settlement_core.models.signal import (
    CloseReason,
    OpenPosition,
    RiskLevel,
    SettledPosition,
    Signal,
    SignalAction,
    SignalCategory,
    SignalState,
    SignalStatus,
    generate_signal_id,
)
from settlement_core.models.subscription import Subscription
from settlement_core.models.quote import AssetClass, PriceQuote
from settlement_core.models.events import EventType, SignalEvent

__all__ = [
    "CloseReason",
    "OpenPosition",
    "RiskLevel",
    "SettledPosition",
    "Signal",
    "SignalAction",
    "SignalCategory",
    "SignalState",
    "SignalStatus",
    "generate_signal_id",
    "Subscription",
    "AssetClass",
    "PriceQuote",
    "EventType",
    "SignalEvent",
]
