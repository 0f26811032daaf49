"""Business logic services."""

from settlement.services.keyed_lock import KeyedLock
from settlement.services.notifier import WebhookDispatcher
from settlement.services.position_monitor import PositionMonitor
from settlement.services.price_oracle import PriceOracle
from settlement.services.settlement_engine import (
    EvaluationResult,
    SettlementEngine,
    Submission,
)
from settlement.services.trade_extractor import ExtractedTrade, TradeExtractor

__all__ = [
    "KeyedLock",
    "WebhookDispatcher",
    "PositionMonitor",
    "PriceOracle",
    "EvaluationResult",
    "SettlementEngine",
    "Submission",
    "ExtractedTrade",
    "TradeExtractor",
]
