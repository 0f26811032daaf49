"""Webhook subscription model and filter matching."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from settlement_core.models.signal import RiskLevel, Signal, SignalAction, SignalCategory


def _new_subscription_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(BaseModel):
    """A webhook notification target.

    Every filter is optional; the ones that are set are AND-combined.
    """

    id: str = Field(default_factory=_new_subscription_id)
    url: str

    provider_filter: str | None = None
    token_filter: str | None = None
    category_filter: SignalCategory | None = None
    risk_level_filter: RiskLevel | None = None
    min_confidence: float | None = None
    min_collateral_usd: float | None = None
    action_filters: list[SignalAction] = []

    active: bool = True
    success_count: int = 0
    failure_count: int = 0
    max_failures: int = Field(default=10, ge=1)
    last_triggered: datetime | None = None
    last_failure: datetime | None = None

    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    timeout_ms: int = Field(default=5000, gt=0)

    created_at: datetime = Field(default_factory=_utcnow)

    def matches(self, signal: Signal) -> bool:
        """Check every declared filter against ``signal``."""
        if self.provider_filter and signal.provider.lower() != self.provider_filter.lower():
            return False
        if self.token_filter and signal.token.upper() != self.token_filter.upper():
            return False
        if self.category_filter is not None and signal.category != self.category_filter:
            return False
        if self.risk_level_filter is not None and signal.risk_level != self.risk_level_filter:
            return False
        if self.min_confidence is not None:
            if signal.confidence is None or signal.confidence < self.min_confidence:
                return False
        if self.min_collateral_usd is not None and signal.collateral_usd < self.min_collateral_usd:
            return False
        if self.action_filters and signal.action not in self.action_filters:
            return False
        return True
