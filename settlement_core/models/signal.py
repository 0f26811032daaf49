"""Signal data models."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SignalAction(str, Enum):
    """Trade action published by a provider."""

    BUY = "BUY"
    SELL = "SELL"
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def is_long(self) -> bool:
        return self in (SignalAction.BUY, SignalAction.LONG)


class SignalStatus(str, Enum):
    """Position lifecycle status."""

    OPEN = "open"
    CLOSED = "closed"
    EXPIRED = "expired"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not SignalStatus.OPEN


class CloseReason(str, Enum):
    """Why a position left the OPEN state."""

    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    EXPIRED = "expired"
    MAX_DRAWDOWN = "max_drawdown"
    AUTO_OPPOSITE_SIGNAL = "auto_opposite_signal"
    MANUAL = "manual"


class SignalCategory(str, Enum):
    SPOT = "spot"
    FUTURES = "futures"
    OPTIONS = "options"
    DEFI = "defi"
    NFT = "nft"
    MACRO = "macro"
    SWING = "swing"
    SCALP = "scalp"
    ARBITRAGE = "arbitrage"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


def generate_signal_id(provider: str, tx_id: str, created_at: datetime) -> str:
    """Generate a deterministic signal ID.

    The same (provider, tx, time) triple always maps to the same ID, so a
    retried submission cannot create a second row.
    """
    ts_str = created_at.strftime("%Y%m%d%H%M%S%f")
    key = f"{provider.lower()}:{tx_id.lower()}:{ts_str}"
    return "sig_" + hashlib.sha256(key.encode()).hexdigest()[:24]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Signal(BaseModel):
    """A single published position.

    Field names are the persistence contract for every store implementation.
    """

    id: str = ""
    provider: str
    token: str
    token_address: str | None = None
    chain: str = "base"

    action: SignalAction
    entry_price: float = Field(gt=0)
    collateral_usd: float = Field(gt=0)
    leverage: float = Field(default=1.0, ge=1)
    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None
    fees_usd: float = 0.0
    slippage_pct: float = 0.0

    tx_id: str
    exit_tx_id: str | None = None

    exit_price: float | None = None
    exit_timestamp: datetime | None = None
    pnl_pct: float | None = None
    pnl_usd: float | None = None
    current_price: float | None = None
    unrealized_pnl_pct: float | None = None
    unrealized_pnl_usd: float | None = None
    max_drawdown_pct: float = 0.0
    holding_hours: float | None = None

    status: SignalStatus = SignalStatus.OPEN
    close_reason: CloseReason | None = None
    expires_at: datetime | None = None
    parent_signal_id: str | None = None
    paired_signal_id: str | None = None

    category: SignalCategory | None = None
    risk_level: RiskLevel | None = None
    confidence: float | None = None
    reasoning: str | None = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at", "exit_timestamp", "expires_at")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_lifecycle(self):
        if not self.id:
            object.__setattr__(
                self, "id", generate_signal_id(self.provider, self.tx_id, self.created_at)
            )
        has_exit = self.exit_price is not None and self.exit_timestamp is not None
        if self.status.is_terminal and not has_exit:
            raise ValueError(f"status '{self.status.value}' requires exit_price and exit_timestamp")
        if not self.status.is_terminal and (
            self.exit_price is not None or self.exit_timestamp is not None
        ):
            raise ValueError("open signals cannot carry exit fields")
        return self

    @property
    def is_long(self) -> bool:
        return self.action.is_long

    @property
    def is_open(self) -> bool:
        return self.status is SignalStatus.OPEN

    @property
    def price_key(self) -> str:
        """Key used to look up the live price (address preferred over symbol)."""
        if self.token_address:
            return self.token_address.lower()
        return self.token.upper()

    def evolve(self, **changes: Any) -> "Signal":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return Signal.model_validate(data)

    def to_state(self) -> "SignalState":
        """Project onto the status-tagged view."""
        data = self.model_dump()
        if self.is_open:
            return OpenPosition.model_validate(data)
        return SettledPosition.model_validate(data)


class _PositionView(BaseModel):
    """Fields shared by every projection of a signal."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    provider: str
    token: str
    token_address: str | None = None
    chain: str
    action: SignalAction
    entry_price: float
    collateral_usd: float
    leverage: float
    stop_loss_pct: float | None = None
    take_profit_pct: float | None = None
    tx_id: str
    category: SignalCategory | None = None
    risk_level: RiskLevel | None = None
    confidence: float | None = None
    expires_at: datetime | None = None
    parent_signal_id: str | None = None
    created_at: datetime


class OpenPosition(_PositionView):
    """A live position; realized fields do not exist yet."""

    status: Literal[SignalStatus.OPEN]
    current_price: float | None = None
    unrealized_pnl_pct: float | None = None
    unrealized_pnl_usd: float | None = None
    max_drawdown_pct: float = 0.0


class SettledPosition(_PositionView):
    """A position in a terminal state; exit fields are mandatory."""

    status: Literal[SignalStatus.CLOSED, SignalStatus.EXPIRED, SignalStatus.STOPPED]
    exit_price: float
    exit_timestamp: datetime
    exit_tx_id: str | None = None
    pnl_pct: float
    pnl_usd: float
    fees_usd: float = 0.0
    holding_hours: float | None = None
    max_drawdown_pct: float = 0.0
    close_reason: CloseReason
    paired_signal_id: str | None = None


SignalState = Annotated[Union[OpenPosition, SettledPosition], Field(discriminator="status")]
