"""Declarative input schemas for signal submission and close requests.

``parse_signal_input`` / ``parse_close_input`` turn raw payloads into
validated models or raise :class:`settlement_core.errors.ValidationError`
naming the first offending field.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from settlement_core.errors import ValidationError
from settlement_core.models import RiskLevel, SignalAction, SignalCategory

ADDRESS_PATTERN = r"^0x[a-fA-F0-9]{40}$"
TX_HASH_PATTERN = r"^0x[a-fA-F0-9]{64}$"
TOKEN_PATTERN = r"^[A-Za-z0-9]{1,20}$"

MIN_COLLATERAL_USD = 1
MAX_COLLATERAL_USD = 1_000_000
MIN_LEVERAGE = 1
MAX_LEVERAGE = 100
MIN_STOP_LOSS_PCT = 0.1
MAX_STOP_LOSS_PCT = 90
MIN_TAKE_PROFIT_PCT = 0.1
MAX_TAKE_PROFIT_PCT = 1000
MAX_REASONING_LENGTH = 1000

# Allowed relative gap between a close request's price and the price
# embedded in its signed message
MESSAGE_PRICE_TOLERANCE = 0.001


class SignalInput(BaseModel):
    """Create-signal request after authentication."""

    model_config = ConfigDict(str_strip_whitespace=True)

    provider: str = Field(pattern=ADDRESS_PATTERN)
    action: SignalAction
    token: str = Field(pattern=TOKEN_PATTERN)
    collateral_usd: float = Field(ge=MIN_COLLATERAL_USD, le=MAX_COLLATERAL_USD)
    tx_id: str = Field(pattern=TX_HASH_PATTERN)
    entry_price: float | None = Field(default=None, gt=0)
    leverage: float = Field(default=1.0, ge=MIN_LEVERAGE, le=MAX_LEVERAGE)
    stop_loss_pct: float | None = Field(default=None, ge=MIN_STOP_LOSS_PCT, le=MAX_STOP_LOSS_PCT)
    take_profit_pct: float | None = Field(
        default=None, ge=MIN_TAKE_PROFIT_PCT, le=MAX_TAKE_PROFIT_PCT
    )
    expires_at: datetime | None = None

    token_address: str | None = Field(default=None, pattern=ADDRESS_PATTERN)
    chain: str = "base"
    category: SignalCategory | None = None
    risk_level: RiskLevel | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)
    reasoning: str | None = Field(default=None, max_length=MAX_REASONING_LENGTH)
    fees_usd: float = Field(default=0.0, ge=0)
    slippage_pct: float = Field(default=0.0, ge=0, le=100)

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("provider", "token_address", "tx_id")
    @classmethod
    def _lower_hex(cls, value: str | None) -> str | None:
        return value.lower() if value else value

    @field_validator("token")
    @classmethod
    def _upper_token(cls, value: str) -> str:
        return value.upper()

    @field_validator("expires_at")
    @classmethod
    def _utc_expiry(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PnlOverride(BaseModel):
    """Provider-reported realized PnL that replaces the computed one."""

    pnl_pct: float
    pnl_usd: float | None = None


class CloseInput(BaseModel):
    """Close-signal request after authentication.

    ``message_price`` is the price embedded in the signed message, when the
    authenticating collaborator extracted one.
    """

    signal_id: str = Field(min_length=1)
    exit_price: float = Field(gt=0)
    exit_tx_id: str | None = Field(default=None, pattern=TX_HASH_PATTERN)
    pnl_override: PnlOverride | None = None
    message_price: float | None = Field(default=None, gt=0)


def to_validation_error(exc: PydanticValidationError) -> ValidationError:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", "invalid input"),
        }
        for err in exc.errors()
    ]
    first = errors[0]
    field = first["field"] or None
    message = f"Field '{field}': {first['message']}" if field else first["message"]
    return ValidationError(message, field=field, details={"errors": errors})


def parse_signal_input(data: dict[str, Any]) -> SignalInput:
    try:
        return SignalInput.model_validate(data)
    except PydanticValidationError as e:
        raise to_validation_error(e) from e


def parse_close_input(data: dict[str, Any]) -> CloseInput:
    try:
        return CloseInput.model_validate(data)
    except PydanticValidationError as e:
        raise to_validation_error(e) from e


def check_message_price(exit_price: float, message_price: float | None) -> None:
    """Reject a close whose signed price differs from ``exit_price`` by > 0.1%."""
    if message_price is None:
        return
    if abs(message_price - exit_price) / exit_price > MESSAGE_PRICE_TOLERANCE:
        raise ValidationError(
            f"exit_price {exit_price} does not match signed price {message_price}",
            field="exit_price",
        )
