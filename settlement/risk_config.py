"""Risk rule configuration loaded from settlement.yaml.

Supports:
- Max drawdown floor for the auto-close rule
- Per-action lookback windows for opposite-signal pairing
- Default expiry per signal category
- Per-asset price sanity bands checked at submission
- No YAML file = built-in defaults
"""

import logging
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, model_validator

from settlement_core.assets import price_band
from settlement_core.models import SignalAction, SignalCategory
from settlement_core.rules import DEFAULT_MAX_DRAWDOWN_FLOOR_PCT

logger = logging.getLogger(__name__)


DEFAULT_PAIRING_LOOKBACK_DAYS: dict[SignalAction, int] = {
    SignalAction.SELL: 30,
    SignalAction.SHORT: 90,
    SignalAction.BUY: 90,
}

DEFAULT_CATEGORY_EXPIRY_DAYS: dict[SignalCategory, int] = {
    SignalCategory.SCALP: 1,
    SignalCategory.SWING: 7,
    SignalCategory.SPOT: 3,
    SignalCategory.FUTURES: 30,
    SignalCategory.OPTIONS: 14,
    SignalCategory.DEFI: 14,
    SignalCategory.MACRO: 90,
    SignalCategory.ARBITRAGE: 1,
    SignalCategory.NFT: 7,
}


class RiskConfig(BaseModel):
    """Top-level settlement.yaml configuration."""

    max_drawdown_floor_pct: float = DEFAULT_MAX_DRAWDOWN_FLOOR_PCT
    pairing_lookback_days: dict[SignalAction, int] = dict(DEFAULT_PAIRING_LOOKBACK_DAYS)
    category_expiry_days: dict[SignalCategory, int] = dict(DEFAULT_CATEGORY_EXPIRY_DAYS)
    price_sanity_bands: dict[str, tuple[float, float]] = {}

    @model_validator(mode="after")
    def _validate(self):
        if self.max_drawdown_floor_pct >= 0:
            raise ValueError(
                f"max_drawdown_floor_pct must be negative, got {self.max_drawdown_floor_pct}"
            )
        for action, days in self.pairing_lookback_days.items():
            if days <= 0:
                raise ValueError(f"pairing lookback for {action.value} must be positive")
        for symbol, (low, high) in self.price_sanity_bands.items():
            if not 0 < low < high:
                raise ValueError(f"invalid price band for {symbol}: ({low}, {high})")
        self.price_sanity_bands = {
            symbol.upper(): band for symbol, band in self.price_sanity_bands.items()
        }
        return self

    def pairing_window(self, action: SignalAction) -> timedelta | None:
        """Lookback window for ``action``, or None if it never pairs."""
        days = self.pairing_lookback_days.get(action)
        if days is None:
            return None
        return timedelta(days=days)

    def default_expiry(self, category: SignalCategory | None) -> timedelta | None:
        if category is None:
            return None
        days = self.category_expiry_days.get(category)
        if days is None:
            return None
        return timedelta(days=days)

    def band_for(self, symbol: str) -> tuple[float, float]:
        """Plausible USD price range for ``symbol``."""
        return price_band(symbol, self.price_sanity_bands)


_DEFAULT_PATH = Path(__file__).parent.parent / "settlement.yaml"


def load_risk_config(path: Path | None = None) -> RiskConfig:
    """Load risk config from YAML file.

    Falls back to defaults if the file doesn't exist.
    """
    config_path = path or _DEFAULT_PATH

    if not config_path.exists():
        logger.info("No settlement.yaml found at %s, using defaults", config_path)
        return RiskConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = RiskConfig(**raw)
    logger.info(
        "Loaded risk config: drawdown floor=%.1f%%, %d pairing windows, %d price bands",
        config.max_drawdown_floor_pct,
        len(config.pairing_lookback_days),
        len(config.price_sanity_bands),
    )
    return config
