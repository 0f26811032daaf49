"""Tests for risk configuration."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from settlement.risk_config import RiskConfig, load_risk_config
from settlement_core.models import SignalAction, SignalCategory


class TestRiskConfig:

    def test_defaults(self):
        config = RiskConfig()
        assert config.max_drawdown_floor_pct == -25.0
        assert config.pairing_window(SignalAction.SELL) == timedelta(days=30)
        assert config.pairing_window(SignalAction.SHORT) == timedelta(days=90)
        assert config.pairing_window(SignalAction.LONG) is None
        assert config.default_expiry(SignalCategory.SCALP) == timedelta(days=1)
        assert config.default_expiry(None) is None

    def test_band_overrides(self):
        config = RiskConfig(price_sanity_bands={"pepe": (1e-9, 0.01)})
        assert config.band_for("PEPE") == (1e-9, 0.01)
        assert config.band_for("WETH") == config.band_for("ETH")
        assert config.band_for("BTC") == RiskConfig().band_for("BTC")

    @pytest.mark.parametrize(
        "raw",
        [
            {"max_drawdown_floor_pct": 10},
            {"pairing_lookback_days": {"SELL": 0}},
            {"price_sanity_bands": {"ETH": (100, 10)}},
        ],
    )
    def test_rejects_invalid(self, raw):
        with pytest.raises(ValidationError):
            RiskConfig(**raw)


class TestLoadRiskConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_risk_config(tmp_path / "missing.yaml")
        assert config == RiskConfig()

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "settlement.yaml"
        path.write_text(
            "max_drawdown_floor_pct: -40\n"
            "pairing_lookback_days:\n"
            "  SELL: 7\n"
            "category_expiry_days:\n"
            "  scalp: 2\n"
            "price_sanity_bands:\n"
            "  pepe: [0.000000001, 0.01]\n"
        )

        config = load_risk_config(path)

        assert config.max_drawdown_floor_pct == -40
        assert config.pairing_window(SignalAction.SELL) == timedelta(days=7)
        assert config.pairing_window(SignalAction.BUY) is None
        assert config.default_expiry(SignalCategory.SCALP) == timedelta(days=2)
        assert config.band_for("PEPE") == (1e-9, 0.01)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "settlement.yaml"
        path.write_text("")
        assert load_risk_config(path) == RiskConfig()
