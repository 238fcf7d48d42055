"""Unit tests for per-asset risk statistics and RiskMetric assembly."""

from __future__ import annotations

import math

import numpy as np
import pytest

from risk_engine.core.enums import RiskLevel, RiskTrend
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import RiskMetric, risk_level_from_score
from risk_engine.risk.risk_metrics import (
    beta,
    build_risk_metric,
    compute_risk_score,
    max_drawdown,
    sharpe_ratio,
    volatility,
)
from risk_engine.risk.var_calculator import VaRCalculator


class TestVolatility:
    def test_daily_sample_std(self) -> None:
        assert volatility([0.01, -0.01], annualized=False) == pytest.approx(math.sqrt(2) * 0.01)

    def test_annualized(self) -> None:
        daily = volatility([0.01, -0.01, 0.02], annualized=False)
        assert volatility([0.01, -0.01, 0.02]) == pytest.approx(daily * math.sqrt(252))

    def test_custom_trading_days(self) -> None:
        daily = volatility([0.01, -0.01, 0.02], annualized=False)
        result = volatility([0.01, -0.01, 0.02], trading_days_per_year=365)
        assert result == pytest.approx(daily * math.sqrt(365))

    def test_short_series_is_zero(self) -> None:
        assert volatility([0.05]) == 0.0
        assert volatility([]) == 0.0


class TestMaxDrawdown:
    def test_known_path(self) -> None:
        """Wealth 1.1 -> 0.55 -> 0.66: 50% off the peak, underwater 2 periods."""
        result = max_drawdown([0.1, -0.5, 0.2])
        assert result.max_drawdown == pytest.approx(0.5)
        assert result.duration_periods == 2

    def test_all_positive(self) -> None:
        result = max_drawdown([0.01, 0.02, 0.03])
        assert result.max_drawdown == 0.0
        assert result.duration_periods == 0

    def test_all_negative_measured_from_initial_wealth(self) -> None:
        result = max_drawdown([-0.1, -0.1])
        assert result.max_drawdown == pytest.approx(0.19)
        assert result.duration_periods == 2

    def test_total_loss_capped_at_one(self) -> None:
        assert max_drawdown([-1.0]).max_drawdown == 1.0
        assert max_drawdown([-1.5, 0.2]).max_drawdown == 1.0

    def test_recovery_resets_run(self) -> None:
        result = max_drawdown([-0.1, 0.2, -0.05, -0.05, -0.05])
        assert result.duration_periods == 3

    @pytest.mark.parametrize("seed", range(8))
    def test_bounded_for_random_series(self, seed: int) -> None:
        returns = np.random.default_rng(seed).normal(0.0, 0.3, size=100)
        result = max_drawdown(returns)
        assert 0.0 <= result.max_drawdown <= 1.0

    def test_empty(self) -> None:
        assert max_drawdown([]).max_drawdown == 0.0


class TestSharpeAndBeta:
    def test_zero_volatility_gives_zero_sharpe(self) -> None:
        assert sharpe_ratio([0.001] * 10) == 0.0

    def test_sharpe_sign(self) -> None:
        rng = np.random.default_rng(1)
        good = rng.normal(0.01, 0.01, size=200)
        assert sharpe_ratio(good) > 0
        assert sharpe_ratio(-good) < 0

    def test_beta_of_scaled_series(self) -> None:
        market = np.random.default_rng(2).normal(0.0, 0.01, size=100)
        assert beta(2.0 * market, market) == pytest.approx(2.0)

    def test_beta_defaults_to_one(self) -> None:
        assert beta([0.01, 0.02], [0.01]) == 1.0
        assert beta([0.01, 0.02], [0.005, 0.005]) == 1.0
        assert beta([], []) == 1.0


class TestRiskScore:
    def test_components_are_capped(self) -> None:
        assert compute_risk_score(0.05, 0.5, 0.2, -1.0) == pytest.approx(100.0)

    def test_calm_asset(self) -> None:
        assert compute_risk_score(0.0, 0.0, 0.0, 2.0) == 0.0

    def test_sharpe_component_only(self) -> None:
        assert compute_risk_score(0.0, 0.0, 0.0, 1.0) == pytest.approx(10.0)

    def test_mixed(self) -> None:
        # 0.01*1000=10, 0.04*500=20, 0.05*200=10, (2-1.5)*10=5
        assert compute_risk_score(0.01, 0.04, 0.05, 1.5) == pytest.approx(45.0)


class TestBuildRiskMetric:
    def test_full_snapshot(self, sample_returns: np.ndarray) -> None:
        calc = VaRCalculator(mc_simulations=2_000, seed=1)
        metric = build_risk_metric("BTC", sample_returns, 100_000.0, calculator=calc)
        assert metric.asset_id == "BTC"
        assert metric.var95 == metric.var_historical
        assert metric.var99 >= metric.var95
        assert metric.expected_shortfall95 >= metric.var95
        assert metric.expected_shortfall99 >= metric.var99
        assert metric.volatility == pytest.approx(metric.daily_volatility * math.sqrt(252))
        assert 0.0 <= metric.max_drawdown <= 1.0
        assert 0.0 <= metric.risk_score <= 100.0
        assert metric.risk_level == risk_level_from_score(metric.risk_score)
        assert metric.risk_trend == RiskTrend.STABLE
        assert metric.confidence == pytest.approx(0.9)

    def test_trading_days_flow_into_metric(self, sample_returns: np.ndarray) -> None:
        metric = build_risk_metric("BTC", sample_returns, 100_000.0, trading_days_per_year=365)
        assert metric.volatility == pytest.approx(metric.daily_volatility * math.sqrt(365))

    def test_trend_increasing(self, sample_returns: np.ndarray) -> None:
        previous = RiskMetric(asset_id="BTC", risk_score=0.0)
        metric = build_risk_metric("BTC", sample_returns, 100_000.0, previous=previous)
        assert metric.risk_trend == RiskTrend.INCREASING

    def test_trend_decreasing_and_stable(self) -> None:
        """Flat returns score exactly 20 (Sharpe component only)."""
        returns = [0.0] * 40
        calm = build_risk_metric("USDC", returns, 1_000.0)
        assert calm.risk_score == pytest.approx(20.0)
        assert calm.risk_level == RiskLevel.LOW

        lower = build_risk_metric("USDC", returns, 1_000.0, previous=RiskMetric("USDC", risk_score=80.0))
        assert lower.risk_trend == RiskTrend.DECREASING
        same = build_risk_metric("USDC", returns, 1_000.0, previous=RiskMetric("USDC", risk_score=22.0))
        assert same.risk_trend == RiskTrend.STABLE

    def test_single_observation_degrades(self) -> None:
        metric = build_risk_metric("ETH", [-0.02], 1_000.0)
        assert metric.volatility == 0.0
        assert metric.var95 == pytest.approx(20.0)
        assert metric.confidence == pytest.approx(0.9 / 30)
        # 0.02*1000=20, vol 0, mdd 0.02*200=4, sharpe 0 -> 20
        assert metric.risk_score == pytest.approx(44.0)
        assert metric.risk_level == RiskLevel.MEDIUM

    def test_invalid_returns_raise(self) -> None:
        with pytest.raises(ValidationError):
            build_risk_metric("ETH", [], 1_000.0)
        with pytest.raises(ValidationError):
            build_risk_metric("ETH", [0.01, float("nan")], 1_000.0)
        with pytest.raises(ValidationError):
            build_risk_metric("ETH", [0.01, 0.02], 0.0)
