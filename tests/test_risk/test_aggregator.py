"""Unit tests for value-weighted portfolio risk aggregation."""

from __future__ import annotations

from typing import Any

import pytest

from risk_engine.core.config import Settings
from risk_engine.core.enums import RiskLevel
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import Position
from risk_engine.risk.aggregator import AggregationConfig, RiskAggregator


@pytest.fixture
def aggregator() -> RiskAggregator:
    return RiskAggregator()


class TestAggregate:
    @pytest.mark.parametrize("n", [1, 2, 3, 7, 10])
    def test_identical_positions_keep_individual_score(
        self, aggregator: RiskAggregator, make_position: Any, make_metric: Any, n: int
    ) -> None:
        metric = make_metric("BTC", risk_score=63.7, var95=420.0, volatility=0.55)
        positions = [make_position(f"A{i}", 2_500.0, metric=metric) for i in range(n)]
        summary = aggregator.aggregate(positions)

        assert summary.risk_score == pytest.approx(63.7, abs=1e-9)
        assert summary.total_var95 == pytest.approx(420.0)
        assert summary.portfolio_volatility == pytest.approx(0.55)
        assert summary.risk_level == RiskLevel.HIGH
        assert summary.position_count == n

    def test_value_weighting(
        self, aggregator: RiskAggregator, make_position: Any, make_metric: Any
    ) -> None:
        positions = [
            make_position("BTC", 7_500.0, metric=make_metric("BTC", risk_score=80.0, var95=1_000.0)),
            make_position("ETH", 2_500.0, metric=make_metric("ETH", risk_score=20.0, var95=200.0)),
        ]
        summary = aggregator.aggregate(positions)
        assert summary.total_value == pytest.approx(10_000.0)
        assert summary.risk_score == pytest.approx(65.0)
        assert summary.total_var95 == pytest.approx(800.0)

    def test_drawdown_is_worst_not_average(
        self, aggregator: RiskAggregator, make_position: Any, make_metric: Any
    ) -> None:
        positions = [
            make_position("BTC", 9_000.0, metric=make_metric("BTC", max_drawdown=0.05)),
            make_position("DOGE", 1_000.0, metric=make_metric("DOGE", max_drawdown=0.60)),
        ]
        assert aggregator.aggregate(positions).max_drawdown == pytest.approx(0.60)

    def test_missing_metrics_contribute_value_only(
        self, aggregator: RiskAggregator, make_position: Any, make_metric: Any
    ) -> None:
        positions = [
            make_position("BTC", 5_000.0, metric=make_metric("BTC", risk_score=60.0)),
            make_position("NEW", 5_000.0),
        ]
        summary = aggregator.aggregate(positions)
        assert summary.total_value == pytest.approx(10_000.0)
        assert summary.risk_score == pytest.approx(30.0)
        assert summary.positions_without_metrics == ["NEW"]

    def test_diversification_heuristic(
        self, aggregator: RiskAggregator, make_position: Any
    ) -> None:
        two = aggregator.aggregate([make_position(f"A{i}", 100.0) for i in range(2)])
        eight = aggregator.aggregate([make_position(f"A{i}", 100.0) for i in range(8)])
        assert two.diversification_score == pytest.approx(40.0)
        assert eight.diversification_score == pytest.approx(100.0)

    def test_empty_portfolio_rejected(self, aggregator: RiskAggregator) -> None:
        with pytest.raises(ValidationError):
            aggregator.aggregate([])

    def test_zero_value_rejected(self, aggregator: RiskAggregator) -> None:
        with pytest.raises(ValidationError):
            aggregator.aggregate([Position.create("BTC", amount=0.0, avg_buy_price=1.0)])


class TestAggregationConfig:
    def test_from_settings(self) -> None:
        config = AggregationConfig.from_settings(
            Settings(diversification_points_per_position=10.0, diversification_cap=50.0)
        )
        assert config.diversification_points_per_position == 10.0
        assert config.diversification_cap == 50.0

    def test_custom_heuristic(self, make_position: Any) -> None:
        aggregator = RiskAggregator(AggregationConfig(10.0, 50.0))
        summary = aggregator.aggregate([make_position(f"A{i}", 100.0) for i in range(3)])
        assert summary.diversification_score == pytest.approx(30.0)
