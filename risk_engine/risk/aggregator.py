"""Value-weighted aggregation of per-position risk into a portfolio summary."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from risk_engine.core.enums import RiskLevel
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import PortfolioSnapshot, Position, risk_level_from_score

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AggregationConfig:
    """Diversification heuristic: ``min(cap, position_count * points_per_position)``.

    A placeholder until a correlation-aware measure replaces it.
    """

    diversification_points_per_position: float = 20.0
    diversification_cap: float = 100.0

    @classmethod
    def from_settings(cls, settings) -> AggregationConfig:
        return cls(
            diversification_points_per_position=settings.diversification_points_per_position,
            diversification_cap=settings.diversification_cap,
        )


@dataclass
class PortfolioRiskSummary:
    """Portfolio-level risk.

    Attributes:
        total_value: Sum of position values.
        total_var95: Value-weighted 95% VaR.
        total_var99: Value-weighted 99% VaR.
        portfolio_volatility: Value-weighted annualized volatility.
        max_drawdown: Worst max drawdown across positions (not averaged).
        sharpe_ratio: Value-weighted Sharpe ratio.
        risk_score: Value-weighted risk score, clamped to [0, 100].
        risk_level: Level derived from ``risk_score``.
        diversification_score: Count-based diversification heuristic.
        position_count: Number of positions aggregated.
        positions_without_metrics: Positions that contributed value but no risk.
    """

    total_value: float
    total_var95: float
    total_var99: float
    portfolio_volatility: float
    max_drawdown: float
    sharpe_ratio: float
    risk_score: float
    risk_level: RiskLevel
    diversification_score: float
    position_count: int
    positions_without_metrics: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RiskAggregator:
    """Aggregates per-position RiskMetrics into a PortfolioRiskSummary.

    Args:
        config: Diversification heuristic settings.
    """

    def __init__(self, config: AggregationConfig | None = None) -> None:
        self.config = config or AggregationConfig()

    def aggregate(self, positions: Sequence[Position]) -> PortfolioRiskSummary:
        """Weight each position's metric by its share of portfolio value.

        Raises:
            ValidationError: If there are no positions or total value is not
                positive.
        """
        snapshot = PortfolioSnapshot.from_positions(positions)
        if not snapshot.positions:
            raise ValidationError("Cannot aggregate risk for an empty portfolio")
        if snapshot.total_value <= 0:
            raise ValidationError("Portfolio total value must be positive")

        var95 = var99 = vol = sharpe = score = 0.0
        worst_drawdown = 0.0
        missing: list[str] = []

        for position in snapshot.positions:
            metric = position.risk_metric
            if metric is None:
                missing.append(position.asset_id)
                continue
            weight = position.value / snapshot.total_value
            var95 += metric.var95 * weight
            var99 += metric.var99 * weight
            vol += metric.volatility * weight
            sharpe += metric.sharpe_ratio * weight
            score += metric.risk_score * weight
            worst_drawdown = max(worst_drawdown, metric.max_drawdown)

        if missing:
            logger.warning(
                "aggregation_missing_metrics",
                assets=missing,
                n_missing=len(missing),
                n_positions=len(snapshot.positions),
            )

        score = min(100.0, max(0.0, score))
        cfg = self.config
        diversification = min(
            cfg.diversification_cap,
            len(snapshot.positions) * cfg.diversification_points_per_position,
        )

        return PortfolioRiskSummary(
            total_value=snapshot.total_value,
            total_var95=var95,
            total_var99=var99,
            portfolio_volatility=vol,
            max_drawdown=worst_drawdown,
            sharpe_ratio=sharpe,
            risk_score=score,
            risk_level=risk_level_from_score(score),
            diversification_score=diversification,
            position_count=len(snapshot.positions),
            positions_without_metrics=missing,
        )
